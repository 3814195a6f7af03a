"""Tests for the SQLite connection helper."""

from pathlib import Path

from threadmem.db import get_connection


class TestGetConnection:
    async def test_creates_parent_dirs(self, tmp_path: Path):
        db_path = tmp_path / "nested" / "dir" / "test.db"
        conn = await get_connection(db_path)
        assert db_path.parent.exists()
        await conn.close()

    async def test_uses_wal_and_foreign_keys(self, tmp_path: Path):
        conn = await get_connection(tmp_path / "test.db")
        try:
            cursor = await conn.execute("PRAGMA journal_mode")
            assert (await cursor.fetchone())[0] == "wal"
            cursor = await conn.execute("PRAGMA foreign_keys")
            assert (await cursor.fetchone())[0] == 1
        finally:
            await conn.close()

    async def test_runs_schema(self, tmp_path: Path):
        schema = "CREATE TABLE IF NOT EXISTS t (id INTEGER PRIMARY KEY, name TEXT);"
        conn = await get_connection(tmp_path / "test.db", schema)
        try:
            await conn.execute("INSERT INTO t (name) VALUES (?)", ("alice",))
            await conn.commit()
            cursor = await conn.execute("SELECT name FROM t")
            assert await cursor.fetchall() == [("alice",)]
        finally:
            await conn.close()

    async def test_schema_is_idempotent(self, tmp_path: Path):
        schema = "CREATE TABLE IF NOT EXISTS t (id INTEGER PRIMARY KEY);"
        for _ in range(2):
            conn = await get_connection(tmp_path / "test.db", schema)
            await conn.close()
