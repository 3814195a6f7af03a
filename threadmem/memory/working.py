"""WorkingMemoryStore — one versioned Markdown document per thread or resource."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import TYPE_CHECKING

from threadmem.db import get_connection
from threadmem.memory.models import Scope, WorkingMemorySnapshot, now_iso

if TYPE_CHECKING:
    from pathlib import Path

    import aiosqlite

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS working_memory (
    scope_key  TEXT PRIMARY KEY,
    scope_kind TEXT NOT NULL,
    scope_id   TEXT NOT NULL,
    content    TEXT NOT NULL,
    version    INTEGER NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class WorkingMemoryStore:
    """Persists working-memory snapshots keyed by scope.

    Writes replace the whole document.  Writing the content that is already
    stored changes nothing (not even the version), which makes re-applying
    an update idempotent.  Each write is a single transaction, so a cancelled
    write either lands completely or not at all.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._initialised = False
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def _connect(self) -> aiosqlite.Connection:
        db = await get_connection(self._db_path, None if self._initialised else _SCHEMA)
        self._initialised = True
        return db

    @staticmethod
    def _from_row(scope: Scope, row: tuple) -> WorkingMemorySnapshot:
        return WorkingMemorySnapshot(scope=scope, content=row[0], version=row[1], updated_at=row[2])

    async def get(self, scope: Scope) -> WorkingMemorySnapshot | None:
        """Return the current snapshot, or None if nothing was written yet."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT content, version, updated_at FROM working_memory WHERE scope_key = ?",
                (scope.key,),
            )
            row = await cursor.fetchone()
            return self._from_row(scope, row) if row else None
        finally:
            await db.close()

    async def replace(self, scope: Scope, content: str) -> WorkingMemorySnapshot:
        """Replace the document for *scope* and return the resulting snapshot."""
        async with self._locks[scope.key]:
            db = await self._connect()
            try:
                await db.execute("BEGIN IMMEDIATE")
                try:
                    cursor = await db.execute(
                        "SELECT content, version, updated_at FROM working_memory "
                        "WHERE scope_key = ?",
                        (scope.key,),
                    )
                    row = await cursor.fetchone()
                    if row is not None and row[0] == content:
                        await db.rollback()
                        return self._from_row(scope, row)

                    version = row[1] + 1 if row else 1
                    now = now_iso()
                    await db.execute(
                        """
                        INSERT OR REPLACE INTO working_memory
                            (scope_key, scope_kind, scope_id, content, version, updated_at)
                        VALUES (?, ?, ?, ?, ?, ?)
                        """,
                        (scope.key, scope.kind, scope.id, content, version, now),
                    )
                    await db.commit()
                except BaseException:
                    await db.rollback()
                    raise
            finally:
                await db.close()

        logger.info("Working memory %s updated to v%d", scope.key, version)
        return WorkingMemorySnapshot(scope=scope, content=content, version=version, updated_at=now)

    async def delete(self, scope: Scope) -> bool:
        """Drop the document for *scope*. Returns True if one existed."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "DELETE FROM working_memory WHERE scope_key = ?", (scope.key,)
            )
            await db.commit()
            deleted = cursor.rowcount > 0
        finally:
            await db.close()
        self._locks.pop(scope.key, None)
        return deleted
