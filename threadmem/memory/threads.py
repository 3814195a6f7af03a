"""ThreadStore — ordered, append-only message log per conversation thread."""

from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from typing import TYPE_CHECKING, Any

from threadmem.db import get_connection
from threadmem.errors import InvalidArgument, NotFound
from threadmem.memory.models import (
    ROLES,
    Message,
    MessageContent,
    MessageRef,
    Thread,
    make_thread_id,
    now_iso,
)

if TYPE_CHECKING:
    from pathlib import Path

    import aiosqlite

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS threads (
    id          TEXT PRIMARY KEY,
    resource_id TEXT NOT NULL,
    title       TEXT,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL,
    metadata    TEXT NOT NULL DEFAULT '{}',
    next_seq    INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_threads_resource ON threads (resource_id);

CREATE TABLE IF NOT EXISTS messages (
    thread_id  TEXT NOT NULL REFERENCES threads (id) ON DELETE CASCADE,
    seq        INTEGER NOT NULL,
    role       TEXT NOT NULL,
    content    TEXT NOT NULL,
    created_at TEXT NOT NULL,
    metadata   TEXT NOT NULL DEFAULT '{}',
    PRIMARY KEY (thread_id, seq)
);
"""

_THREAD_COLUMNS = "id, resource_id, title, created_at, updated_at, metadata"
_MESSAGE_COLUMNS = "thread_id, seq, role, content, created_at, metadata"


class ThreadStore:
    """Persists threads and their messages in SQLite.

    Sequence positions are allocated from a per-thread ``next_seq`` counter
    that only ever grows, so positions are never reused even after deletes.
    Appends to the same thread are serialized twice over: by an in-process
    ``asyncio.Lock`` per thread and by a ``BEGIN IMMEDIATE`` transaction that
    holds SQLite's write lock across the read-increment-insert.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._initialised = False
        self._append_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self) -> aiosqlite.Connection:
        db = await get_connection(self._db_path, None if self._initialised else _SCHEMA)
        self._initialised = True
        return db

    @staticmethod
    async def _require_thread(db: aiosqlite.Connection, thread_id: str) -> None:
        cursor = await db.execute("SELECT 1 FROM threads WHERE id = ?", (thread_id,))
        if await cursor.fetchone() is None:
            msg = f"Unknown thread: {thread_id!r}"
            raise NotFound(msg)

    # -- Threads ---------------------------------------------------------------

    async def create_thread(
        self,
        resource_id: str,
        title: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Thread:
        """Create an empty thread owned by *resource_id*."""
        if not resource_id or not resource_id.strip():
            msg = "resource_id must not be empty"
            raise InvalidArgument(msg)

        thread = Thread(
            id=make_thread_id(),
            resource_id=resource_id,
            title=title,
            metadata=metadata or {},
        )
        db = await self._connect()
        try:
            await db.execute(
                f"INSERT INTO threads ({_THREAD_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                thread.to_row(),
            )
            await db.commit()
        finally:
            await db.close()
        logger.info("Created thread %s for resource %s", thread.id, resource_id)
        return thread

    async def get_thread(self, thread_id: str) -> Thread:
        """Fetch a thread by ID. Raises ``NotFound`` if it does not exist."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_THREAD_COLUMNS} FROM threads WHERE id = ?", (thread_id,)
            )
            row = await cursor.fetchone()
        finally:
            await db.close()
        if row is None:
            msg = f"Unknown thread: {thread_id!r}"
            raise NotFound(msg)
        return Thread.from_row(row)

    async def list_threads(self, resource_id: str) -> list[Thread]:
        """Return all threads of a resource, most recently created first."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_THREAD_COLUMNS} FROM threads WHERE resource_id = ? "
                "ORDER BY created_at DESC, rowid DESC",
                (resource_id,),
            )
            rows = await cursor.fetchall()
            return [Thread.from_row(row) for row in rows]
        finally:
            await db.close()

    async def update_title(self, thread_id: str, title: str) -> Thread:
        """Set the thread title."""
        return await self._update_thread(thread_id, "title = ?", (title,))

    async def update_metadata(self, thread_id: str, metadata: dict[str, Any]) -> Thread:
        """Merge *metadata* into the thread's existing metadata."""
        thread = await self.get_thread(thread_id)
        merged = {**thread.metadata, **metadata}
        return await self._update_thread(thread_id, "metadata = ?", (json.dumps(merged),))

    async def _update_thread(self, thread_id: str, assignment: str, params: tuple) -> Thread:
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"UPDATE threads SET {assignment}, updated_at = ? WHERE id = ?",
                (*params, now_iso(), thread_id),
            )
            await db.commit()
            if cursor.rowcount == 0:
                msg = f"Unknown thread: {thread_id!r}"
                raise NotFound(msg)
        finally:
            await db.close()
        return await self.get_thread(thread_id)

    async def delete_thread(self, thread_id: str) -> bool:
        """Delete a thread, its messages (by cascade) and their embeddings.

        All three go in one transaction. Returns True if a thread was removed.
        """
        db = await self._connect()
        try:
            await db.execute("BEGIN IMMEDIATE")
            try:
                cursor = await db.execute(
                    "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'embeddings'"
                )
                if await cursor.fetchone() is not None:
                    await db.execute("DELETE FROM embeddings WHERE thread_id = ?", (thread_id,))
                cursor = await db.execute("DELETE FROM threads WHERE id = ?", (thread_id,))
                deleted = cursor.rowcount > 0
                await db.commit()
            except BaseException:
                await db.rollback()
                raise
        finally:
            await db.close()
        self._append_locks.pop(thread_id, None)
        if deleted:
            logger.info("Deleted thread %s", thread_id)
        return deleted

    # -- Messages --------------------------------------------------------------

    async def append_message(
        self,
        thread_id: str,
        role: str,
        content: MessageContent,
        metadata: dict[str, Any] | None = None,
    ) -> int:
        """Append a message and return its sequence position.

        Raises ``NotFound`` for an unknown thread and ``InvalidArgument`` for
        an unknown role.
        """
        if role not in ROLES:
            msg = f"Unknown role {role!r}; expected one of {sorted(ROLES)}"
            raise InvalidArgument(msg)
        payload = json.dumps(content)
        meta = json.dumps(metadata or {})

        async with self._append_locks[thread_id]:
            db = await self._connect()
            try:
                await db.execute("BEGIN IMMEDIATE")
                try:
                    cursor = await db.execute(
                        "SELECT next_seq FROM threads WHERE id = ?", (thread_id,)
                    )
                    row = await cursor.fetchone()
                    if row is None:
                        msg = f"Unknown thread: {thread_id!r}"
                        raise NotFound(msg)
                    seq = row[0]
                    now = now_iso()
                    await db.execute(
                        f"INSERT INTO messages ({_MESSAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                        (thread_id, seq, role, payload, now, meta),
                    )
                    await db.execute(
                        "UPDATE threads SET next_seq = ?, updated_at = ? WHERE id = ?",
                        (seq + 1, now, thread_id),
                    )
                    await db.commit()
                except BaseException:
                    await db.rollback()
                    raise
            finally:
                await db.close()

        logger.debug("Appended %s message #%d to thread %s", role, seq, thread_id)
        return seq

    async def get_recent_messages(self, thread_id: str, limit: int | None = None) -> list[Message]:
        """Return the last *limit* messages in ascending order (all if ``None``)."""
        if limit is not None and limit < 0:
            msg = f"limit must be >= 0, got {limit}"
            raise InvalidArgument(msg)

        db = await self._connect()
        try:
            await self._require_thread(db, thread_id)
            if limit is None:
                cursor = await db.execute(
                    f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE thread_id = ? ORDER BY seq",
                    (thread_id,),
                )
            else:
                cursor = await db.execute(
                    f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE thread_id = ? "
                    "ORDER BY seq DESC LIMIT ?",
                    (thread_id, limit),
                )
            rows = await cursor.fetchall()
        finally:
            await db.close()

        messages = [Message.from_row(row) for row in rows]
        if limit is not None:
            messages.reverse()
        return messages

    async def get_messages_in_range(
        self,
        thread_id: str,
        center: int,
        before: int,
        after: int,
    ) -> list[Message]:
        """Return messages with ``center - before <= seq <= center + after``.

        The window is clamped to the thread's boundaries without error.
        """
        if before < 0 or after < 0:
            msg = f"before/after must be >= 0, got {before}/{after}"
            raise InvalidArgument(msg)

        db = await self._connect()
        try:
            await self._require_thread(db, thread_id)
            cursor = await db.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages "
                "WHERE thread_id = ? AND seq BETWEEN ? AND ? ORDER BY seq",
                (thread_id, max(center - before, 0), center + after),
            )
            rows = await cursor.fetchall()
            return [Message.from_row(row) for row in rows]
        finally:
            await db.close()

    async def get_message(self, ref: MessageRef) -> Message | None:
        """Fetch a single message, or None if it does not exist."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE thread_id = ? AND seq = ?",
                (ref.thread_id, ref.seq),
            )
            row = await cursor.fetchone()
            return Message.from_row(row) if row else None
        finally:
            await db.close()

    async def count_messages(self, thread_id: str) -> int:
        """Number of messages currently stored for a thread."""
        db = await self._connect()
        try:
            await self._require_thread(db, thread_id)
            cursor = await db.execute(
                "SELECT COUNT(*) FROM messages WHERE thread_id = ?", (thread_id,)
            )
            row = await cursor.fetchone()
            return row[0]
        finally:
            await db.close()
