"""VectorIndex — embedding store with cosine k-nearest-neighbour lookup.

Vectors are unit-normalised on write and stored as float32 blobs tagged with
the embedding model that produced them.  A query scans the candidate set for
its scope with numpy, which is plenty for per-thread or per-user history.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from threadmem.db import get_connection
from threadmem.errors import DimensionMismatch, InvalidArgument
from threadmem.memory.models import MessageRef, Scope, VectorHit, now_iso

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    import aiosqlite

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS embeddings (
    thread_id   TEXT NOT NULL,
    seq         INTEGER NOT NULL,
    resource_id TEXT NOT NULL,
    model       TEXT NOT NULL,
    dim         INTEGER NOT NULL,
    vector      BLOB NOT NULL,
    created_at  TEXT NOT NULL,
    PRIMARY KEY (thread_id, seq)
);
CREATE INDEX IF NOT EXISTS idx_embeddings_resource ON embeddings (resource_id, model);
"""


def normalize(embedding: Sequence[float]) -> np.ndarray:
    """Return *embedding* as a unit-length float32 vector.

    Raises ``InvalidArgument`` for empty, zero or non-finite vectors.
    """
    vec = np.asarray(embedding, dtype=np.float32)
    if vec.ndim != 1 or vec.size == 0:
        msg = "embedding must be a non-empty 1-D vector"
        raise InvalidArgument(msg)
    if not np.all(np.isfinite(vec)):
        msg = "embedding contains NaN or infinite values"
        raise InvalidArgument(msg)
    norm = float(np.linalg.norm(vec))
    if norm == 0.0:
        msg = "embedding must not be the zero vector"
        raise InvalidArgument(msg)
    return vec / norm


class VectorIndex:
    """Persists message embeddings for one embedding model.

    Records written by other models stay in the table (so a later re-embed
    can replace them) but are never compared against this model's queries.
    """

    def __init__(self, db_path: Path, model: str) -> None:
        if not model:
            msg = "model identity must not be empty"
            raise InvalidArgument(msg)
        self._db_path = db_path
        self.model = model
        self._initialised = False

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self) -> aiosqlite.Connection:
        db = await get_connection(self._db_path, None if self._initialised else _SCHEMA)
        self._initialised = True
        return db

    async def _stored_dims(self, db: aiosqlite.Connection, where: str, params: tuple) -> set[int]:
        cursor = await db.execute(
            f"SELECT DISTINCT dim FROM embeddings WHERE model = ? AND {where}",
            (self.model, *params),
        )
        return {row[0] for row in await cursor.fetchall()}

    # -- Write -----------------------------------------------------------------

    async def upsert(self, ref: MessageRef, embedding: Sequence[float], resource_id: str) -> None:
        """Store or replace the embedding for *ref*.

        Raises ``DimensionMismatch`` if the resource already holds vectors of
        a different dimension for this model.
        """
        vec = normalize(embedding)
        db = await self._connect()
        try:
            await db.execute("BEGIN IMMEDIATE")
            try:
                dims = await self._stored_dims(
                    db,
                    "resource_id = ? AND NOT (thread_id = ? AND seq = ?)",
                    (resource_id, ref.thread_id, ref.seq),
                )
                if dims and dims != {vec.size}:
                    msg = (
                        f"embedding has {vec.size} dimensions but {self.model!r} vectors "
                        f"for resource {resource_id!r} have {sorted(dims)}"
                    )
                    raise DimensionMismatch(msg)
                await db.execute(
                    """
                    INSERT OR REPLACE INTO embeddings
                        (thread_id, seq, resource_id, model, dim, vector, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        ref.thread_id,
                        ref.seq,
                        resource_id,
                        self.model,
                        int(vec.size),
                        vec.tobytes(),
                        now_iso(),
                    ),
                )
                await db.commit()
            except BaseException:
                await db.rollback()
                raise
        finally:
            await db.close()
        logger.debug("Indexed %s/%d (%d dims)", ref.thread_id, ref.seq, vec.size)

    async def delete(self, ref: MessageRef) -> bool:
        """Remove the embedding for one message. Returns True if one existed."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "DELETE FROM embeddings WHERE thread_id = ? AND seq = ?",
                (ref.thread_id, ref.seq),
            )
            await db.commit()
            return cursor.rowcount > 0
        finally:
            await db.close()

    async def delete_thread(self, thread_id: str) -> int:
        """Remove every embedding of a thread. Returns the number removed."""
        db = await self._connect()
        try:
            cursor = await db.execute("DELETE FROM embeddings WHERE thread_id = ?", (thread_id,))
            await db.commit()
            return cursor.rowcount
        finally:
            await db.close()

    # -- Read ------------------------------------------------------------------

    async def query(self, scope: Scope, embedding: Sequence[float], top_k: int) -> list[VectorHit]:
        """Return up to *top_k* hits in *scope*, most similar first.

        Equal scores are ordered by the more recent sequence position first.
        """
        if top_k <= 0:
            msg = f"top_k must be > 0, got {top_k}"
            raise InvalidArgument(msg)
        query_vec = normalize(embedding)
        column = "thread_id" if scope.kind == "thread" else "resource_id"

        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT thread_id, seq, dim, vector FROM embeddings "
                f"WHERE model = ? AND {column} = ?",
                (self.model, scope.id),
            )
            rows = await cursor.fetchall()
        finally:
            await db.close()

        if not rows:
            return []
        dims = {row[2] for row in rows}
        if dims != {query_vec.size}:
            msg = (
                f"query has {query_vec.size} dimensions but indexed {self.model!r} "
                f"vectors have {sorted(dims)}"
            )
            raise DimensionMismatch(msg)

        matrix = np.stack([np.frombuffer(row[3], dtype=np.float32) for row in rows])
        scores = matrix @ query_vec
        ranked = sorted(
            zip(rows, scores.tolist(), strict=True),
            key=lambda item: (-item[1], -item[0][1], item[0][0]),
        )
        return [
            VectorHit(ref=MessageRef(row[0], row[1]), score=score)
            for row, score in ranked[:top_k]
        ]

    async def indexed_refs(self, thread_id: str) -> set[MessageRef]:
        """Refs of a thread that already carry a vector from this model."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT thread_id, seq FROM embeddings WHERE thread_id = ? AND model = ?",
                (thread_id, self.model),
            )
            return {MessageRef(row[0], row[1]) for row in await cursor.fetchall()}
        finally:
            await db.close()

    async def count(self, scope: Scope) -> int:
        """Number of this model's vectors in *scope*."""
        column = "thread_id" if scope.kind == "thread" else "resource_id"
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT COUNT(*) FROM embeddings WHERE model = ? AND {column} = ?",
                (self.model, scope.id),
            )
            row = await cursor.fetchone()
            return row[0]
        finally:
            await db.close()
