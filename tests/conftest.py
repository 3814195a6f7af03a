"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest

from threadmem.errors import TransientUpstreamFailure
from threadmem.memory import Memory, MemoryOptions, ThreadStore
from threadmem.memory.titles import TitleGenerator


class FakeEmbedder:
    """Deterministic embedder backed by a text → vector table.

    Unknown text gets a fixed fallback vector so every message can be indexed.
    """

    def __init__(
        self,
        vectors: dict[str, list[float]] | None = None,
        model: str = "fake-3d",
        fallback: list[float] | None = None,
    ) -> None:
        self.vectors = vectors or {}
        self.model = model
        self.fallback = fallback or [0.0, 0.1, 1.0]
        self.fail = False
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail:
            msg = "embedding service unavailable"
            raise TransientUpstreamFailure(msg)
        return list(self.vectors.get(text, self.fallback))


FOOD_VECTORS = {
    "I like pizza": [1.0, 0.0, 0.0],
    "I like pasta": [1.0, 1.0, 0.0],
    "What's the weather": [0.0, 0.0, 1.0],
    "recommend food": [1.0, 1.0, 0.0],
}


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "memory.db"


@pytest.fixture
def thread_store(db_path: Path) -> ThreadStore:
    return ThreadStore(db_path)


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder(FOOD_VECTORS)


@pytest.fixture
def offline_titles() -> TitleGenerator:
    """Title generator that never calls the API."""
    return TitleGenerator(api_key="")


@pytest.fixture
def make_memory(db_path: Path, embedder: FakeEmbedder, offline_titles: TitleGenerator):
    """Build a Memory on the temp database from an options dict."""

    def _make(options: dict | None = None, *, with_embedder: bool = True) -> Memory:
        return Memory(
            MemoryOptions.model_validate(options or {}),
            db_path,
            embedder=embedder if with_embedder else None,
            title_generator=offline_titles,
        )

    return _make


class _PausingConnection:
    """Wraps a store connection and parks forever before one statement.

    Lets a test cancel a store call while its transaction is open.
    """

    def __init__(self, db: Any, marker: str, reached: asyncio.Event) -> None:
        self._db = db
        self._marker = marker
        self._reached = reached

    async def execute(self, sql: str, *args: Any) -> Any:
        if self._marker in sql and not self._reached.is_set():
            self._reached.set()
            await asyncio.Event().wait()
        return await self._db.execute(sql, *args)

    def __getattr__(self, name: str) -> Any:
        return getattr(self._db, name)


@pytest.fixture
def pause_before(monkeypatch: pytest.MonkeyPatch):
    """Make *module*'s store connections stop before the first statement containing *marker*.

    Returns an event that is set once the store is parked there.
    """

    def _arm(module: Any, marker: str) -> asyncio.Event:
        reached = asyncio.Event()
        real = module.get_connection

        async def _get_connection(db_path: Path, schema: str | None = None) -> _PausingConnection:
            return _PausingConnection(await real(db_path, schema), marker, reached)

        monkeypatch.setattr(module, "get_connection", _get_connection)
        return reached

    return _arm
