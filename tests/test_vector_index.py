"""Tests for VectorIndex: cosine k-NN over stored embeddings."""

import asyncio
from pathlib import Path

import pytest

from threadmem.errors import DimensionMismatch, InvalidArgument
from threadmem.memory import MessageRef, Scope, VectorIndex
from threadmem.memory.vectors import normalize


@pytest.fixture
def index(db_path: Path) -> VectorIndex:
    return VectorIndex(db_path, model="test-model")


def _ref(seq: int, thread_id: str = "t1") -> MessageRef:
    return MessageRef(thread_id, seq)


# -- normalize -----------------------------------------------------------------


def test_normalize_unit_length() -> None:
    vec = normalize([3.0, 4.0])
    assert vec.tolist() == pytest.approx([0.6, 0.8])


@pytest.mark.parametrize("bad", [[], [0.0, 0.0], [1.0, float("nan")], [float("inf"), 1.0]])
def test_normalize_rejects_degenerate_vectors(bad: list[float]) -> None:
    with pytest.raises(InvalidArgument):
        normalize(bad)


def test_empty_model_rejected(db_path: Path) -> None:
    with pytest.raises(InvalidArgument):
        VectorIndex(db_path, model="")


# -- query ---------------------------------------------------------------------


async def test_query_orders_by_similarity(index: VectorIndex) -> None:
    await index.upsert(_ref(0), [1.0, 0.0], "user-1")
    await index.upsert(_ref(1), [0.0, 1.0], "user-1")
    await index.upsert(_ref(2), [1.0, 1.0], "user-1")

    hits = await index.query(Scope.thread("t1"), [1.0, 0.1], top_k=3)
    assert [h.ref.seq for h in hits] == [0, 2, 1]
    assert hits[0].score == pytest.approx(0.995, abs=1e-3)
    assert hits[0].score >= hits[1].score >= hits[2].score


async def test_query_ties_prefer_recent(index: VectorIndex) -> None:
    for seq in range(3):
        await index.upsert(_ref(seq), [2.0, 0.0], "user-1")

    hits = await index.query(Scope.thread("t1"), [1.0, 0.0], top_k=3)
    assert [h.ref.seq for h in hits] == [2, 1, 0]


async def test_query_underfull_returns_fewer(index: VectorIndex) -> None:
    await index.upsert(_ref(0), [1.0, 0.0], "user-1")

    hits = await index.query(Scope.thread("t1"), [1.0, 0.0], top_k=5)
    assert len(hits) == 1


async def test_query_empty_scope(index: VectorIndex) -> None:
    assert await index.query(Scope.thread("empty"), [1.0, 0.0], top_k=5) == []


@pytest.mark.parametrize("top_k", [0, -1])
async def test_query_rejects_non_positive_top_k(index: VectorIndex, top_k: int) -> None:
    with pytest.raises(InvalidArgument):
        await index.query(Scope.thread("t1"), [1.0, 0.0], top_k=top_k)


async def test_query_dimension_mismatch(index: VectorIndex) -> None:
    await index.upsert(_ref(0), [1.0, 0.0, 0.0], "user-1")

    with pytest.raises(DimensionMismatch):
        await index.query(Scope.thread("t1"), [1.0, 0.0], top_k=1)


async def test_upsert_dimension_mismatch(index: VectorIndex) -> None:
    await index.upsert(_ref(0), [1.0, 0.0, 0.0], "user-1")

    with pytest.raises(DimensionMismatch):
        await index.upsert(_ref(1), [1.0, 0.0], "user-1")


async def test_concurrent_upserts_agree_on_dimension(db_path: Path) -> None:
    writers = [VectorIndex(db_path, model="test-model") for _ in range(2)]
    await writers[0].count(Scope.resource("user-1"))

    results = await asyncio.gather(
        writers[0].upsert(_ref(0), [1.0, 0.0], "user-1"),
        writers[1].upsert(_ref(1), [1.0, 0.0, 0.0], "user-1"),
        return_exceptions=True,
    )

    assert sum(isinstance(r, DimensionMismatch) for r in results) == 1
    assert await writers[0].count(Scope.resource("user-1")) == 1


async def test_resource_scope_spans_threads(index: VectorIndex) -> None:
    await index.upsert(_ref(0, "t1"), [1.0, 0.0], "user-1")
    await index.upsert(_ref(0, "t2"), [1.0, 0.0], "user-1")
    await index.upsert(_ref(0, "t3"), [1.0, 0.0], "user-2")

    hits = await index.query(Scope.resource("user-1"), [1.0, 0.0], top_k=10)
    assert {h.ref.thread_id for h in hits} == {"t1", "t2"}
    thread_hits = await index.query(Scope.thread("t1"), [1.0, 0.0], top_k=10)
    assert [h.ref for h in thread_hits] == [_ref(0, "t1")]


# -- upsert semantics ----------------------------------------------------------


async def test_upsert_is_idempotent(index: VectorIndex) -> None:
    await index.upsert(_ref(0), [1.0, 0.0], "user-1")
    await index.upsert(_ref(0), [1.0, 0.0], "user-1")

    assert await index.count(Scope.thread("t1")) == 1


async def test_upsert_replaces_vector(index: VectorIndex) -> None:
    await index.upsert(_ref(0), [1.0, 0.0], "user-1")
    await index.upsert(_ref(0), [0.0, 1.0], "user-1")

    hits = await index.query(Scope.thread("t1"), [0.0, 1.0], top_k=1)
    assert hits[0].score == pytest.approx(1.0)


async def test_other_models_are_not_compared(db_path: Path) -> None:
    old = VectorIndex(db_path, model="old-model")
    new = VectorIndex(db_path, model="new-model")
    await old.upsert(_ref(0), [1.0, 0.0, 0.0], "user-1")
    await new.upsert(_ref(1), [1.0, 0.0], "user-1")

    hits = await new.query(Scope.thread("t1"), [1.0, 0.0], top_k=5)
    assert [h.ref.seq for h in hits] == [1]
    assert await new.indexed_refs("t1") == {_ref(1)}


async def test_reembedding_replaces_old_model_record(db_path: Path) -> None:
    old = VectorIndex(db_path, model="old-model")
    new = VectorIndex(db_path, model="new-model")
    await old.upsert(_ref(0), [1.0, 0.0, 0.0], "user-1")

    await new.upsert(_ref(0), [0.0, 1.0], "user-1")

    assert await old.count(Scope.thread("t1")) == 0
    assert await new.count(Scope.thread("t1")) == 1


# -- delete --------------------------------------------------------------------


async def test_delete_and_delete_thread(index: VectorIndex) -> None:
    await index.upsert(_ref(0), [1.0, 0.0], "user-1")
    await index.upsert(_ref(1), [1.0, 0.0], "user-1")
    await index.upsert(_ref(0, "t2"), [1.0, 0.0], "user-1")

    assert await index.delete(_ref(0)) is True
    assert await index.delete(_ref(0)) is False
    assert await index.delete_thread("t1") == 1
    assert await index.count(Scope.resource("user-1")) == 1
