"""Tests for MemoryOptions parsing."""

import pytest
from pydantic import ValidationError

from threadmem.memory import DEFAULT_WORKING_MEMORY_TEMPLATE, MemoryOptions, WorkingMemoryOptions


def test_defaults() -> None:
    options = MemoryOptions()
    assert options.last_messages == 10
    assert not options.semantic_recall_enabled
    assert options.working_memory.use == "inline-tag"
    assert options.working_memory.scope == "thread"
    assert options.threads.generate_title is False


def test_camel_case_input() -> None:
    options = MemoryOptions.model_validate(
        {
            "lastMessages": 4,
            "semanticRecall": {"topK": 3, "messageRange": {"before": 1, "after": 0}, "scope": "resource"},
            "workingMemory": {"enabled": True, "use": "structured-call"},
            "threads": {"generateTitle": True},
        }
    )
    assert options.last_messages == 4
    assert options.semantic_recall.top_k == 3
    assert options.semantic_recall.message_range.before == 1
    assert options.semantic_recall.message_range.after == 0
    assert options.semantic_recall.scope == "resource"
    assert options.working_memory.use == "structured-call"
    assert options.threads.generate_title is True


def test_snake_case_input() -> None:
    options = MemoryOptions(last_messages=2, semantic_recall={"top_k": 5})
    assert options.semantic_recall.top_k == 5


def test_last_messages_false() -> None:
    assert MemoryOptions(last_messages=False).last_messages is False


def test_semantic_recall_shorthands() -> None:
    enabled = MemoryOptions(semantic_recall=True)
    assert enabled.semantic_recall.top_k == 2
    assert enabled.semantic_recall.message_range.before == 2
    assert MemoryOptions(semantic_recall=False).semantic_recall is None


def test_symmetric_message_range() -> None:
    options = MemoryOptions.model_validate({"semanticRecall": {"messageRange": 3}})
    assert options.semantic_recall.message_range.before == 3
    assert options.semantic_recall.message_range.after == 3


@pytest.mark.parametrize(
    "raw",
    [
        {"lastMessages": -1},
        {"lastMessages": True},
        {"semanticRecall": {"topK": 0}},
        {"semanticRecall": {"messageRange": -1}},
        {"semanticRecall": {"messageRange": True}},
        {"semanticRecall": {"scope": "global"}},
        {"workingMemory": {"use": "telepathy"}},
        {"unknownOption": 1},
    ],
)
def test_invalid_options_rejected(raw: dict) -> None:
    with pytest.raises(ValidationError):
        MemoryOptions.model_validate(raw)


def test_template_defaults_and_override() -> None:
    assert WorkingMemoryOptions().effective_template == DEFAULT_WORKING_MEMORY_TEMPLATE
    assert WorkingMemoryOptions(template="# Trip").effective_template == "# Trip"
