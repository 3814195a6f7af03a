"""Caller-facing memory options.

Accepts both snake_case and the camelCase spelling used by JSON clients::

    MemoryOptions.model_validate({
        "lastMessages": 10,
        "semanticRecall": {"topK": 3, "messageRange": {"before": 2, "after": 1}},
        "workingMemory": {"enabled": True, "use": "structured-call"},
        "threads": {"generateTitle": True},
    })
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_WORKING_MEMORY_TEMPLATE = """# User Information
- **First Name**:
- **Last Name**:
- **Location**:
- **Occupation**:
- **Interests**:
- **Goals**:
- **Events**:
- **Facts**:
- **Projects**:
"""


class _Options(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class MessageRange(_Options):
    """How many neighbours to pull in around each semantic hit."""

    before: int = Field(default=2, ge=0)
    after: int = Field(default=2, ge=0)


class SemanticRecallOptions(_Options):
    top_k: int = Field(default=2, gt=0)
    message_range: MessageRange = Field(default_factory=MessageRange)
    scope: Literal["thread", "resource"] = "thread"

    @field_validator("message_range", mode="before")
    @classmethod
    def _expand_symmetric_range(cls, value: Any) -> Any:
        if isinstance(value, bool):
            msg = "message_range must be an int or {before, after}"
            raise ValueError(msg)
        if isinstance(value, int):
            return {"before": value, "after": value}
        return value


class WorkingMemoryOptions(_Options):
    enabled: bool = False
    template: str | None = None
    use: Literal["inline-tag", "structured-call"] = "inline-tag"
    scope: Literal["thread", "resource"] = "thread"

    @property
    def effective_template(self) -> str:
        return self.template if self.template is not None else DEFAULT_WORKING_MEMORY_TEMPLATE


class ThreadOptions(_Options):
    generate_title: bool = False


class MemoryOptions(_Options):
    """Everything a caller can tune about recall and working memory.

    Attributes:
        last_messages: Size of the recency window, or ``False`` to disable it.
        semantic_recall: ``None`` when disabled. ``True`` on input enables it
            with defaults.
        working_memory: Working-memory behaviour (disabled by default).
        threads: Thread lifecycle behaviour.
    """

    last_messages: int | Literal[False] = 10
    semantic_recall: SemanticRecallOptions | None = None
    working_memory: WorkingMemoryOptions = Field(default_factory=WorkingMemoryOptions)
    threads: ThreadOptions = Field(default_factory=ThreadOptions)

    @field_validator("last_messages", mode="before")
    @classmethod
    def _check_last_messages(cls, value: Any) -> Any:
        if value is False:
            return False
        if isinstance(value, bool):
            msg = "last_messages must be a non-negative int or False"
            raise ValueError(msg)
        if isinstance(value, int) and value < 0:
            msg = "last_messages must be a non-negative int or False"
            raise ValueError(msg)
        return value

    @field_validator("semantic_recall", mode="before")
    @classmethod
    def _expand_semantic_recall(cls, value: Any) -> Any:
        if value is True:
            return {}
        if value is False:
            return None
        return value

    @property
    def semantic_recall_enabled(self) -> bool:
        return self.semantic_recall is not None
