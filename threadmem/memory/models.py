"""Data models for threads, messages, embeddings and working memory."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

ROLES = frozenset({"user", "assistant", "system", "tool"})

ScopeKind = Literal["thread", "resource"]

MessageContent = str | list[Any] | dict[str, Any]


def now_iso() -> str:
    return datetime.now(UTC).isoformat()


def make_thread_id() -> str:
    """Generate a new thread ID."""
    return uuid.uuid4().hex


# -- Identity ----------------------------------------------------------------


@dataclass(frozen=True, order=True)
class MessageRef:
    """Stable composite key for a message: ``(thread_id, seq)``.

    Shared by the thread store and the vector index so neither depends on
    the other's internal row identifiers.
    """

    thread_id: str
    seq: int


@dataclass(frozen=True)
class Scope:
    """Owner of a working-memory document or a vector search: a thread or a resource."""

    kind: ScopeKind
    id: str

    @classmethod
    def thread(cls, thread_id: str) -> Scope:
        return cls("thread", thread_id)

    @classmethod
    def resource(cls, resource_id: str) -> Scope:
        return cls("resource", resource_id)

    @property
    def key(self) -> str:
        return f"{self.kind}:{self.id}"


# -- Threads & messages ------------------------------------------------------


@dataclass
class Thread:
    """A single conversation owned by a resource (e.g. a user).

    Attributes:
        id: Unique identifier (UUID hex).
        resource_id: Owning resource.
        title: Optional human-readable title, possibly generated lazily.
        created_at: ISO 8601 timestamp.
        updated_at: ISO 8601 timestamp of the last title/metadata change or append.
        metadata: Free-form caller data.
    """

    id: str
    resource_id: str
    title: str | None = None
    created_at: str = ""
    updated_at: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = now_iso()
        if not self.updated_at:
            self.updated_at = self.created_at

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``threads`` insert column order."""
        return (
            self.id,
            self.resource_id,
            self.title,
            self.created_at,
            self.updated_at,
            json.dumps(self.metadata),
        )

    @classmethod
    def from_row(cls, row: tuple) -> Thread:
        """Deserialize from a ``SELECT id, resource_id, title, created_at, updated_at, metadata`` row."""
        return cls(
            id=row[0],
            resource_id=row[1],
            title=row[2],
            created_at=row[3],
            updated_at=row[4],
            metadata=json.loads(row[5]) if row[5] else {},
        )


@dataclass
class Message:
    """One entry in a thread's append log."""

    thread_id: str
    seq: int
    role: str
    content: MessageContent
    created_at: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = now_iso()

    @property
    def ref(self) -> MessageRef:
        return MessageRef(self.thread_id, self.seq)

    @property
    def text(self) -> str:
        return content_text(self.content)

    def to_api_message(self) -> dict[str, Any]:
        """Format for a chat-completion style API."""
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_row(cls, row: tuple) -> Message:
        """Deserialize from a ``SELECT thread_id, seq, role, content, created_at, metadata`` row."""
        return cls(
            thread_id=row[0],
            seq=row[1],
            role=row[2],
            content=json.loads(row[3]),
            created_at=row[4],
            metadata=json.loads(row[5]) if row[5] else {},
        )


def content_text(content: MessageContent) -> str:
    """Flatten message content to plain text for embedding and title generation.

    Structured payloads contribute their ``text`` fields (Claude-style content
    blocks); anything else is ignored.
    """
    if isinstance(content, str):
        return content
    if isinstance(content, dict):
        return content.get("text", "") if isinstance(content.get("text"), str) else ""
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and isinstance(block.get("text"), str):
            parts.append(block["text"])
    return "\n".join(p for p in parts if p)


# -- Vectors -----------------------------------------------------------------


@dataclass(frozen=True)
class VectorHit:
    """A single similarity-search result."""

    ref: MessageRef
    score: float


# -- Working memory ----------------------------------------------------------


@dataclass(frozen=True)
class WorkingMemorySnapshot:
    """The current working-memory document for a scope."""

    scope: Scope
    content: str
    version: int
    updated_at: str
