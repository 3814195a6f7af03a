"""RecallAssembler — builds the context window handed to the generation step.

The window is the union of the recency window and the neighbourhood of each
semantic hit, deduplicated by ``(thread_id, seq)`` and returned in
chronological order, plus the working-memory block kept separate from the
messages.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from threadmem.errors import NotFound, TransientUpstreamFailure
from threadmem.memory.models import Message, MessageRef, Scope

if TYPE_CHECKING:
    from collections.abc import Iterable

    from threadmem.embeddings import Embedder
    from threadmem.memory.models import Thread, VectorHit
    from threadmem.memory.options import MemoryOptions
    from threadmem.memory.threads import ThreadStore
    from threadmem.memory.updater import WorkingMemoryUpdater
    from threadmem.memory.vectors import VectorIndex
    from threadmem.memory.working import WorkingMemoryStore

logger = logging.getLogger(__name__)


@dataclass
class RecallContext:
    """Everything recalled for one turn.

    Attributes:
        thread: The thread the turn belongs to.
        messages: Recency window and semantic windows merged, chronological.
        recalled: The semantic windows alone (deduplicated, chronological).
        hits: Raw vector hits, most similar first.
        working_memory: Current document (or template); None when disabled.
        working_memory_block: Rendered system block; empty when disabled.
        semantic_recall_degraded: True if the embedder failed this turn.
    """

    thread: Thread
    messages: list[Message] = field(default_factory=list)
    recalled: list[Message] = field(default_factory=list)
    hits: list[VectorHit] = field(default_factory=list)
    working_memory: str | None = None
    working_memory_block: str = ""
    semantic_recall_degraded: bool = False

    def to_api_messages(self, *, include_working_memory: bool = True) -> list[dict[str, Any]]:
        """Messages for a chat API; the working-memory block leads as a system message."""
        result: list[dict[str, Any]] = []
        if include_working_memory and self.working_memory_block:
            result.append({"role": "system", "content": self.working_memory_block})
        result.extend(m.to_api_message() for m in self.messages)
        return result


def _last_user_text(messages: list[Message]) -> str | None:
    for msg in reversed(messages):
        if msg.role == "user" and msg.text.strip():
            return msg.text
    return None


def chronological(messages: Iterable[Message], current_thread_id: str) -> list[Message]:
    """Deduplicate by ``(thread_id, seq)`` and order chronologically.

    Messages of the current thread come last, ordered by ``seq``.  Messages
    recalled from other threads of the same resource come first, grouped by
    thread (groups ordered by their earliest ``created_at``), ``seq`` order
    inside each group.
    """
    unique: dict[MessageRef, Message] = {}
    for msg in messages:
        unique.setdefault(msg.ref, msg)

    first_seen: dict[str, str] = {}
    for msg in unique.values():
        if msg.thread_id not in first_seen or msg.created_at < first_seen[msg.thread_id]:
            first_seen[msg.thread_id] = msg.created_at

    def sort_key(msg: Message) -> tuple:
        is_current = msg.thread_id == current_thread_id
        return (is_current, "" if is_current else first_seen[msg.thread_id], msg.thread_id, msg.seq)

    return sorted(unique.values(), key=sort_key)


class RecallAssembler:
    """Composes recency, semantic recall and working memory for a thread."""

    def __init__(
        self,
        threads: ThreadStore,
        options: MemoryOptions,
        updater: WorkingMemoryUpdater,
        working_memory: WorkingMemoryStore | None = None,
        index: VectorIndex | None = None,
        embedder: Embedder | None = None,
    ) -> None:
        self._threads = threads
        self._options = options
        self._updater = updater
        self._working_memory = working_memory
        self._index = index
        self._embedder = embedder

    @property
    def semantic_recall_active(self) -> bool:
        return (
            self._options.semantic_recall_enabled
            and self._index is not None
            and self._embedder is not None
        )

    async def assemble(
        self,
        thread: Thread,
        query: str | None = None,
        working_memory_scope: Scope | None = None,
    ) -> RecallContext:
        """Build the context for the next turn of *thread*.

        *query* defaults to the text of the latest user message.
        """
        ctx = RecallContext(thread=thread)

        recent: list[Message] = []
        if self._options.last_messages is not False:
            recent = await self._threads.get_recent_messages(
                thread.id, self._options.last_messages
            )

        if self.semantic_recall_active:
            if query is None:
                query = await self._latest_user_text(thread.id, recent)
            if query and query.strip():
                await self._semantic_recall(ctx, query)

        ctx.messages = chronological([*recent, *ctx.recalled], thread.id)
        await self._attach_working_memory(ctx, working_memory_scope or Scope.thread(thread.id))
        logger.debug(
            "Recall for %s: %d recent, %d recalled, %d total",
            thread.id,
            len(recent),
            len(ctx.recalled),
            len(ctx.messages),
        )
        return ctx

    async def _latest_user_text(self, thread_id: str, recent: list[Message]) -> str | None:
        """Text of the newest user message, looking past the recency window if needed."""
        text = _last_user_text(recent)
        if text is None:
            text = _last_user_text(await self._threads.get_recent_messages(thread_id, None))
        return text

    async def _semantic_recall(self, ctx: RecallContext, query: str) -> None:
        recall = self._options.semantic_recall
        try:
            vector = await self._embedder.embed(query)
        except TransientUpstreamFailure:
            logger.warning(
                "Embedder failed for thread %s; falling back to recency-only recall",
                ctx.thread.id,
                exc_info=True,
            )
            ctx.semantic_recall_degraded = True
            return

        scope = (
            Scope.resource(ctx.thread.resource_id)
            if recall.scope == "resource"
            else Scope.thread(ctx.thread.id)
        )
        hits = await self._index.query(scope, vector, recall.top_k)

        windows: list[Message] = []
        for hit in hits:
            try:
                window = await self._threads.get_messages_in_range(
                    hit.ref.thread_id,
                    hit.ref.seq,
                    recall.message_range.before,
                    recall.message_range.after,
                )
            except NotFound:
                window = []
            if all(m.ref != hit.ref for m in window):
                logger.warning(
                    "Skipping stale vector %s/%d: message no longer exists",
                    hit.ref.thread_id,
                    hit.ref.seq,
                )
                continue
            ctx.hits.append(hit)
            windows.extend(window)
        ctx.recalled = chronological(windows, ctx.thread.id)

    async def _attach_working_memory(self, ctx: RecallContext, scope: Scope) -> None:
        if not self._updater.enabled or self._working_memory is None:
            return
        snapshot = await self._working_memory.get(scope)
        ctx.working_memory = snapshot.content if snapshot else self._updater.template
        ctx.working_memory_block = self._updater.render_block(ctx.working_memory)
