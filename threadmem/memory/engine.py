"""Memory — the per-turn entry point tying the stores together.

A typical turn::

    memory = Memory(MemoryOptions(semantic_recall=True), db_path, embedder=embedder)
    thread = await memory.create_thread("user-42")

    await memory.save_messages(thread.id, [("user", "I like pasta")])
    with create_run(MemoryRuntime, thread_id=thread.id, resource_id="user-42") as run:
        ctx = await memory.recall(thread.id)
        reply = await generate(ctx.to_api_messages(), tools=memory.tool_schemas())
        # tool calls go through memory.execute_tool(name, args, run)
        visible = await memory.process_response(thread.id, reply)
        await memory.save_messages(thread.id, [("assistant", visible)])
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from threadmem.config import settings
from threadmem.errors import InvalidArgument, NotFound, TransientUpstreamFailure
from threadmem.memory.models import Message, MessageContent, MessageRef, Scope
from threadmem.memory.options import MemoryOptions
from threadmem.memory.recall import RecallAssembler, RecallContext
from threadmem.memory.threads import ThreadStore
from threadmem.memory.titles import TitleGenerator
from threadmem.memory.updater import build_updater, scope_resolver
from threadmem.memory.vectors import VectorIndex
from threadmem.memory.working import WorkingMemoryStore
from threadmem.tools.registry import ToolRegistry

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

    from threadmem.embeddings import Embedder
    from threadmem.memory.models import Thread, WorkingMemorySnapshot
    from threadmem.runtime import RuntimeContainer
    from threadmem.tools.base import ToolResult

logger = logging.getLogger(__name__)

NewMessage = tuple[str, MessageContent] | tuple[str, MessageContent, dict[str, Any]]


@dataclass
class SaveResult:
    """Outcome of ``Memory.save_messages``.

    Attributes:
        messages: The stored messages, with their sequence positions.
        unindexed: Refs whose embedding could not be computed this time;
            ``reindex_thread`` picks them up later.
        title: Title generated for the thread by this save, if any.
    """

    messages: list[Message] = field(default_factory=list)
    unindexed: list[MessageRef] = field(default_factory=list)
    title: str | None = None


class Memory:
    """Thread history, semantic recall and working memory behind one object."""

    def __init__(
        self,
        options: MemoryOptions | dict[str, Any] | None = None,
        db_path: Path | None = None,
        *,
        embedder: Embedder | None = None,
        title_generator: TitleGenerator | None = None,
    ) -> None:
        if isinstance(options, dict):
            options = MemoryOptions.model_validate(options)
        self.options = options or MemoryOptions()
        db_path = db_path or settings.database_path

        self.threads = ThreadStore(db_path)
        self.working_memory = WorkingMemoryStore(db_path)
        self.embedder = embedder
        self.index = VectorIndex(db_path, embedder.model) if embedder is not None else None
        if self.options.semantic_recall_enabled and embedder is None:
            logger.warning("Semantic recall is configured but no embedder was given; disabled")

        self._scope_for = scope_resolver(self.options.working_memory.scope)
        self.updater = build_updater(self.options.working_memory, self.working_memory, self._scope_for)
        self.assembler = RecallAssembler(
            self.threads,
            self.options,
            self.updater,
            working_memory=self.working_memory,
            index=self.index,
            embedder=embedder,
        )
        self.titles = title_generator or TitleGenerator()

        self.registry = ToolRegistry()
        for tool in self.updater.tools():
            self.registry.register(tool)

    # -- Threads ---------------------------------------------------------------

    async def create_thread(
        self,
        resource_id: str,
        title: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Thread:
        return await self.threads.create_thread(resource_id, title, metadata)

    async def get_thread(self, thread_id: str) -> Thread:
        return await self.threads.get_thread(thread_id)

    async def list_threads(self, resource_id: str) -> list[Thread]:
        return await self.threads.list_threads(resource_id)

    async def delete_thread(self, thread_id: str) -> bool:
        """Delete a thread with its messages, embeddings and thread-scoped working memory."""
        deleted = await self.threads.delete_thread(thread_id)
        await self.working_memory.delete(Scope.thread(thread_id))
        return deleted

    # -- Messages --------------------------------------------------------------

    async def save_message(
        self,
        thread_id: str,
        role: str,
        content: MessageContent,
        metadata: dict[str, Any] | None = None,
    ) -> SaveResult:
        return await self.save_messages(thread_id, [(role, content, metadata or {})])

    async def save_messages(self, thread_id: str, messages: Iterable[NewMessage]) -> SaveResult:
        """Append messages in order, index them and title the thread if due.

        Appends are committed one by one; an embedding failure leaves the
        message stored and reports it in ``SaveResult.unindexed``.
        """
        thread = await self.threads.get_thread(thread_id)
        result = SaveResult()

        for item in messages:
            role, content = item[0], item[1]
            metadata = item[2] if len(item) > 2 else {}
            seq = await self.threads.append_message(thread_id, role, content, metadata)
            msg = await self.threads.get_message(MessageRef(thread_id, seq))
            if msg is None:
                message = f"Message {thread_id}/{seq} vanished after append"
                raise NotFound(message)
            result.messages.append(msg)
            if not await self._index_message(msg, thread.resource_id):
                result.unindexed.append(msg.ref)

        if self.options.threads.generate_title and not thread.title:
            first_user = next(
                (m for m in result.messages if m.role == "user" and m.text.strip()), None
            )
            if first_user is not None:
                result.title = await self.titles.generate(first_user.text)
                await self.threads.update_title(thread_id, result.title)
                logger.info("Titled thread %s: %s", thread_id, result.title)

        return result

    async def _index_message(self, msg: Message, resource_id: str) -> bool:
        """Embed and index one message. Returns False if the embedder failed."""
        if self.index is None or self.embedder is None:
            return True
        text = msg.text
        if not text.strip():
            return True
        try:
            vector = await self.embedder.embed(text)
        except TransientUpstreamFailure:
            logger.warning(
                "Could not embed %s/%d; message stored without a vector",
                msg.thread_id,
                msg.seq,
                exc_info=True,
            )
            return False
        await self.index.upsert(msg.ref, vector, resource_id)
        return True

    async def reindex_thread(self, thread_id: str) -> int:
        """Embed every message of a thread that has no vector from the current model.

        Covers messages saved while the embedder was down and re-embedding
        after a model change. Returns the number of messages indexed.
        """
        if self.index is None:
            msg = "reindex_thread needs an embedder"
            raise InvalidArgument(msg)
        thread = await self.threads.get_thread(thread_id)
        done = await self.index.indexed_refs(thread_id)
        indexed = 0
        for message in await self.threads.get_recent_messages(thread_id, None):
            if message.ref in done or not message.text.strip():
                continue
            vector = await self.embedder.embed(message.text)
            await self.index.upsert(message.ref, vector, thread.resource_id)
            indexed += 1
        logger.info("Reindexed %d messages of thread %s", indexed, thread_id)
        return indexed

    # -- Recall ----------------------------------------------------------------

    async def recall(self, thread_id: str, query: str | None = None) -> RecallContext:
        """Assemble the context window for the next turn of *thread_id*."""
        thread = await self.threads.get_thread(thread_id)
        return await self.assembler.assemble(
            thread,
            query=query,
            working_memory_scope=self._scope_for(thread.id, thread.resource_id),
        )

    # -- Working memory --------------------------------------------------------

    def working_memory_scope(self, thread: Thread) -> Scope:
        return self._scope_for(thread.id, thread.resource_id)

    async def get_working_memory(self, thread_id: str) -> WorkingMemorySnapshot | None:
        """Current snapshot for the thread's scope; None if unset or disabled."""
        if not self.updater.enabled:
            return None
        thread = await self.threads.get_thread(thread_id)
        return await self.working_memory.get(self.working_memory_scope(thread))

    async def process_response(self, thread_id: str, text: str) -> str:
        """Apply any inline working-memory block in *text*; return the visible text."""
        visible, document = self.updater.process_output(text)
        if document is not None:
            thread = await self.threads.get_thread(thread_id)
            await self.updater.apply(self.working_memory_scope(thread), document)
        return visible

    async def update_working_memory(self, thread_id: str, document: str) -> WorkingMemorySnapshot | None:
        """Replace the working memory directly. A no-op when working memory is disabled."""
        if not self.updater.enabled:
            return None
        thread = await self.threads.get_thread(thread_id)
        return await self.updater.apply(self.working_memory_scope(thread), document)

    # -- Tools -----------------------------------------------------------------

    def tool_schemas(self) -> list[dict[str, Any]]:
        """Schemas of the tools the generation step may call (empty unless structured-call)."""
        return self.registry.get_schemas()

    async def execute_tool(
        self,
        name: str,
        arguments: dict[str, Any],
        runtime: RuntimeContainer,
    ) -> ToolResult:
        return await self.registry.execute(name, arguments, runtime)


__all__ = ["Memory", "SaveResult"]
