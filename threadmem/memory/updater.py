"""WorkingMemoryUpdater — applies working-memory documents produced by a turn.

The update mode is picked once, when the memory is configured:

- ``inline-tag``: the model writes the whole new document between
  ``<working_memory>`` tags in its reply; the block is cut out of the text
  the caller shows and stored.
- ``structured-call``: the model calls the ``update_working_memory`` tool with
  the whole new document as its argument, which works with streamed output.

Both modes replace the full document; there is no field-level merge.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, ClassVar

from pydantic import Field

from threadmem.errors import ConfigurationMissing, InvalidArgument
from threadmem.memory.models import Scope
from threadmem.tools.base import BaseTool, ToolParams, ToolResult

if TYPE_CHECKING:
    from collections.abc import Callable

    from threadmem.memory.models import WorkingMemorySnapshot
    from threadmem.memory.options import WorkingMemoryOptions
    from threadmem.memory.working import WorkingMemoryStore
    from threadmem.runtime import MemoryRuntime, RuntimeContainer

logger = logging.getLogger(__name__)

OPEN_TAG = "<working_memory>"
CLOSE_TAG = "</working_memory>"

_BLOCK_RE = re.compile(re.escape(OPEN_TAG) + r"(.*?)" + re.escape(CLOSE_TAG), re.DOTALL)

UPDATE_TOOL_NAME = "update_working_memory"


class WorkingMemoryUpdater(ABC):
    """Common behaviour of the enabled update modes."""

    mode: ClassVar[str] = ""
    enabled: ClassVar[bool] = True

    def __init__(
        self,
        store: WorkingMemoryStore,
        template: str,
        scope_for: Callable[[str, str], Scope],
    ) -> None:
        self._store = store
        self.template = template
        self._scope_for = scope_for

    async def apply(self, scope: Scope, document: str) -> WorkingMemorySnapshot | None:
        """Replace the document for *scope* with *document*."""
        return await self._store.replace(scope, document)

    def process_output(self, text: str) -> tuple[str, str | None]:
        """Return ``(visible_text, document)`` for a generated reply.

        Only the inline-tag mode extracts anything.
        """
        return text, None

    def tools(self) -> list[BaseTool]:
        return []

    @abstractmethod
    def instructions(self) -> str:
        """How the model should report working-memory changes in this mode."""

    def render_block(self, current: str) -> str:
        """Working-memory context block: instructions plus the current document."""
        return (
            f"{self.instructions()}\n\n"
            f"<working_memory_data>\n{current.strip()}\n</working_memory_data>"
        )


class InlineTagUpdater(WorkingMemoryUpdater):
    mode = "inline-tag"

    def process_output(self, text: str) -> tuple[str, str | None]:
        blocks = _BLOCK_RE.findall(text)
        if not blocks:
            if OPEN_TAG in text:
                logger.warning("Unterminated %s block; working memory left unchanged", OPEN_TAG)
            return text, None

        visible = _BLOCK_RE.sub("", text).strip()
        document = blocks[-1].strip()
        if not document:
            logger.warning("Empty %s block; working memory left unchanged", OPEN_TAG)
            return visible, None
        return visible, document

    def instructions(self) -> str:
        return (
            "You keep a working memory of durable facts about this conversation, "
            "shown below. When you learn something that belongs in it, include the "
            f"complete updated document, following the template, between {OPEN_TAG} "
            f"and {CLOSE_TAG} anywhere in your reply. The block replaces the whole "
            "document and is hidden from the user. Omit the block if nothing changed."
        )


class UpdateWorkingMemoryParams(ToolParams):
    memory: str = Field(
        description="The complete updated working memory document, in Markdown, following the template"
    )


class UpdateWorkingMemoryTool(BaseTool):
    """Side-channel tool that replaces the working-memory document.

    The thread and resource come from the run's ``RuntimeContainer``.
    """

    name = UPDATE_TOOL_NAME
    description = (
        "Replace the working memory for this conversation with a complete, "
        "updated Markdown document. Call it whenever you learn a durable fact "
        "worth keeping (name, preferences, goals, ongoing projects)."
    )
    category = "memory"
    params_model = UpdateWorkingMemoryParams

    def __init__(self, updater: ToolCallUpdater) -> None:
        self._updater = updater

    async def execute(
        self,
        memory: str,
        runtime: RuntimeContainer[MemoryRuntime] | None = None,
    ) -> ToolResult:
        if runtime is None:
            return ToolResult(error="update_working_memory needs the run's runtime container.")
        try:
            scope = self._updater.scope_from_runtime(runtime)
        except (ConfigurationMissing, InvalidArgument) as exc:
            return ToolResult(error=str(exc))

        if not memory.strip():
            return ToolResult(error="Working memory document must not be empty.")
        snapshot = await self._updater.apply(scope, memory)
        return ToolResult(data={"updated": True, "version": snapshot.version})


class ToolCallUpdater(WorkingMemoryUpdater):
    mode = "structured-call"

    def scope_from_runtime(self, runtime: RuntimeContainer) -> Scope:
        return self._scope_for(runtime.get("thread_id"), runtime.get("resource_id"))

    def tools(self) -> list[BaseTool]:
        return [UpdateWorkingMemoryTool(self)]

    def instructions(self) -> str:
        return (
            "You keep a working memory of durable facts about this conversation, "
            f"shown below. When you learn something that belongs in it, call the "
            f"{UPDATE_TOOL_NAME} tool with the complete updated document, following "
            "the template. The call replaces the whole document. Do not mention the "
            "working memory to the user."
        )


class DisabledUpdater(WorkingMemoryUpdater):
    """Working memory switched off: no scanning, no tools, no context block."""

    mode = "disabled"
    enabled = False

    def __init__(self) -> None:
        self.template = ""

    async def apply(self, scope: Scope, document: str) -> WorkingMemorySnapshot | None:
        return None

    def instructions(self) -> str:
        return ""

    def render_block(self, current: str) -> str:
        return ""


_MODES: dict[str, type[WorkingMemoryUpdater]] = {
    InlineTagUpdater.mode: InlineTagUpdater,
    ToolCallUpdater.mode: ToolCallUpdater,
}


def build_updater(
    options: WorkingMemoryOptions,
    store: WorkingMemoryStore,
    scope_for: Callable[[str, str], Scope],
) -> WorkingMemoryUpdater:
    """Pick the updater variant for the configured mode."""
    if not options.enabled:
        return DisabledUpdater()
    return _MODES[options.use](store, options.effective_template, scope_for)


def scope_resolver(kind: str) -> Callable[[str, str], Scope]:
    """Map ``(thread_id, resource_id)`` to the working-memory scope of *kind*."""
    if kind == "resource":
        return lambda thread_id, resource_id: Scope.resource(resource_id)
    return lambda thread_id, resource_id: Scope.thread(thread_id)
