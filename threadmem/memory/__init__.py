"""Conversation memory: thread history, semantic recall and working memory."""

from threadmem.memory.engine import Memory, SaveResult
from threadmem.memory.models import (
    Message,
    MessageRef,
    Scope,
    Thread,
    VectorHit,
    WorkingMemorySnapshot,
)
from threadmem.memory.options import (
    DEFAULT_WORKING_MEMORY_TEMPLATE,
    MemoryOptions,
    MessageRange,
    SemanticRecallOptions,
    ThreadOptions,
    WorkingMemoryOptions,
)
from threadmem.memory.recall import RecallAssembler, RecallContext
from threadmem.memory.threads import ThreadStore
from threadmem.memory.updater import (
    DisabledUpdater,
    InlineTagUpdater,
    ToolCallUpdater,
    WorkingMemoryUpdater,
    build_updater,
)
from threadmem.memory.vectors import VectorIndex
from threadmem.memory.working import WorkingMemoryStore

__all__ = [
    "DEFAULT_WORKING_MEMORY_TEMPLATE",
    "DisabledUpdater",
    "InlineTagUpdater",
    "Memory",
    "MemoryOptions",
    "Message",
    "MessageRange",
    "MessageRef",
    "RecallAssembler",
    "RecallContext",
    "SaveResult",
    "Scope",
    "SemanticRecallOptions",
    "Thread",
    "ThreadOptions",
    "ThreadStore",
    "ToolCallUpdater",
    "VectorHit",
    "VectorIndex",
    "WorkingMemoryOptions",
    "WorkingMemorySnapshot",
    "WorkingMemoryStore",
    "WorkingMemoryUpdater",
    "build_updater",
]
