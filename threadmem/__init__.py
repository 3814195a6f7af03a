"""threadmem: conversational memory engine."""

from threadmem.errors import (
    ConfigurationMissing,
    DimensionMismatch,
    InvalidArgument,
    MemoryEngineError,
    NotFound,
    TransientUpstreamFailure,
)
from threadmem.memory import Memory, MemoryOptions
from threadmem.runtime import MemoryRuntime, RuntimeContainer, create_run

__all__ = [
    "ConfigurationMissing",
    "DimensionMismatch",
    "InvalidArgument",
    "Memory",
    "MemoryEngineError",
    "MemoryOptions",
    "MemoryRuntime",
    "NotFound",
    "RuntimeContainer",
    "TransientUpstreamFailure",
    "create_run",
]
