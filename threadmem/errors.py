"""Error taxonomy shared by all memory components."""


class MemoryEngineError(Exception):
    """Base class for every error raised by threadmem."""


class NotFound(MemoryEngineError, LookupError):
    """Unknown thread or message reference."""


class InvalidArgument(MemoryEngineError, ValueError):
    """Malformed input, e.g. an empty resource id or a non-positive top_k."""


class DimensionMismatch(InvalidArgument):
    """Embedding dimensionality differs from the vectors already indexed."""


class ConfigurationMissing(MemoryEngineError, LookupError):
    """A runtime container key was required but never set."""


class TransientUpstreamFailure(MemoryEngineError):
    """Embedder or storage I/O hiccup that may succeed on a later attempt."""
