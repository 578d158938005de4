"""
Exception taxonomy for the codebase context index.

Every error raised by the package derives from :class:`ContextIndexError`
so callers can catch the whole family at once.
"""


class ContextIndexError(Exception):
    """Base class for all codebase context index errors."""


class ParseFailure(ContextIndexError):
    """Source text could not be parsed into a syntax tree."""

    def __init__(self, file_path: str, reason: str) -> None:
        super().__init__(f"Failed to parse {file_path}: {reason}")
        self.file_path = file_path
        self.reason = reason


class EmbeddingUnavailable(ContextIndexError):
    """The embedding provider is unreachable or returned an unusable reply."""


class StoreTransactionFailure(ContextIndexError):
    """A store write was rolled back; the store is unchanged."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Transaction for {path} rolled back: {reason}")
        self.path = path
        self.reason = reason


class DimensionMismatch(StoreTransactionFailure):
    """An embedding's length differs from the store's established dimensionality."""

    def __init__(self, path: str, expected: int, actual: int) -> None:
        super().__init__(
            path, f"embedding has {actual} dimensions, store expects {expected}"
        )
        self.expected = expected
        self.actual = actual


class StoreUnavailable(ContextIndexError):
    """The persistent store could not be opened or read."""
