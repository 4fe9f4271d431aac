"""Exception hierarchy for the indexing core.

Only genuine faults are exceptions. A bulk read that returns fewer entries
than requested is represented as absence, and an empty query yields the
``NoResults`` outcome rather than raising.
"""

from __future__ import annotations


class KvIndexError(Exception):
    """Base class for all indexing and query errors."""


class ConfigurationError(KvIndexError, ValueError):
    """Raised for unregistered fields, unknown store names and invalid field options."""


class StoreUnavailable(KvIndexError):
    """Raised when a backing key-value store call fails.

    The original exception is chained as ``__cause__``. Nothing is retried.
    """

    def __init__(self, store: str, operation: str, detail: str = "") -> None:
        self.store = store
        self.operation = operation
        message = f"Store '{store}' failed during {operation}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class CodecError(KvIndexError, ValueError):
    """Raised when a stored value cannot be decoded."""
