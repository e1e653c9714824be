"""
Custom exception hierarchy for the cache subsystem.

All exceptions inherit from WarmCacheError, which provides optional context
for structured error handling and logging. Only NetworkError is ever allowed
to leave the subsystem; everything else degrades to a cache miss.
"""

from __future__ import annotations

from typing import Any


class WarmCacheError(Exception):
    """Base exception for all cache subsystem errors.

    Attributes:
        message: Human-readable error message.
        context: Optional structured context for logging/debugging.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class StorageError(WarmCacheError):
    """Raised by a storage medium on serialization, quota or I/O failure.

    Always caught at the TieredStore boundary and treated as a cache miss.

    Context should include:
        - key: The storage key involved
        - operation: get, set, remove or keys
    """

    pass


class NetworkError(WarmCacheError):
    """Raised when a network fetch fails.

    Propagated to the caller only when no cached fallback exists.

    Context should include:
        - url: The URL that was being fetched
        - method: The request method
    """

    pass


class SchemaMismatchError(WarmCacheError):
    """Raised internally when an entry's schema version is stale.

    Never propagated; surfaces only as a miss-and-delete.
    """

    pass


class TaskError(WarmCacheError):
    """Raised when a warming task's producer fails.

    Logged per task; does not halt the queue and is not retried.

    Context should include:
        - key: The task key
        - target_class: The cache class the task populates
    """

    pass


class ControlMessageError(WarmCacheError):
    """Raised when a control message sent to the interceptor is malformed."""

    pass
