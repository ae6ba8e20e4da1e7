"""Structured error kinds surfaced by fetchkit controllers."""

import asyncio
from typing import Any


class FetchKitError(Exception):
    """Base exception for all fetchkit errors."""

    retryable: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize fetchkit error.

        Args:
            message: Error message
            details: Additional error details

        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def kind(self) -> str:
        """Stable name presentation layers can branch on."""
        return type(self).__name__


class TransientNetworkError(FetchKitError):
    """Raised for failures that may succeed on retry (network, timeout, 5xx)."""

    retryable = True


class RateLimitError(TransientNetworkError):
    """Raised when the remote store throttles or a quota is exhausted."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: float | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.retry_after = retry_after


class CancellationError(FetchKitError):
    """Raised when an attempt is superseded or its controller disposed."""


class RemoteValidationError(FetchKitError):
    """Raised when the remote store rejects a request for semantic reasons."""


class OfflineUnavailableError(FetchKitError):
    """Raised when offline with fallback enabled but nothing stored for the key."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Offline and no stored payload for {key!r}", {"key": key})
        self.key = key


def classify_error(exc: BaseException) -> FetchKitError:
    """Map any exception onto a structured error kind.

    The original exception is kept as ``__cause__`` of the returned error.
    """
    if isinstance(exc, FetchKitError):
        return exc

    error: FetchKitError
    if isinstance(exc, asyncio.CancelledError):
        error = CancellationError("Operation cancelled")
    elif isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        error = TransientNetworkError("Operation timed out")
    elif isinstance(exc, (ValueError, TypeError, LookupError, PermissionError)):
        # PermissionError is an OSError, so it has to be matched first
        error = RemoteValidationError(str(exc) or type(exc).__name__)
    elif isinstance(exc, OSError):
        error = TransientNetworkError(str(exc) or type(exc).__name__)
    else:
        error = TransientNetworkError(str(exc) or type(exc).__name__)
    error.__cause__ = exc
    return error
