"""Adapter-specific exceptions.

Every backend failure surfaces as exactly one of six ``SearchError``
subclasses. Callers branch on ``error.kind`` rather than on message text.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Closed set of abstract error kinds."""

    INDEX_NOT_FOUND = "index-not-found"
    INVALID_QUERY = "invalid-query"
    UNSUPPORTED = "unsupported"
    INTERNAL = "internal"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate-limited"


class SearchError(Exception):
    """Base exception for adapter errors."""

    kind: ErrorKind = ErrorKind.INTERNAL


class IndexNotFoundError(SearchError):
    """Raised when the target index does not exist."""

    kind = ErrorKind.INDEX_NOT_FOUND


class InvalidQueryError(SearchError):
    """Raised for malformed queries, filters, sorts, schemas or documents."""

    kind = ErrorKind.INVALID_QUERY

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class UnsupportedError(SearchError):
    """Raised when a requested capability has no backend equivalent."""

    kind = ErrorKind.UNSUPPORTED


class InternalError(SearchError):
    """Raised for backend or transport faults not otherwise classified."""

    kind = ErrorKind.INTERNAL

    def __init__(self, diagnostic: str) -> None:
        self.diagnostic = diagnostic
        super().__init__(diagnostic)


class SearchTimeoutError(SearchError):
    """Raised when an operation exceeds its time budget."""

    kind = ErrorKind.TIMEOUT


class RateLimitedError(SearchError):
    """Raised when the backend signals throttling. Retry with backoff."""

    kind = ErrorKind.RATE_LIMITED


class ConfigurationError(InternalError):
    """Raised when adapter configuration is invalid."""
