"""Base adapter interface — Contract, error taxonomy, normalization and streaming."""

from unisearch.adapters.base.adapter import AdapterHealth, SearchAdapter
from unisearch.adapters.base.exceptions import (
    ErrorKind,
    IndexNotFoundError,
    InternalError,
    InvalidQueryError,
    RateLimitedError,
    SearchError,
    SearchTimeoutError,
    UnsupportedError,
)
from unisearch.adapters.base.registry import AdapterRegistry
from unisearch.adapters.base.stream import SearchStream, StreamState

__all__ = [
    "AdapterHealth",
    "AdapterRegistry",
    "ErrorKind",
    "IndexNotFoundError",
    "InternalError",
    "InvalidQueryError",
    "RateLimitedError",
    "SearchAdapter",
    "SearchError",
    "SearchStream",
    "SearchTimeoutError",
    "StreamState",
    "UnsupportedError",
]
