"""Error translation — Collapse backend failures into the six error kinds.

The mapping is total and deterministic: the same backend condition always
yields the same ``ErrorKind``. Nothing here retries.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

import httpx

from unisearch.adapters.base.exceptions import (
    IndexNotFoundError,
    InternalError,
    InvalidQueryError,
    RateLimitedError,
    SearchError,
    SearchTimeoutError,
    UnsupportedError,
)

logger = logging.getLogger(__name__)

Translator = Callable[[BaseException, str], SearchError]

# Backend error codes that refine the HTTP status (Meilisearch ``code``,
# OpenSearch/Elasticsearch ``error.type``).
_CODE_ERRORS: dict[str, type[SearchError]] = {
    "index_not_found": IndexNotFoundError,
    "index_not_found_exception": IndexNotFoundError,
    "invalid_search_facets": UnsupportedError,
    "invalid_facet_search_facet_name": UnsupportedError,
    "too_many_search_requests": RateLimitedError,
    "es_rejected_execution_exception": RateLimitedError,
    "opensearch_rejected_execution_exception": RateLimitedError,
}

_USERINFO = re.compile(r"(?<=://)[^/@\s]+@")
_AUTH_HEADER = re.compile(r"\b(Bearer|Basic|ApiKey)\s+[A-Za-z0-9._~+/=-]+", re.IGNORECASE)
_API_KEY = re.compile(r"(api[_-]?key[\"']?\s*[=:]\s*[\"']?)[^&\s\"',}]+", re.IGNORECASE)


def redact(text: str) -> str:
    """Strip credentials from a diagnostic string."""
    text = _USERINFO.sub("***@", text)
    text = _AUTH_HEADER.sub(lambda m: f"{m.group(1)} ***", text)
    return _API_KEY.sub(lambda m: f"{m.group(1)}***", text)


def error_from_status(status: int, detail: str | None = None, code: str | None = None) -> SearchError:
    """Map an HTTP status (and optional backend error code) to a ``SearchError``.

    Args:
        status: HTTP status code returned by the backend.
        detail: Human-readable backend message, if any.
        code: Backend-specific error code, if any.

    Returns:
        The translated error (not raised).
    """
    message = redact(detail) if detail else None

    if code and code in _CODE_ERRORS:
        error_cls = _CODE_ERRORS[code]
        if error_cls is UnsupportedError:
            return UnsupportedError(message or code)
        if error_cls is IndexNotFoundError:
            return IndexNotFoundError(message or "Index not found")
        return error_cls(message or code)

    if status == 429:
        return RateLimitedError(message or "Rate limited")
    if status in (408, 504):
        return SearchTimeoutError(message or "Backend timed out")
    if status == 404:
        return IndexNotFoundError(message or "Index not found")
    if status == 400:
        return InvalidQueryError(message or "Bad request")
    if status in (401, 402, 403):
        return InternalError("Authentication failed")
    if 400 <= status < 500:
        return InvalidQueryError(message or f"Client error: {status}")
    return InternalError(f"Server error: {status}" + (f" ({message})" if message else ""))


def error_body(response: httpx.Response) -> tuple[str | None, str | None]:
    """Extract ``(code, message)`` from a backend JSON error body.

    Understands the Meilisearch shape (``{"code", "message"}``) and the
    OpenSearch REST shape (``{"error": {"type", "reason"}}``). Bodies that
    are not JSON yield ``(None, None)``.
    """
    try:
        data: Any = response.json()
    except (json.JSONDecodeError, ValueError):
        return None, None
    if not isinstance(data, dict):
        return None, None

    if "code" in data or "message" in data:
        return data.get("code"), data.get("message")

    error = data.get("error")
    if isinstance(error, dict):
        return error.get("type"), error.get("reason")
    if isinstance(error, str):
        return None, error
    return None, None


def translate_exception(exc: BaseException, context: str = "") -> SearchError:
    """Translate an arbitrary exception raised while talking to a backend.

    Args:
        exc: The exception to classify.
        context: Short description of the failed operation, used as a
            prefix in ``internal`` diagnostics.

    Returns:
        The translated ``SearchError`` (not raised).
    """
    prefix = f"{context}: " if context else ""

    if isinstance(exc, SearchError):
        return exc
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return SearchTimeoutError(f"{prefix}operation timed out")
    if isinstance(exc, httpx.HTTPStatusError):
        code, message = error_body(exc.response)
        return error_from_status(exc.response.status_code, message, code)
    if isinstance(exc, httpx.HTTPError):
        return InternalError(redact(f"{prefix}{exc}"))
    if isinstance(exc, (ValueError, KeyError, TypeError)):
        return InternalError(redact(f"{prefix}malformed backend response: {exc}"))
    return InternalError(redact(f"{prefix}{type(exc).__name__}: {exc}"))


@contextmanager
def translate_errors(context: str, translator: Translator = translate_exception) -> Iterator[None]:
    """Re-raise any non-``SearchError`` exception as its translated kind.

    Usage::

        with translate_errors("Failed to search"):
            resp = await client.post(...)
    """
    try:
        yield
    except SearchError:
        raise
    except Exception as e:
        error = translator(e, context)
        logger.debug("%s -> %s", context, error.kind.value)
        raise error from e
