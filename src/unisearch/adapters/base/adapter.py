"""Base search adapter — Abstract interface for all search backends.

Every backend implements this interface so calling code is written once.
The adapter is responsible for:
  1. Index lifecycle and document CRUD
  2. Validating and lowering generic queries (via its ``QueryNormalizer``)
  3. Translating the generic schema (via its ``SchemaMapper``)
  4. Paginated and streamed search
  5. Reporting every failure as one of the six ``SearchError`` kinds
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable
from typing import Any, TypeVar

from pydantic import BaseModel, Field

from unisearch.adapters.base.exceptions import InvalidQueryError, SearchTimeoutError
from unisearch.adapters.base.normalizer import DEFAULT_PER_PAGE, BackendQuery, Pagination, QueryNormalizer
from unisearch.adapters.base.schema import SchemaMapper
from unisearch.adapters.base.stream import PageFetcher, Releaser, SearchStream
from unisearch.models.document import Document
from unisearch.models.query import SearchQuery
from unisearch.models.result import SearchResults
from unisearch.models.schema import Schema

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AdapterHealth(BaseModel):
    """Health status of a search adapter."""

    status: str = Field(description="Health status: healthy, degraded, unhealthy")
    latency_ms: int = Field(default=0, description="Latency of last health check in ms")
    last_check: str | None = Field(default=None, description="ISO timestamp of last health check")
    message: str | None = Field(default=None, description="Additional health message")


class SearchAdapter(ABC):
    """Abstract base class for search adapters.

    Subclasses implement the lifecycle operations, ``_execute`` (one page
    of search against the backend) and expose a normalizer and a schema
    mapper. ``search`` and ``stream_search`` are built on top of those.

    The adapter owns only its backend client; per-query state lives in the
    ``SearchStream`` objects it hands out.

    Args:
        default_per_page: Page size used when a query sets none.
        default_timeout_ms: Time budget for search operations when the
            query's ``config.timeout_ms`` is unset (``None`` = no limit).
        check_facets: Fetch the index schema before each faceted or sorted
            search so facet fields are validated locally instead of by the
            backend, and sorts and facets can target backend sub-fields.
    """

    def __init__(
        self,
        *,
        default_per_page: int = DEFAULT_PER_PAGE,
        default_timeout_ms: int | None = None,
        check_facets: bool = False,
    ) -> None:
        self.default_per_page = default_per_page
        self.default_timeout_ms = default_timeout_ms
        self.check_facets = check_facets

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique adapter name (e.g., 'opensearch', 'meilisearch')."""

    @property
    @abstractmethod
    def normalizer(self) -> QueryNormalizer:
        """The query normalizer for this backend."""

    @property
    @abstractmethod
    def schema_mapper(self) -> SchemaMapper[Any]:
        """The schema mapper for this backend."""

    # ── Lifecycle ────────────────────────────────────────────────────────

    @abstractmethod
    async def initialize(self) -> None:
        """Create the backend client. Called once before any operation."""

    @abstractmethod
    async def shutdown(self) -> None:
        """Close the backend client and release its connections."""

    @abstractmethod
    async def health_check(self) -> AdapterHealth:
        """Check the health of the search backend."""

    async def __aenter__(self) -> SearchAdapter:
        await self.initialize()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.shutdown()

    # ── Indexes ──────────────────────────────────────────────────────────

    @abstractmethod
    async def create_index(self, name: str, schema: Schema | None = None) -> None:
        """Create an index, optionally with a schema.

        Creating an index that already exists is a no-op when no schema is
        given or the existing schema is compatible with *schema*.

        Raises:
            InvalidQueryError: Malformed schema, or an existing index whose
                schema conflicts with *schema*.
            UnsupportedError: A field type the backend cannot represent.
        """

    @abstractmethod
    async def delete_index(self, name: str) -> None:
        """Delete an index.

        Raises:
            IndexNotFoundError: If the index does not exist.
        """

    @abstractmethod
    async def list_indexes(self) -> list[str]:
        """Return the names of all indexes, sorted."""

    @abstractmethod
    async def get_schema(self, index: str) -> Schema:
        """Read an index's schema back as a generic ``Schema``."""

    @abstractmethod
    async def update_schema(self, index: str, schema: Schema) -> None:
        """Apply *schema* to an existing index."""

    # ── Documents ────────────────────────────────────────────────────────

    async def upsert(self, index: str, document: Document) -> None:
        """Create or replace one document."""
        await self.upsert_many(index, [document])

    @abstractmethod
    async def upsert_many(self, index: str, documents: list[Document]) -> None:
        """Create or replace documents by id. See each adapter for its partial-failure policy."""

    async def delete(self, index: str, doc_id: str) -> None:
        """Delete one document. Missing ids are ignored."""
        await self.delete_many(index, [doc_id])

    @abstractmethod
    async def delete_many(self, index: str, ids: list[str]) -> None:
        """Delete documents by id. Missing ids are ignored."""

    @abstractmethod
    async def get(self, index: str, doc_id: str) -> Document | None:
        """Fetch a document by id, ``None`` if it does not exist."""

    # ── Search ───────────────────────────────────────────────────────────

    @abstractmethod
    async def _execute(self, index: str, body: dict[str, Any], pagination: Pagination) -> SearchResults:
        """Run one windowed search request and parse the response."""

    async def search(self, index: str, query: SearchQuery) -> SearchResults:
        """Execute a query and return one page of results.

        Raises:
            InvalidQueryError: Bad pagination, filter, sort or facet.
            UnsupportedError: A construct the backend cannot express.
            IndexNotFoundError: If the index does not exist.
            SearchTimeoutError: If the time budget is exceeded.
        """
        timeout = self._timeout_seconds(query)

        async def run() -> SearchResults:
            backend_query = await self._prepare(index, query)
            body = self.normalizer.first_window(backend_query)
            return await self._execute(index, body, backend_query.pagination)

        return await self._bounded(run(), timeout, f"search on '{index}'")

    async def stream_search(self, index: str, query: SearchQuery) -> SearchStream:
        """Validate *query* and return a stream over all of its results.

        The stream starts at the query's own window (``offset`` or
        ``page``) and requests ``per_page`` hits per batch. No backend
        search happens until the stream is first polled.
        """
        timeout = self._timeout_seconds(query)
        backend_query = await self._bounded(self._prepare(index, query), timeout, f"stream on '{index}'")
        pagination = backend_query.pagination
        fetch_page, release = self._open_cursor(index, backend_query)

        return SearchStream(
            fetch_page,
            offset=pagination.offset,
            page_size=pagination.limit,
            timeout=timeout,
            label=f"{self.name}:{index}",
            release=release,
        )

    def _open_cursor(self, index: str, backend_query: BackendQuery) -> tuple[PageFetcher, Releaser | None]:
        """Return the page fetcher a stream walks, and what frees its backend state.

        The default walks offset windows and holds no backend state.
        """
        return self._window_fetcher(index, backend_query), None

    def _window_fetcher(self, index: str, backend_query: BackendQuery) -> PageFetcher:
        async def fetch_page(offset: int, limit: int) -> SearchResults:
            body = self.normalizer.with_window(backend_query, offset, limit)
            return await self._execute(index, body, Pagination(offset=offset, limit=limit))

        return fetch_page

    # ── Helpers ──────────────────────────────────────────────────────────

    async def _prepare(self, index: str, query: SearchQuery) -> BackendQuery:
        schema = None
        if self.check_facets and (query.facets or query.sort):
            schema = await self.get_schema(index)
        return self.normalizer.normalize(query, schema)

    def _timeout_seconds(self, query: SearchQuery | None = None) -> float | None:
        timeout_ms = query.config.timeout_ms if query is not None and query.config is not None else None
        if timeout_ms is None:
            timeout_ms = self.default_timeout_ms
        if timeout_ms is None:
            return None
        if timeout_ms <= 0:
            raise InvalidQueryError("'timeout_ms' must be > 0")
        return timeout_ms / 1000

    @staticmethod
    async def _bounded(awaitable: Awaitable[T], timeout: float | None, context: str) -> T:
        """Await *awaitable* within *timeout* seconds."""
        if timeout is None:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout)
        except asyncio.TimeoutError as e:
            logger.warning("%s exceeded %.3fs", context, timeout)
            raise SearchTimeoutError(f"{context} exceeded {timeout:.3f}s") from e

    @staticmethod
    def _check_documents(documents: list[Document]) -> None:
        """Validate a batch before any backend call."""
        for doc in documents:
            if not doc.id:
                raise InvalidQueryError("Document id must not be empty")
