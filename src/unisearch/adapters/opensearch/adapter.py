"""OpenSearch adapter — Full-text and faceted search for OpenSearch (v2+).

OpenSearch is an AWS-maintained fork of Elasticsearch with a compatible
query DSL and API surface. This adapter uses ``opensearch-py`` (async).

Policies:
  - ``create_index`` on an existing index is a no-op when the existing
    mapping is compatible with the requested schema.
  - ``upsert_many`` is best-effort: the bulk request writes every valid
    document, then the failed ids are reported as one ``InvalidQueryError``
    (``RateLimitedError`` when the cluster rejected them for load).
  - The client never retries on its own (``max_retries=0``).
  - Streams page through the scroll API and clear their scroll context
    when they end or are closed.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable
from datetime import UTC, datetime
from typing import Any

from opensearchpy import AsyncOpenSearch
from opensearchpy import exceptions as os_exc

from unisearch.adapters.base.adapter import AdapterHealth, SearchAdapter
from unisearch.adapters.base.errors import error_from_status, redact, translate_errors, translate_exception
from unisearch.adapters.base.exceptions import (
    IndexNotFoundError,
    InternalError,
    InvalidQueryError,
    RateLimitedError,
    SearchError,
    SearchTimeoutError,
    UnsupportedError,
)
from unisearch.adapters.base.normalizer import BackendQuery, Pagination
from unisearch.adapters.base.stream import PageFetcher, Releaser
from unisearch.adapters.opensearch.mapping import (
    OpenSearchQueryNormalizer,
    OpenSearchSchemaMapper,
    results_from_response,
)
from unisearch.models.document import Document
from unisearch.models.result import SearchResults
from unisearch.models.schema import Schema

logger = logging.getLogger(__name__)

SCROLL_KEEP_ALIVE = "1m"
"""How long a stream's scroll context survives between two fetches."""


def translate_opensearch_error(exc: BaseException, context: str = "") -> SearchError:
    """Translate an ``opensearch-py`` exception, falling back to the generic translator."""
    prefix = f"{context}: " if context else ""

    if isinstance(exc, os_exc.ConnectionTimeout):
        return SearchTimeoutError(f"{prefix}request timed out")
    if isinstance(exc, os_exc.ConnectionError):
        return InternalError(redact(f"{prefix}connection failed: {exc.error}"))
    if isinstance(exc, os_exc.TransportError):
        status = exc.status_code if isinstance(exc.status_code, int) else 500
        code, reason = _error_detail(exc)
        if reason and "fielddata" in reason.lower():
            return UnsupportedError(redact(reason))
        return error_from_status(status, reason, code)
    return translate_exception(exc, context)


def _error_detail(exc: os_exc.TransportError) -> tuple[str | None, str | None]:
    """Return ``(type, reason)`` of the most specific cause in an error body."""
    info = exc.info
    error = info.get("error") if isinstance(info, dict) else None
    if isinstance(error, dict):
        root_causes = error.get("root_cause") or []
        cause = root_causes[0] if root_causes and isinstance(root_causes[0], dict) else error
        return cause.get("type") or error.get("type"), cause.get("reason") or error.get("reason")
    if isinstance(exc.error, str) and exc.error.isidentifier():
        return exc.error, None
    return None, None


def _check_index_name(name: str) -> None:
    if not name or any(c in name for c in "*,? "):
        raise InvalidQueryError(f"Invalid index name '{name}'")


class ScrollCursor:
    """Walks one query's results through the scroll API.

    The scroll is opened by the first fetch and cleared once the last page
    arrives or the stream is closed. A stream that starts past the first hit,
    or whose scroll request is refused, falls back to ``from``/``size``
    windows, which stop at the index's ``max_result_window``.
    """

    def __init__(
        self,
        client: Any,
        index: str,
        body: dict[str, Any],
        fallback: PageFetcher,
        *,
        keep_alive: str = SCROLL_KEEP_ALIVE,
        scroll: bool = True,
    ) -> None:
        self._client = client
        self._index = index
        self._body = body
        self._fallback = fallback
        self._keep_alive = keep_alive
        self._scrolling = scroll
        self._scroll_id: str | None = None

    async def fetch(self, offset: int, limit: int) -> SearchResults:
        if not self._scrolling:
            return await self._fallback(offset, limit)

        if self._scroll_id is None:
            try:
                response = await self._request(
                    self._client.search(index=self._index, body={**self._body, "size": limit}, scroll=self._keep_alive)
                )
            except (InternalError, UnsupportedError) as e:
                logger.warning("Scroll on %s refused (%s), paging with from/size", self._index, e)
                self._scrolling = False
                return await self._fallback(offset, limit)
        else:
            response = await self._request(
                self._client.scroll(body={"scroll": self._keep_alive, "scroll_id": self._scroll_id})
            )

        self._scroll_id = response.get("_scroll_id") or self._scroll_id
        with translate_errors(f"Scroll on '{self._index}' returned a malformed response"):
            results = results_from_response(response, Pagination(offset=offset, limit=limit))
        end = offset + len(results.hits)
        if len(results.hits) < limit or (results.total is not None and end >= results.total):
            await self.release()
        return results

    async def release(self) -> None:
        """Clear the scroll context, if one is open."""
        scroll_id, self._scroll_id = self._scroll_id, None
        if scroll_id is None:
            return
        try:
            await self._client.clear_scroll(body={"scroll_id": [scroll_id]})
        except Exception as e:
            # The context still expires after its keep-alive.
            logger.warning("Failed to clear scroll on %s: %s", self._index, translate_opensearch_error(e))

    async def _request(self, call: Awaitable[Any]) -> Any:
        with translate_errors(f"Scroll on '{self._index}' failed", translate_opensearch_error):
            return await call


class OpenSearchAdapter(SearchAdapter):
    """Search adapter for OpenSearch (v2+).

    Args:
        hosts: List of OpenSearch node URLs.
        username: Optional HTTP basic-auth username.
        password: Optional HTTP basic-auth password.
        api_key: Optional API key, sent as ``Authorization: ApiKey ...``.
        verify_certs: Whether to verify TLS certificates.
        timeout: Transport timeout in seconds.
        refresh: ``refresh`` value for writes (``"wait_for"`` makes writes
            visible to search before the call returns).
        default_per_page: Page size used when a query sets none.
        default_timeout_ms: Search time budget when a query sets none.
        check_facets: Validate facet fields against the index schema.
        **kwargs: Additional keyword arguments forwarded to ``AsyncOpenSearch``.
    """

    def __init__(
        self,
        hosts: list[str] | None = None,
        username: str | None = None,
        password: str | None = None,
        api_key: str | None = None,
        verify_certs: bool = True,
        timeout: float = 30.0,
        refresh: bool | str = "wait_for",
        *,
        default_per_page: int = 20,
        default_timeout_ms: int | None = None,
        check_facets: bool = False,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            default_per_page=default_per_page,
            default_timeout_ms=default_timeout_ms,
            check_facets=check_facets,
        )
        self._hosts = hosts or ["http://localhost:9200"]
        self._username = username
        self._password = password
        self._api_key = api_key
        self._verify_certs = verify_certs
        self._timeout = timeout
        self._refresh = refresh
        self._extra_kwargs = kwargs
        self._client: Any = None
        self._normalizer = OpenSearchQueryNormalizer(default_per_page)
        self._schema_mapper = OpenSearchSchemaMapper()

    @property
    def name(self) -> str:
        return "opensearch"

    @property
    def normalizer(self) -> OpenSearchQueryNormalizer:
        return self._normalizer

    @property
    def schema_mapper(self) -> OpenSearchSchemaMapper:
        return self._schema_mapper

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Create and verify the ``AsyncOpenSearch`` client."""
        client_kwargs: dict[str, Any] = {
            "hosts": self._hosts,
            "verify_certs": self._verify_certs,
            "ssl_show_warn": False,
            "timeout": self._timeout,
            "max_retries": 0,
            "retry_on_timeout": False,
        }
        if self._username and self._password:
            client_kwargs["http_auth"] = (self._username, self._password)
        if self._api_key:
            client_kwargs["headers"] = {"Authorization": f"ApiKey {self._api_key}"}
        client_kwargs.update(self._extra_kwargs)

        self._client = AsyncOpenSearch(**client_kwargs)
        with translate_errors("Failed to connect to OpenSearch", translate_opensearch_error):
            info = await self._client.info()
        version = info.get("version", {}).get("number", "unknown")
        cluster = info.get("cluster_name", "unknown")
        logger.info("Connected to OpenSearch cluster: %s (v%s)", cluster, version)

    async def shutdown(self) -> None:
        """Close the OpenSearch client."""
        if self._client:
            await self._client.close()
            self._client = None

    def _require_client(self) -> Any:
        if not self._client:
            raise InternalError("OpenSearch client not initialized.")
        return self._client

    # ── Indexes ──────────────────────────────────────────────────────────

    async def create_index(self, name: str, schema: Schema | None = None) -> None:
        _check_index_name(name)
        client = self._require_client()
        body: dict[str, Any] = {}
        if schema is not None:
            body["mappings"] = self._schema_mapper.to_backend(schema)

        try:
            await client.indices.create(index=name, body=body)
        except os_exc.RequestError as e:
            if e.error != "resource_already_exists_exception":
                raise translate_opensearch_error(e, f"Failed to create index '{name}'") from e
        except Exception as e:
            raise translate_opensearch_error(e, f"Failed to create index '{name}'") from e
        else:
            logger.info("Created index: %s", name)
            return

        if schema is None:
            logger.debug("Index %s already exists", name)
            return
        existing = await self.get_schema(name)
        if not self._schema_mapper.is_compatible(existing, schema):
            raise InvalidQueryError(f"Index '{name}' already exists with an incompatible schema")
        logger.debug("Index %s already exists with a compatible schema", name)

    async def delete_index(self, name: str) -> None:
        _check_index_name(name)
        client = self._require_client()
        with translate_errors(f"Failed to delete index '{name}'", translate_opensearch_error):
            await client.indices.delete(index=name)
        logger.info("Deleted index: %s", name)

    async def list_indexes(self) -> list[str]:
        client = self._require_client()
        with translate_errors("Failed to list indexes", translate_opensearch_error):
            rows = await client.cat.indices(format="json")
            names = [row["index"] for row in rows]
        return sorted(n for n in names if not n.startswith("."))

    async def get_schema(self, index: str) -> Schema:
        _check_index_name(index)
        client = self._require_client()
        with translate_errors(f"Failed to read mapping of '{index}'", translate_opensearch_error):
            response = await client.indices.get_mapping(index=index)
            # An alias resolves to its concrete index name.
            entry = response.get(index) or next(iter(response.values()))
            mappings = entry.get("mappings") or {}
        return self._schema_mapper.from_backend(mappings)

    async def update_schema(self, index: str, schema: Schema) -> None:
        _check_index_name(index)
        client = self._require_client()
        spec = self._schema_mapper.to_backend(schema)
        with translate_errors(f"Failed to update mapping of '{index}'", translate_opensearch_error):
            await client.indices.put_mapping(index=index, body=spec)
        logger.info("Updated mapping of index: %s", index)

    # ── Documents ────────────────────────────────────────────────────────

    async def upsert_many(self, index: str, documents: list[Document]) -> None:
        """Index documents with one bulk request (best-effort, see module docstring)."""
        _check_index_name(index)
        self._check_documents(documents)
        client = self._require_client()
        if not documents:
            return
        await self._ensure_index(index)

        actions: list[dict[str, Any]] = []
        for doc in documents:
            actions.append({"index": {"_index": index, "_id": doc.id}})
            actions.append(doc.content)

        with translate_errors(f"Bulk upsert into '{index}' failed", translate_opensearch_error):
            response = await client.bulk(body=actions, refresh=self._refresh)

        failures = [
            item["index"] for item in response.get("items", []) if "error" in item.get("index", {})
        ]
        if not failures:
            logger.debug("Upserted %d documents into %s", len(documents), index)
            return

        ids = ", ".join(str(f.get("_id")) for f in failures)
        first = failures[0].get("error") or {}
        reason = first.get("reason") if isinstance(first, dict) else str(first)
        logger.warning("Bulk upsert into %s: %d of %d documents failed", index, len(failures), len(documents))
        if any(f.get("status") == 429 for f in failures):
            raise RateLimitedError(f"Bulk upsert throttled for ids: {ids}")
        raise InvalidQueryError(redact(f"{len(failures)} of {len(documents)} documents rejected ({ids}): {reason}"))

    async def delete_many(self, index: str, ids: list[str]) -> None:
        _check_index_name(index)
        client = self._require_client()
        await self._ensure_index(index)
        if not ids:
            return

        actions = [{"delete": {"_index": index, "_id": doc_id}} for doc_id in ids]
        with translate_errors(f"Bulk delete from '{index}' failed", translate_opensearch_error):
            response = await client.bulk(body=actions, refresh=self._refresh)

        # A missing id answers 404 "not_found"; deleting it is a no-op.
        failures = [
            item["delete"]
            for item in response.get("items", [])
            if "error" in item.get("delete", {}) and item["delete"].get("status") != 404
        ]
        if failures:
            first = failures[0]
            error = first.get("error") or {}
            raise error_from_status(
                int(first.get("status", 500)),
                error.get("reason") if isinstance(error, dict) else str(error),
                error.get("type") if isinstance(error, dict) else None,
            )
        logger.debug("Deleted %d ids from %s", len(ids), index)

    async def get(self, index: str, doc_id: str) -> Document | None:
        _check_index_name(index)
        client = self._require_client()
        try:
            response = await client.get(index=index, id=doc_id)
        except os_exc.NotFoundError as e:
            if e.error == "index_not_found_exception":
                raise IndexNotFoundError(f"Index '{index}' not found") from e
            return None
        except Exception as e:
            raise translate_opensearch_error(e, f"Failed to fetch '{doc_id}' from '{index}'") from e

        if not response.get("found", True):
            return None
        return Document(id=str(response["_id"]), content=response.get("_source") or {})

    async def _ensure_index(self, index: str) -> None:
        """Raise ``IndexNotFoundError`` for a missing index (bulk writes would auto-create it)."""
        client = self._require_client()
        with translate_errors(f"Failed to check index '{index}'", translate_opensearch_error):
            exists = await client.indices.exists(index=index)
        if not exists:
            raise IndexNotFoundError(f"Index '{index}' not found")

    # ── Search ───────────────────────────────────────────────────────────

    async def _execute(self, index: str, body: dict[str, Any], pagination: Pagination) -> SearchResults:
        _check_index_name(index)
        client = self._require_client()
        with translate_errors(f"Search on '{index}' failed", translate_opensearch_error):
            response = await client.search(index=index, body=body)
            return results_from_response(response, pagination)

    def _open_cursor(self, index: str, backend_query: BackendQuery) -> tuple[PageFetcher, Releaser | None]:
        """Streams read through a scroll context; see ``ScrollCursor``."""
        _check_index_name(index)
        cursor = ScrollCursor(
            self._require_client(),
            index,
            backend_query.body,
            self._window_fetcher(index, backend_query),
            scroll=backend_query.pagination.offset == 0,
        )
        return cursor.fetch, cursor.release

    # ── Health ───────────────────────────────────────────────────────────

    async def health_check(self) -> AdapterHealth:
        """Check OpenSearch cluster health."""
        if not self._client:
            return AdapterHealth(status="unhealthy", message="Client not initialized")

        try:
            start = time.monotonic()
            health = await self._client.cluster.health()
            latency_ms = int((time.monotonic() - start) * 1000)
        except Exception as e:
            error = translate_opensearch_error(e, "Health check failed")
            return AdapterHealth(status="unhealthy", message=str(error))

        status_map = {"green": "healthy", "yellow": "degraded", "red": "unhealthy"}
        return AdapterHealth(
            status=status_map.get(health.get("status", "red"), "unhealthy"),
            latency_ms=latency_ms,
            last_check=datetime.now(UTC).isoformat(),
            message=f"Cluster: {health.get('cluster_name')}, Nodes: {health.get('number_of_nodes')}",
        )
