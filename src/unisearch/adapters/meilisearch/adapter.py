"""Meilisearch adapter — Instant, typo-tolerant search over the REST API.

This adapter communicates with Meilisearch using ``httpx``. Writes are
asynchronous on the server: each one enqueues a task which is polled until
it finishes (``wait_for_task``).

Policies:
  - ``create_index`` on an existing index is a no-op when the existing
    schema is compatible with the requested one.
  - ``upsert_many`` is all-or-nothing: a batch is one indexing task, and a
    failed task writes nothing.
  - Writes never create an index implicitly; a missing index is reported
    as ``IndexNotFoundError``.
  - The generic schema given to ``create_index`` or ``update_schema`` is
    stored in the ``unisearch-schemas`` index, which ``list_indexes`` hides,
    so field types survive ``get_schema``.

Usage::

    async with MeiliSearchAdapter(base_url="http://localhost:7700", api_key="masterKey") as adapter:
        await adapter.create_index("books")
        await adapter.upsert("books", Document(id="1", content={"title": "Dune"}))
        results = await adapter.search("books", SearchQuery(q="dune"))
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import UTC, datetime
from typing import Any
from urllib.parse import quote

import httpx

from unisearch.adapters.base.adapter import AdapterHealth, SearchAdapter
from unisearch.adapters.base.errors import error_body, error_from_status, translate_errors
from unisearch.adapters.base.exceptions import (
    IndexNotFoundError,
    InternalError,
    InvalidQueryError,
    SearchError,
    SearchTimeoutError,
)
from unisearch.adapters.base.normalizer import Pagination
from unisearch.adapters.meilisearch.mapping import (
    DEFAULT_PRIMARY_KEY,
    MeiliIndexSpec,
    MeiliQueryNormalizer,
    MeiliSchemaMapper,
    document_payload,
    results_from_response,
    split_document,
)
from unisearch.models.document import Document
from unisearch.models.result import SearchResults
from unisearch.models.schema import Schema

logger = logging.getLogger(__name__)

TASK_POLL_INITIAL = 0.1
TASK_POLL_MAX = 5.0
LIST_PAGE_SIZE = 100
SCHEMA_INDEX = "unisearch-schemas"
"""Companion index holding the generic schema of every index created with one."""

# Task ``error.type`` → HTTP status it would have been reported with.
_TASK_ERROR_STATUS = {"invalid_request": 400, "auth": 403, "internal": 500, "system": 500}


def task_error(task: dict[str, Any]) -> SearchError:
    """Translate a failed task into a ``SearchError``."""
    error = task.get("error") or {}
    status = _TASK_ERROR_STATUS.get(error.get("type", ""), 500)
    return error_from_status(status, error.get("message"), error.get("code"))


class MeiliSearchAdapter(SearchAdapter):
    """Search adapter for Meilisearch.

    Args:
        base_url: Meilisearch instance URL, e.g. ``"http://localhost:7700"``.
        api_key: Master key or API key for authentication.
        timeout: HTTP request timeout in seconds.
        task_timeout: Maximum seconds to wait for an indexing task.
        default_per_page: Page size used when a query sets none.
        default_timeout_ms: Search time budget when a query sets none.
        check_facets: Validate facet fields against the index schema.
        transport: Optional ``httpx`` transport (used by tests).
    """

    def __init__(
        self,
        base_url: str = "http://localhost:7700",
        api_key: str | None = None,
        timeout: float = 30.0,
        task_timeout: float = 30.0,
        *,
        default_per_page: int = 20,
        default_timeout_ms: int | None = None,
        check_facets: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(
            default_per_page=default_per_page,
            default_timeout_ms=default_timeout_ms,
            check_facets=check_facets,
        )
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._task_timeout = task_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._primary_keys: dict[str, str] = {}
        self._schema_index_ready = False
        self._normalizer = MeiliQueryNormalizer(default_per_page)
        self._schema_mapper = MeiliSchemaMapper()

    @property
    def name(self) -> str:
        return "meilisearch"

    @property
    def normalizer(self) -> MeiliQueryNormalizer:
        return self._normalizer

    @property
    def schema_mapper(self) -> MeiliSchemaMapper:
        return self._schema_mapper

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Create an ``httpx.AsyncClient`` and verify the connection."""
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(self._timeout),
            headers=headers,
            transport=self._transport,
        )

        data = await self._request("GET", "/health", "Failed to connect to Meilisearch")
        if data.get("status") != "available":
            raise InternalError(f"Meilisearch not available: {data.get('status')}")
        logger.info("Connected to Meilisearch at %s", self._base_url)

    async def shutdown(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
        self._primary_keys.clear()
        self._schema_index_ready = False

    # ── Indexes ──────────────────────────────────────────────────────────

    async def create_index(self, name: str, schema: Schema | None = None) -> None:
        spec = self._schema_mapper.to_backend(schema) if schema is not None else None
        primary_key = (spec.primary_key if spec else None) or DEFAULT_PRIMARY_KEY

        task = await self._request(
            "POST",
            "/indexes",
            f"Failed to create index '{name}'",
            json={"uid": name, "primaryKey": primary_key},
        )
        info = await self._poll_task(task)
        if info.get("status") == "failed" and (info.get("error") or {}).get("code") == "index_already_exists":
            await self._check_existing(name, schema)
            return
        self._raise_for_task(info)

        if spec is not None:
            await self._apply_settings(name, spec)
            await self._record_schema(name, spec)
        else:
            # A record left behind by an earlier index of the same name no longer applies.
            await self._forget_schema(name)
        self._primary_keys[name] = primary_key
        logger.info("Created index: %s", name)

    async def _check_existing(self, name: str, schema: Schema | None) -> None:
        if schema is None:
            logger.debug("Index %s already exists", name)
            return
        existing = await self.get_schema(name)
        if not self._schema_mapper.is_compatible(existing, schema):
            raise InvalidQueryError(f"Index '{name}' already exists with an incompatible schema")
        logger.debug("Index %s already exists with a compatible schema", name)

    async def delete_index(self, name: str) -> None:
        task = await self._request("DELETE", self._index_path(name), f"Failed to delete index '{name}'")
        await self.wait_for_task(task)
        self._primary_keys.pop(name, None)
        await self._forget_schema(name)
        logger.info("Deleted index: %s", name)

    async def list_indexes(self) -> list[str]:
        names: list[str] = []
        offset = 0
        while True:
            data = await self._request(
                "GET",
                "/indexes",
                "Failed to list indexes",
                params={"offset": offset, "limit": LIST_PAGE_SIZE},
            )
            batch = data.get("results") or []
            names.extend(entry["uid"] for entry in batch if entry["uid"] != SCHEMA_INDEX)
            offset += len(batch)
            if not batch or offset >= data.get("total", offset):
                break
        return sorted(names)

    async def get_schema(self, index: str) -> Schema:
        primary_key = await self._primary_key(index)
        settings = await self._request(
            "GET", f"{self._index_path(index)}/settings", f"Failed to read settings of '{index}'"
        )
        recorded = await self._recorded_schema(index)
        return self._schema_mapper.from_backend(
            MeiliIndexSpec(primary_key=primary_key, settings=settings, recorded=recorded)
        )

    async def update_schema(self, index: str, schema: Schema) -> None:
        spec = self._schema_mapper.to_backend(schema)
        # Settings updates would create a missing index.
        current_key = await self._primary_key(index)
        if spec.primary_key is not None and spec.primary_key != current_key:
            raise InvalidQueryError(
                f"Cannot change primary key of '{index}' from '{current_key}' to '{spec.primary_key}'"
            )
        await self._apply_settings(index, spec)
        await self._record_schema(index, spec)
        logger.info("Updated settings of index: %s", index)

    async def _apply_settings(self, index: str, spec: MeiliIndexSpec) -> None:
        task = await self._request(
            "PATCH",
            f"{self._index_path(index)}/settings",
            f"Failed to update settings of '{index}'",
            json=spec.settings,
        )
        await self.wait_for_task(task)

    # ── Recorded schemas ─────────────────────────────────────────────────

    async def _record_schema(self, index: str, spec: MeiliIndexSpec) -> None:
        if spec.recorded is None:
            return
        await self._ensure_schema_index()
        task = await self._request(
            "POST",
            f"{self._index_path(SCHEMA_INDEX)}/documents",
            f"Failed to record the schema of '{index}'",
            json=[{"uid": index, "schema": spec.recorded.model_dump(mode="json")}],
        )
        await self.wait_for_task(task)

    async def _ensure_schema_index(self) -> None:
        if self._schema_index_ready:
            return
        task = await self._request(
            "POST",
            "/indexes",
            f"Failed to create index '{SCHEMA_INDEX}'",
            json={"uid": SCHEMA_INDEX, "primaryKey": "uid"},
        )
        info = await self._poll_task(task)
        if (info.get("error") or {}).get("code") != "index_already_exists":
            self._raise_for_task(info)
        self._schema_index_ready = True

    async def _recorded_schema(self, index: str) -> Schema | None:
        client = self._require_client()
        with translate_errors(f"Failed to read the recorded schema of '{index}'"):
            resp = await client.get(f"{self._index_path(SCHEMA_INDEX)}/documents/{quote(index, safe='')}")
            if resp.status_code == 404:
                return None
            resp.raise_for_status()
            return Schema.model_validate(resp.json()["schema"])

    async def _forget_schema(self, index: str) -> None:
        try:
            task = await self._request(
                "POST",
                f"{self._index_path(SCHEMA_INDEX)}/documents/delete-batch",
                f"Failed to drop the recorded schema of '{index}'",
                json=[index],
            )
            await self.wait_for_task(task)
        except IndexNotFoundError:
            self._schema_index_ready = False

    # ── Documents ────────────────────────────────────────────────────────

    async def upsert_many(self, index: str, documents: list[Document]) -> None:
        """Add or replace documents as one task (all-or-nothing)."""
        self._check_documents(documents)
        primary_key = await self._primary_key(index)
        if not documents:
            return

        payload = [document_payload(doc.id, doc.content, primary_key) for doc in documents]
        task = await self._request(
            "POST",
            f"{self._index_path(index)}/documents",
            f"Failed to upsert documents into '{index}'",
            json=payload,
        )
        await self.wait_for_task(task)
        logger.debug("Upserted %d documents into %s", len(documents), index)

    async def delete_many(self, index: str, ids: list[str]) -> None:
        await self._primary_key(index)
        if not ids:
            return
        task = await self._request(
            "POST",
            f"{self._index_path(index)}/documents/delete-batch",
            f"Failed to delete documents from '{index}'",
            json=list(ids),
        )
        await self.wait_for_task(task)
        logger.debug("Deleted %d ids from %s", len(ids), index)

    async def get(self, index: str, doc_id: str) -> Document | None:
        primary_key = await self._primary_key(index, cached=True)
        client = self._require_client()
        with translate_errors(f"Failed to fetch '{doc_id}' from '{index}'"):
            resp = await client.get(f"{self._index_path(index)}/documents/{quote(doc_id, safe='')}")
            if resp.status_code == 404:
                code, _ = error_body(resp)
                if code == "index_not_found":
                    self._primary_keys.pop(index, None)
                    raise IndexNotFoundError(f"Index '{index}' not found")
                return None
            resp.raise_for_status()
            found_id, content = split_document(resp.json(), primary_key)
        return Document(id=found_id, content=content)

    # ── Search ───────────────────────────────────────────────────────────

    async def _execute(self, index: str, body: dict[str, Any], pagination: Pagination) -> SearchResults:
        primary_key = await self._primary_key(index, cached=True)
        data = await self._request(
            "POST", f"{self._index_path(index)}/search", f"Search on '{index}' failed", json=body
        )
        with translate_errors(f"Search on '{index}' returned a malformed response"):
            return results_from_response(data, pagination, primary_key)

    # ── Tasks ────────────────────────────────────────────────────────────

    async def wait_for_task(self, task: dict[str, Any] | int) -> dict[str, Any]:
        """Wait for a task to finish and raise if it did not succeed.

        Args:
            task: The enqueued-task response, or a task uid.

        Returns:
            The finished task object.

        Raises:
            SearchError: Translated from the task's error when it failed.
            SearchTimeoutError: If the task did not finish within ``task_timeout``.
        """
        info = await self._poll_task(task)
        self._raise_for_task(info)
        return info

    async def _poll_task(self, task: dict[str, Any] | int) -> dict[str, Any]:
        """Poll until the task reaches a terminal status.

        Delays start at 100 ms and double up to 5 s; the total wait is
        bounded by ``task_timeout``.
        """
        uid = task if isinstance(task, int) else task.get("taskUid", task.get("uid"))
        if uid is None:
            raise InternalError("Meilisearch did not return a task uid")

        deadline = time.monotonic() + self._task_timeout
        delay = TASK_POLL_INITIAL
        attempt = 0
        while True:
            attempt += 1
            info = await self._request("GET", f"/tasks/{uid}", f"Failed to read task {uid}")
            status = info.get("status")
            if status in ("succeeded", "failed", "canceled"):
                return info

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise SearchTimeoutError(f"Task {uid} did not finish within {self._task_timeout:.1f}s")
            logger.debug("Task %s is %s, polling again in %.1fs (attempt %d)", uid, status, delay, attempt)
            await asyncio.sleep(min(delay, remaining))
            delay = min(delay * 2, TASK_POLL_MAX)

    @staticmethod
    def _raise_for_task(info: dict[str, Any]) -> None:
        status = info.get("status")
        if status == "failed":
            error = task_error(info)
            logger.debug("Task %s failed: %s", info.get("uid"), (info.get("error") or {}).get("code"))
            raise error
        if status == "canceled":
            raise InternalError(f"Task {info.get('uid')} was canceled")

    # ── Health ───────────────────────────────────────────────────────────

    async def health_check(self) -> AdapterHealth:
        """Check Meilisearch health via ``/health``."""
        if not self._client:
            return AdapterHealth(status="unhealthy", message="Client not initialized")

        try:
            start = time.monotonic()
            data = await self._request("GET", "/health", "Health check failed")
            latency_ms = int((time.monotonic() - start) * 1000)
        except SearchError as e:
            return AdapterHealth(status="unhealthy", message=str(e))

        status = "healthy" if data.get("status") == "available" else "degraded"
        return AdapterHealth(
            status=status,
            latency_ms=latency_ms,
            last_check=datetime.now(UTC).isoformat(),
            message=f"Meilisearch at {self._base_url}",
        )

    # ── Helpers ──────────────────────────────────────────────────────────

    def _require_client(self) -> httpx.AsyncClient:
        if not self._client:
            raise InternalError("Meilisearch client not initialized.")
        return self._client

    @staticmethod
    def _index_path(index: str) -> str:
        if not index:
            raise InvalidQueryError("Index name must not be empty")
        return f"/indexes/{quote(index, safe='')}"

    async def _request(self, method: str, path: str, context: str, **kwargs: Any) -> Any:
        client = self._require_client()
        with translate_errors(context):
            resp = await client.request(method, path, **kwargs)
            resp.raise_for_status()
            return resp.json() if resp.content else {}

    async def _primary_key(self, index: str, cached: bool = False) -> str:
        """Return the index's primary key, raising ``IndexNotFoundError`` if it does not exist.

        Writes always check the index: Meilisearch creates missing indexes on write.
        """
        if cached and index in self._primary_keys:
            return self._primary_keys[index]
        info = await self._request("GET", self._index_path(index), f"Failed to read index '{index}'")
        primary_key = info.get("primaryKey") or DEFAULT_PRIMARY_KEY
        self._primary_keys[index] = primary_key
        return primary_key


