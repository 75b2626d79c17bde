"""Search stream — Pull-based, paginated result retrieval.

A ``SearchStream`` is bound to one index and one normalized query. It pulls
one batch at a time from a page fetcher, which walks offset windows or a
backend cursor such as an OpenSearch scroll:

    IDLE ──fetch──▶ FETCHING ──▶ READY ──deliver──▶ IDLE / FETCHING
                        │                    │
                        └──── end / error ───┴──▶ EXHAUSTED

Only one fetch is in flight per stream (held as an ``asyncio.Task``). The
stream is single-reader: calling it concurrently from several tasks gives
undefined ordering.

Failure policy: a backend error or a timeout terminates the stream. The
stream is exhausted from then on; the error stays on ``stream.error`` and is
raised once by the next ``blocking_get_next()`` call.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from enum import Enum

from unisearch.adapters.base.errors import translate_exception
from unisearch.adapters.base.exceptions import SearchError, SearchTimeoutError
from unisearch.adapters.base.normalizer import DEFAULT_PER_PAGE
from unisearch.models.result import SearchHit, SearchResults

logger = logging.getLogger(__name__)

PageFetcher = Callable[[int, int], Awaitable[SearchResults]]
"""``fetch(offset, limit)`` returning one page of results."""

Releaser = Callable[[], Awaitable[None]]
"""Frees server-side cursor state held for a stream."""


class StreamState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    READY = "ready"
    EXHAUSTED = "exhausted"


class SearchStream:
    """Stateful cursor over a backend's paginated results.

    Args:
        fetch_page: Coroutine function fetching ``limit`` hits at ``offset``.
        offset: Position of the first hit to deliver.
        page_size: Hits requested per batch.
        timeout: Budget in seconds for each backend fetch (``None`` = no limit).
        label: Short description used in log messages.
        release: Coroutine function freeing backend cursor state, awaited by
            ``aclose()``.

    Example::

        stream = await adapter.stream_search("books", SearchQuery(q="dune"))
        async with stream:
            while batch := await stream.blocking_get_next():
                handle(batch)
    """

    def __init__(
        self,
        fetch_page: PageFetcher,
        *,
        offset: int = 0,
        page_size: int = DEFAULT_PER_PAGE,
        timeout: float | None = None,
        label: str = "",
        release: Releaser | None = None,
    ) -> None:
        self._fetch_page = fetch_page
        self._offset = offset
        self._page_size = page_size
        self._timeout = timeout
        self._label = label
        self._release = release

        self._state = StreamState.IDLE
        self._task: asyncio.Task[SearchResults] | None = None
        self._buffer: list[SearchHit] | None = None
        self._end_reached = False
        self._pending_error: SearchError | None = None
        self._error: SearchError | None = None

    # ── Introspection ────────────────────────────────────────────────────

    @property
    def state(self) -> StreamState:
        self._collect()
        return self._state

    @property
    def exhausted(self) -> bool:
        """``True`` once no further batch will ever be delivered.

        A stream terminated by a failure is exhausted too; check ``error``.
        """
        self._collect()
        return self._state is StreamState.EXHAUSTED

    @property
    def error(self) -> SearchError | None:
        """The error that terminated the stream, if any."""
        self._collect()
        return self._error

    @property
    def position(self) -> int:
        """Offset of the next hit the stream will request."""
        return self._offset

    # ── Retrieval ────────────────────────────────────────────────────────

    def get_next(self) -> list[SearchHit] | None:
        """Return the next batch if one is buffered, without waiting.

        Returns ``None`` when no batch is available yet (a fetch is started
        or still in flight) and whenever the stream is exhausted. Never
        raises a ``SearchError``; failures are buffered for
        ``blocking_get_next()``.

        Must be called from within a running event loop.
        """
        self._collect()
        if self._state is StreamState.READY:
            return self._deliver(prefetch=True)
        if self._state is StreamState.IDLE:
            self._start_fetch()
        return None

    async def blocking_get_next(self) -> list[SearchHit]:
        """Wait for the next batch.

        Returns:
            The next batch of hits, or an empty list once exhausted.

        Raises:
            SearchError: The buffered failure that terminated the stream
                (``SearchTimeoutError`` when the fetch exceeded its budget).
                Raised once; later calls return ``[]``.
        """
        self._collect()
        if self._state is StreamState.READY:
            return self._deliver(prefetch=False)
        self._raise_pending()
        if self._state is StreamState.EXHAUSTED:
            return []

        if self._state is StreamState.IDLE:
            self._start_fetch()
        if self._task is not None:
            await asyncio.wait({self._task})

        self._collect()
        if self._state is StreamState.READY:
            return self._deliver(prefetch=False)
        self._raise_pending()
        return []

    def close(self) -> None:
        """Abandon any in-flight fetch and drop buffered hits.

        Backend cursor state is left to expire; ``aclose()`` frees it.
        """
        if self._task is not None:
            if self._task.done():
                # Mark the outcome as retrieved; it is discarded with the stream.
                if not self._task.cancelled():
                    self._task.exception()
            else:
                self._task.cancel()
        self._task = None
        self._buffer = None
        self._pending_error = None
        self._state = StreamState.EXHAUSTED

    async def aclose(self) -> None:
        """Close the stream, wait for a cancelled fetch to unwind and free the backend cursor."""
        task = self._task
        self.close()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        if self._release is not None:
            release, self._release = self._release, None
            await release()

    async def __aenter__(self) -> SearchStream:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def __aiter__(self) -> AsyncIterator[list[SearchHit]]:
        while True:
            batch = await self.blocking_get_next()
            if not batch:
                return
            yield batch

    # ── Internals ────────────────────────────────────────────────────────

    def _start_fetch(self) -> None:
        loop = asyncio.get_running_loop()
        self._state = StreamState.FETCHING
        self._task = loop.create_task(self._fetch(self._offset, self._page_size))
        logger.debug("Stream %s fetching offset=%d limit=%d", self._label, self._offset, self._page_size)

    async def _fetch(self, offset: int, limit: int) -> SearchResults:
        if self._timeout is None:
            return await self._fetch_page(offset, limit)
        try:
            return await asyncio.wait_for(self._fetch_page(offset, limit), self._timeout)
        except asyncio.TimeoutError as e:
            raise SearchTimeoutError(f"Stream fetch exceeded {self._timeout:.3f}s") from e

    def _collect(self) -> None:
        """Fold a finished fetch into the state machine."""
        if self._state is not StreamState.FETCHING or self._task is None or not self._task.done():
            return

        task, self._task = self._task, None
        if task.cancelled():
            self._state = StreamState.EXHAUSTED
            return

        exc = task.exception()
        if exc is not None:
            error = translate_exception(exc, "Stream fetch failed")
            logger.warning("Stream %s terminated: %s (%s)", self._label, error.kind.value, error)
            self._error = error
            self._pending_error = error
            self._state = StreamState.EXHAUSTED
            return

        results = task.result()
        hits = results.hits
        self._offset += len(hits)
        if not hits:
            self._state = StreamState.EXHAUSTED
            return

        self._end_reached = len(hits) < self._page_size or (
            results.total is not None and self._offset >= results.total
        )
        self._buffer = hits
        self._state = StreamState.READY

    def _deliver(self, prefetch: bool) -> list[SearchHit]:
        batch, self._buffer = self._buffer or [], None
        if self._end_reached:
            self._state = StreamState.EXHAUSTED
        else:
            self._state = StreamState.IDLE
            if prefetch:
                self._start_fetch()
        return batch

    def _raise_pending(self) -> None:
        if self._pending_error is not None:
            error, self._pending_error = self._pending_error, None
            raise error
