"""Base query normalizer — Validate a ``SearchQuery`` and lower it for a backend.

All validation runs before any backend call. Backend subclasses only
implement the lowering (``build_body``) and the paging window
(``with_window``).
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from unisearch.adapters.base.exceptions import InvalidQueryError, UnsupportedError
from unisearch.models.query import SearchQuery
from unisearch.models.schema import Schema

logger = logging.getLogger(__name__)

DEFAULT_PER_PAGE = 20
"""Page size used when the query does not set ``per_page``."""


class Pagination(BaseModel):
    """Resolved paging window."""

    offset: int = Field(default=0, description="Number of hits to skip")
    limit: int = Field(default=DEFAULT_PER_PAGE, description="Hits per batch")
    page: int | None = Field(default=None, description="1-based page, set only for page addressing")


class BackendQuery(BaseModel):
    """A normalized query: backend request body plus its paging window."""

    body: dict[str, Any] = Field(default_factory=dict, description="Backend request body without paging")
    pagination: Pagination = Field(default_factory=Pagination)


class QueryNormalizer(ABC):
    """Abstract base class for backend query normalizers.

    Args:
        default_per_page: Page size used when the query does not set one.
    """

    #: ``provider_params`` keys this backend honors; other keys are ignored.
    provider_param_keys: frozenset[str] = frozenset()

    def __init__(self, default_per_page: int = DEFAULT_PER_PAGE) -> None:
        self.default_per_page = default_per_page

    def normalize(self, query: SearchQuery, schema: Schema | None = None) -> BackendQuery:
        """Validate *query* and lower it to the backend's shape.

        Args:
            query: The generic query.
            schema: The target index schema, when known. Used to check
                facet fields; without it the check is left to the backend.

        Raises:
            InvalidQueryError: On conflicting or incomplete pagination, or
                a facet on an unknown field.
            UnsupportedError: On a facet over a non-facetable field, or a
                construct the backend cannot express.
        """
        pagination = self.resolve_pagination(query)
        if schema is not None:
            self.check_facets(query.facets, schema)
        return BackendQuery(body=self.build_body(query, schema), pagination=pagination)

    def resolve_pagination(self, query: SearchQuery) -> Pagination:
        has_page = query.page is not None
        has_per_page = query.per_page is not None

        if (has_page or has_per_page) and query.offset is not None:
            raise InvalidQueryError("'offset' cannot be combined with 'page'/'per_page'")
        if has_page != has_per_page:
            raise InvalidQueryError("'page' and 'per_page' must be used together")

        if query.page is not None and query.per_page is not None:
            if query.page < 1:
                raise InvalidQueryError("'page' must be >= 1")
            if query.per_page < 1:
                raise InvalidQueryError("'per_page' must be >= 1")
            return Pagination(
                offset=(query.page - 1) * query.per_page,
                limit=query.per_page,
                page=query.page,
            )

        if query.offset is not None:
            if query.offset < 0:
                raise InvalidQueryError("'offset' must be >= 0")
            return Pagination(offset=query.offset, limit=self.default_per_page)

        return Pagination(offset=0, limit=self.default_per_page, page=1)

    @staticmethod
    def check_facets(facets: list[str], schema: Schema) -> None:
        for name in facets:
            field = schema.field(name)
            if field is None:
                raise InvalidQueryError(f"Facet field '{name}' is not part of the index schema")
            if not field.facet:
                raise UnsupportedError(f"Field '{name}' is not facetable")

    def provider_params(self, query: SearchQuery) -> dict[str, Any]:
        """Return the honored subset of ``config.provider_params``."""
        if query.config is None or not query.config.provider_params:
            return {}
        params = query.config.provider_params
        ignored = sorted(set(params) - self.provider_param_keys)
        if ignored:
            logger.debug("Ignoring unsupported provider params: %s", ignored)
        return {k: v for k, v in params.items() if k in self.provider_param_keys}

    @abstractmethod
    def build_body(self, query: SearchQuery, schema: Schema | None) -> dict[str, Any]:
        """Lower the non-paging parts of *query* into a request body."""

    @abstractmethod
    def with_window(self, backend_query: BackendQuery, offset: int, limit: int) -> dict[str, Any]:
        """Return a copy of the request body addressing ``[offset, offset + limit)``."""

    def first_window(self, backend_query: BackendQuery) -> dict[str, Any]:
        """Return the request body for the query's own paging window."""
        p = backend_query.pagination
        return self.with_window(backend_query, p.offset, p.limit)
