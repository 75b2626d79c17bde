"""Search result models — What every adapter hands back to callers."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class SearchHit(BaseModel):
    """A single matching document.

    ``score`` is on the backend's own scale and is not comparable across
    backends.
    """

    id: str = Field(description="Document identifier")
    score: float | None = Field(default=None, description="Backend relevance score")
    content: dict[str, Any] | None = Field(default=None, description="Retrieved document content")
    highlights: dict[str, list[str]] | None = Field(default=None, description="Highlighted snippets per field")


class SearchResults(BaseModel):
    """One page of search results.

    ``total`` is ``None`` when the backend cannot cheaply report an exact
    match count, which is different from a zero-hit result (``total == 0``).
    """

    total: int | None = Field(default=None, description="Exact number of matching documents")
    page: int | None = Field(default=None, description="Echoed page number")
    per_page: int | None = Field(default=None, description="Echoed page size")
    hits: list[SearchHit] = Field(default_factory=list, description="Hits in backend order")
    facets: dict[str, dict[str, int]] | None = Field(default=None, description="Facet value counts per field")
    took_ms: int | None = Field(default=None, description="Backend processing time in ms")
