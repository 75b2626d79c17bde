"""Query and search request models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class HighlightConfig(BaseModel):
    """Options controlling highlighted snippets."""

    fields: list[str] = Field(default_factory=list, description="Fields to highlight (empty = backend default)")
    pre_tag: str | None = Field(default=None, description="Marker inserted before a match")
    post_tag: str | None = Field(default=None, description="Marker inserted after a match")
    max_length: int | None = Field(default=None, description="Maximum snippet length")


class SearchConfig(BaseModel):
    """Tuning knobs. Backends honor them on a best-effort basis."""

    timeout_ms: int | None = Field(default=None, description="Per-operation time budget in milliseconds")
    boost_fields: dict[str, float] = Field(default_factory=dict, description="Per-field boost weights")
    attributes_to_retrieve: list[str] = Field(default_factory=list, description="Explicit attribute projection")
    language: str | None = Field(default=None, description="Language hint (advisory)")
    typo_tolerance: bool | None = Field(default=None, description="Enable or disable typo tolerance")
    exact_match_boost: float | None = Field(default=None, description="Boost factor for exact phrase matches")
    provider_params: dict[str, Any] | None = Field(
        default=None,
        description="Opaque backend-specific parameters (see each adapter for honored keys)",
    )


class SearchQuery(BaseModel):
    """A generic search request.

    Pagination is addressed either by ``page`` + ``per_page`` or by
    ``offset``; the two modes are mutually exclusive. Leaving all three
    unset means the first page with the backend default page size.
    """

    q: str | None = Field(default=None, description="Free-text term (None = match all)")
    filters: list[str] = Field(default_factory=list, description="Backend-grammar filter expressions")
    sort: list[str] = Field(default_factory=list, description="Sort expressions")
    facets: list[str] = Field(default_factory=list, description="Fields to aggregate facet counts for")
    page: int | None = Field(default=None, description="1-based page number")
    per_page: int | None = Field(default=None, description="Hits per page")
    offset: int | None = Field(default=None, description="Number of hits to skip")
    highlight: HighlightConfig | None = Field(default=None, description="Highlighting options")
    config: SearchConfig | None = Field(default=None, description="Tuning options")
