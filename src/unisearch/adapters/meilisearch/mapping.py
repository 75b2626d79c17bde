"""Meilisearch mapping — Index settings and search payloads.

Meilisearch is schemaless: values are stored as JSON and an index only
records which attributes are searchable, filterable and sortable. The
generic schema therefore travels next to the settings as ``recorded`` and
is stored by the adapter in a companion index; ``from_backend`` takes field
types, ``required`` and order from it and capability flags from the
settings. Without a recorded schema every attribute reads back as ``text``
except the reserved ``_geo`` attribute.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from unisearch.adapters.base.exceptions import InvalidQueryError, UnsupportedError
from unisearch.adapters.base.normalizer import BackendQuery, Pagination, QueryNormalizer
from unisearch.adapters.base.schema import SchemaMapper
from unisearch.models.query import SearchConfig, SearchQuery
from unisearch.models.result import SearchHit, SearchResults
from unisearch.models.schema import FieldType, Schema, SchemaField

DEFAULT_PRIMARY_KEY = "id"
GEO_FIELD = "_geo"

_HIT_META_KEYS = frozenset({"_formatted", "_rankingScore", "_rankingScoreDetails", "_matchesPosition", "_geoDistance"})


class MeiliIndexSpec(BaseModel):
    """Native description of a Meilisearch index."""

    primary_key: str | None = Field(default=None, description="Index primary key attribute")
    settings: dict[str, Any] = Field(default_factory=dict, description="Index settings object")
    recorded: Schema | None = Field(default=None, description="Generic schema stored alongside the index")


# ── Schema ───────────────────────────────────────────────────────────────


class MeiliSchemaMapper(SchemaMapper[MeiliIndexSpec]):
    """Maps a generic ``Schema`` onto Meilisearch attribute settings."""

    supported_types = frozenset(FieldType) - {FieldType.DATE}

    def check_field(self, field: SchemaField) -> None:
        super().check_field(field)
        if field.field_type is FieldType.GEO_POINT and field.name != GEO_FIELD:
            raise UnsupportedError(
                f"Field '{field.name}': Meilisearch only supports geo points in the '{GEO_FIELD}' attribute"
            )

    def build_spec(self, schema: Schema) -> MeiliIndexSpec:
        # An empty list keeps every attribute out of full-text search; omitting it would mean "*".
        settings: dict[str, Any] = {
            "searchableAttributes": [f.name for f in schema.fields if f.index and f.name != GEO_FIELD],
            "filterableAttributes": [f.name for f in schema.fields if f.facet],
            "sortableAttributes": [f.name for f in schema.fields if f.sort],
        }
        return MeiliIndexSpec(primary_key=schema.primary_key, settings=settings, recorded=schema)

    def from_backend(self, spec: MeiliIndexSpec) -> Schema:
        settings = spec.settings
        raw_searchable = settings.get("searchableAttributes")
        all_searchable = raw_searchable is None or "*" in raw_searchable
        searchable = [] if all_searchable else list(raw_searchable)
        filterable = set(settings.get("filterableAttributes") or [])
        sortable = set(settings.get("sortableAttributes") or [])

        def flags(name: str) -> dict[str, bool]:
            return {
                "facet": name in filterable,
                "sort": name in sortable,
                "index": name != GEO_FIELD and (all_searchable or name in searchable),
            }

        fields: list[SchemaField] = []
        if spec.recorded is not None:
            for f in spec.recorded.fields:
                update = flags(f.name)
                if f.name == GEO_FIELD:
                    # Geo points are never searchable text; keep the declared value.
                    update["index"] = f.index
                fields.append(f.model_copy(update=update))

        # Attributes configured outside the recorded schema: searchable ones keep
        # their ranking order, the rest follow sorted.
        known = {f.name for f in fields}
        extra = searchable + sorted((filterable | sortable) - set(searchable))
        for name in extra:
            if name not in known:
                field_type = FieldType.GEO_POINT if name == GEO_FIELD else FieldType.TEXT
                fields.append(SchemaField(name=name, field_type=field_type, **flags(name)))
                known.add(name)

        primary_key = spec.primary_key
        if primary_key is not None and primary_key not in known:
            fields.append(SchemaField(name=primary_key, field_type=FieldType.TEXT, index=all_searchable))
        return Schema(fields=fields, primary_key=primary_key)


# ── Query ────────────────────────────────────────────────────────────────


class MeiliQueryNormalizer(QueryNormalizer):
    """Lowers a ``SearchQuery`` to a Meilisearch search payload.

    ``boost_fields``, ``typo_tolerance`` and ``exact_match_boost`` are index
    settings in Meilisearch and are ignored per query.
    """

    provider_param_keys = frozenset(
        {
            "matchingStrategy",
            "attributesToSearchOn",
            "rankingScoreThreshold",
            "distinct",
            "showMatchesPosition",
            "hybrid",
        }
    )

    def build_body(self, query: SearchQuery, schema: Schema | None) -> dict[str, Any]:
        config = query.config or SearchConfig()
        body: dict[str, Any] = {"showRankingScore": True}

        if query.q:
            body["q"] = query.q
        if query.filters:
            body["filter"] = self._filter_expression(query.filters)
        if query.sort:
            body["sort"] = [self._sort_expression(expr) for expr in query.sort]
        if query.facets:
            body["facets"] = list(query.facets)

        if query.highlight is not None:
            hl = query.highlight
            attributes = list(hl.fields) or ["*"]
            body["attributesToHighlight"] = attributes
            if hl.pre_tag is not None:
                body["highlightPreTag"] = hl.pre_tag
            if hl.post_tag is not None:
                body["highlightPostTag"] = hl.post_tag
            if hl.max_length is not None:
                body["attributesToCrop"] = attributes
                body["cropLength"] = hl.max_length

        if config.attributes_to_retrieve:
            body["attributesToRetrieve"] = list(config.attributes_to_retrieve)
        if config.language:
            body["locales"] = [config.language]

        body.update(self.provider_params(query))
        return body

    def with_window(self, backend_query: BackendQuery, offset: int, limit: int) -> dict[str, Any]:
        return {**backend_query.body, "offset": offset, "limit": limit}

    def first_window(self, backend_query: BackendQuery) -> dict[str, Any]:
        """Page addressing uses ``page``/``hitsPerPage`` so the total is exact."""
        p = backend_query.pagination
        if p.page is None:
            return self.with_window(backend_query, p.offset, p.limit)
        return {**backend_query.body, "page": p.page, "hitsPerPage": p.limit}

    @staticmethod
    def _filter_expression(filters: list[str]) -> str:
        parts = [f.strip() for f in filters]
        if not all(parts):
            raise InvalidQueryError("Empty filter expression")
        if len(parts) == 1:
            return parts[0]
        return " AND ".join(f"({p})" for p in parts)

    @staticmethod
    def _sort_expression(expr: str) -> str:
        expr = expr.strip()
        if expr.startswith("-") and len(expr) > 1:
            return f"{expr[1:]}:desc"
        name, sep, order = expr.rpartition(":")
        if sep and order.lower() in ("asc", "desc") and name:
            return f"{name}:{order.lower()}"
        if not expr or sep:
            raise InvalidQueryError(f"Invalid sort expression '{expr}'")
        return f"{expr}:asc"


# ── Documents & responses ────────────────────────────────────────────────


def document_payload(doc_id: str, content: dict[str, Any], primary_key: str) -> dict[str, Any]:
    """Build the stored JSON object: the content plus the id under the primary key."""
    return {**content, primary_key: doc_id}


def split_document(raw: dict[str, Any], primary_key: str) -> tuple[str, dict[str, Any]]:
    """Split a stored JSON object back into ``(id, content)``."""
    content = {k: v for k, v in raw.items() if k != primary_key and k not in _HIT_META_KEYS}
    return str(raw[primary_key]), content


def results_from_response(response: dict[str, Any], pagination: Pagination, primary_key: str) -> SearchResults:
    """Parse a Meilisearch search response.

    ``totalHits`` (page addressing) is exact; ``estimatedTotalHits``
    (offset addressing) is reported as an unknown total.
    """
    hits: list[SearchHit] = []
    for raw in response.get("hits") or []:
        doc_id, content = split_document(raw, primary_key)
        formatted = raw.get("_formatted")
        highlights = None
        if isinstance(formatted, dict):
            highlights = {
                name: [value] for name, value in formatted.items() if name != primary_key and isinstance(value, str)
            } or None
        hits.append(SearchHit(id=doc_id, score=raw.get("_rankingScore"), content=content, highlights=highlights))

    total = response.get("totalHits")
    return SearchResults(
        total=int(total) if total is not None else None,
        page=response.get("page", pagination.page),
        per_page=response.get("hitsPerPage", pagination.limit if pagination.page is not None else None),
        hits=hits,
        facets=response.get("facetDistribution") or None,
        took_ms=response.get("processingTimeMs"),
    )
