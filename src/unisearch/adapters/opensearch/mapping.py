"""OpenSearch mapping — Schema and query translation for the OpenSearch DSL.

Schema spec: the index ``mappings`` body. Capability flags, field order and
the primary key have no native slot, so they are recorded under
``mappings._meta.unisearch`` and read back from there.

Query body: a ``bool``/``multi_match`` query with ``terms`` aggregations
for facets; paging is ``from``/``size``.
"""

from __future__ import annotations

import re
from typing import Any

from unisearch.adapters.base.exceptions import InvalidQueryError, UnsupportedError
from unisearch.adapters.base.normalizer import BackendQuery, Pagination, QueryNormalizer
from unisearch.adapters.base.schema import SchemaMapper
from unisearch.models.query import SearchConfig, SearchQuery
from unisearch.models.result import SearchHit, SearchResults
from unisearch.models.schema import FieldType, Schema, SchemaField

META_KEY = "unisearch"
FACET_SIZE = 100
"""Buckets returned per facet aggregation."""

_NATIVE_TYPES: dict[FieldType, str] = {
    FieldType.TEXT: "text",
    FieldType.KEYWORD: "keyword",
    FieldType.INTEGER: "integer",
    FieldType.FLOAT: "float",
    FieldType.BOOLEAN: "boolean",
    FieldType.DATE: "date",
    FieldType.GEO_POINT: "geo_point",
}

# Finer-grained native types folded onto the nearest generic type.
_GENERIC_TYPES: dict[str, FieldType] = {
    **{native: generic for generic, native in _NATIVE_TYPES.items()},
    "long": FieldType.INTEGER,
    "short": FieldType.INTEGER,
    "byte": FieldType.INTEGER,
    "unsigned_long": FieldType.INTEGER,
    "double": FieldType.FLOAT,
    "half_float": FieldType.FLOAT,
    "scaled_float": FieldType.FLOAT,
    "date_nanos": FieldType.DATE,
    "match_only_text": FieldType.TEXT,
    "search_as_you_type": FieldType.TEXT,
    "constant_keyword": FieldType.KEYWORD,
    "wildcard": FieldType.KEYWORD,
    "ip": FieldType.KEYWORD,
}

# ``field:value`` with a plain or quoted value becomes a ``term`` query.
_TERM_FILTER = re.compile(r'^(?P<field>[\w.@-]+):(?P<value>"[^"]*"|[^\s:"()\[\]{}*?<>=~^!/\\]+)$')


# ── Schema ───────────────────────────────────────────────────────────────


class OpenSearchSchemaMapper(SchemaMapper[dict[str, Any]]):
    """Maps a generic ``Schema`` to an OpenSearch ``mappings`` body."""

    supported_types = frozenset(_NATIVE_TYPES)

    def build_spec(self, schema: Schema) -> dict[str, Any]:
        properties: dict[str, Any] = {}
        for f in schema.fields:
            prop: dict[str, Any] = {"type": _NATIVE_TYPES[f.field_type]}
            if not f.index:
                prop["index"] = False
            if f.field_type is FieldType.TEXT and (f.facet or f.sort):
                # Text is not aggregatable; facets and sorts go through the keyword sub-field.
                prop["fields"] = {"keyword": {"type": "keyword", "ignore_above": 256}}
            properties[f.name] = prop

        meta = {
            "fields": [
                {"name": f.name, "required": f.required, "facet": f.facet, "sort": f.sort} for f in schema.fields
            ],
            "primary_key": schema.primary_key,
        }
        return {"_meta": {META_KEY: meta}, "properties": properties}

    def from_backend(self, spec: dict[str, Any]) -> Schema:
        properties: dict[str, Any] = spec.get("properties") or {}
        meta: dict[str, Any] = (spec.get("_meta") or {}).get(META_KEY) or {}
        recorded = {
            entry["name"]: entry
            for entry in meta.get("fields") or []
            if isinstance(entry, dict) and entry.get("name") in properties
        }

        # Recorded fields keep their declared order; the rest follow.
        names = list(recorded) + [name for name in properties if name not in recorded]
        fields = [self._field(name, properties[name] or {}, recorded.get(name)) for name in names]

        primary_key = meta.get("primary_key")
        if primary_key not in properties:
            primary_key = None
        return Schema(fields=fields, primary_key=primary_key)

    @staticmethod
    def _field(name: str, prop: dict[str, Any], recorded: dict[str, Any] | None) -> SchemaField:
        field_type = _GENERIC_TYPES.get(prop.get("type", "object"), FieldType.TEXT)
        indexed = prop.get("index", True) not in (False, "false")

        if recorded is not None:
            return SchemaField(
                name=name,
                field_type=field_type,
                required=bool(recorded.get("required", False)),
                facet=bool(recorded.get("facet", False)),
                sort=bool(recorded.get("sort", False)),
                index=indexed,
            )

        if field_type is FieldType.TEXT:
            subfields = prop.get("fields") or {}
            aggregatable = any(sub.get("type") == "keyword" for sub in subfields.values())
        else:
            aggregatable = True
        return SchemaField(
            name=name,
            field_type=field_type,
            facet=aggregatable,
            sort=aggregatable,
            index=indexed,
        )


# ── Query ────────────────────────────────────────────────────────────────


class OpenSearchQueryNormalizer(QueryNormalizer):
    """Lowers a ``SearchQuery`` to an OpenSearch ``_search`` body."""

    provider_param_keys = frozenset({"track_total_hits", "min_score", "terminate_after", "explain"})

    def build_body(self, query: SearchQuery, schema: Schema | None) -> dict[str, Any]:
        config = query.config or SearchConfig()
        body: dict[str, Any] = {"query": self._query_clause(query, config)}

        if query.sort:
            body["sort"] = [self._sort_clause(expr, schema) for expr in query.sort]

        if query.highlight is not None:
            hl = query.highlight
            highlight: dict[str, Any] = {"fields": {name: {} for name in hl.fields} or {"*": {}}}
            if hl.pre_tag is not None:
                highlight["pre_tags"] = [hl.pre_tag]
            if hl.post_tag is not None:
                highlight["post_tags"] = [hl.post_tag]
            if hl.max_length is not None:
                highlight["fragment_size"] = hl.max_length
            body["highlight"] = highlight

        if query.facets:
            body["aggs"] = {
                f"{name}_terms": {"terms": {"field": self._keyword_field(name, schema), "size": FACET_SIZE}}
                for name in query.facets
            }

        if config.attributes_to_retrieve:
            body["_source"] = list(config.attributes_to_retrieve)
        if config.timeout_ms is not None:
            body["timeout"] = f"{config.timeout_ms}ms"

        body.update(self.provider_params(query))
        return body

    def with_window(self, backend_query: BackendQuery, offset: int, limit: int) -> dict[str, Any]:
        return {**backend_query.body, "from": offset, "size": limit}

    # ── Clauses ──────────────────────────────────────────────────────────

    @staticmethod
    def _query_clause(query: SearchQuery, config: SearchConfig) -> dict[str, Any]:
        fields = [f"{name}^{weight:g}" for name, weight in config.boost_fields.items()] or ["*"]

        if query.q:
            multi_match: dict[str, Any] = {"query": query.q, "fields": fields, "type": "best_fields"}
            if config.typo_tolerance is not None:
                multi_match["fuzziness"] = "AUTO" if config.typo_tolerance else 0
            must: dict[str, Any] = {"multi_match": multi_match}
        else:
            must = {"match_all": {}}

        filters = [OpenSearchQueryNormalizer._filter_clause(expr) for expr in query.filters]
        should: list[dict[str, Any]] = []
        if query.q and config.exact_match_boost:
            should.append(
                {
                    "multi_match": {
                        "query": query.q,
                        "fields": fields,
                        "type": "phrase",
                        "boost": config.exact_match_boost,
                    }
                }
            )

        if not filters and not should:
            return must
        clause: dict[str, Any] = {"must": [must]}
        if filters:
            clause["filter"] = filters
        if should:
            clause["should"] = should
        return {"bool": clause}

    @staticmethod
    def _filter_clause(expr: str) -> dict[str, Any]:
        expr = expr.strip()
        if not expr:
            raise InvalidQueryError("Empty filter expression")
        match = _TERM_FILTER.match(expr)
        if match:
            value = match.group("value")
            if value.startswith('"'):
                value = value[1:-1]
            return {"term": {match.group("field"): value}}
        return {"query_string": {"query": expr}}

    @classmethod
    def _sort_clause(cls, expr: str, schema: Schema | None) -> dict[str, Any]:
        expr = expr.strip()
        if not expr:
            raise InvalidQueryError("Empty sort expression")
        if expr.startswith("_geoPoint("):
            raise UnsupportedError(f"Geo sort '{expr}' is not supported by OpenSearch sort syntax")

        if expr.startswith("-"):
            name, order = expr[1:], "desc"
        elif ":" in expr:
            name, _, order = expr.rpartition(":")
            order = order.lower()
            if order not in ("asc", "desc"):
                raise InvalidQueryError(f"Invalid sort direction in '{expr}'")
        else:
            name, order = expr, "asc"
        if not name:
            raise InvalidQueryError(f"Invalid sort expression '{expr}'")

        if name != "_score":
            name = cls._keyword_field(name, schema)
        return {name: {"order": order}}

    @staticmethod
    def _keyword_field(name: str, schema: Schema | None) -> str:
        field = schema.field(name) if schema is not None else None
        if field is not None and field.field_type is FieldType.TEXT:
            return f"{name}.keyword"
        return name


# ── Response ─────────────────────────────────────────────────────────────


def results_from_response(response: dict[str, Any], pagination: Pagination) -> SearchResults:
    """Parse an OpenSearch ``_search`` response body."""
    hits_block = response.get("hits") or {}

    total_raw = hits_block.get("total")
    total: int | None
    if isinstance(total_raw, dict):
        total = int(total_raw["value"]) if total_raw.get("relation", "eq") == "eq" else None
    elif isinstance(total_raw, int):
        total = total_raw
    else:
        total = None

    hits = [
        SearchHit(
            id=str(hit["_id"]),
            score=hit.get("_score"),
            content=hit.get("_source"),
            highlights=hit.get("highlight") or None,
        )
        for hit in hits_block.get("hits") or []
    ]

    facets: dict[str, dict[str, int]] | None = None
    aggregations = response.get("aggregations") or {}
    for agg_name, agg in aggregations.items():
        if not agg_name.endswith("_terms") or "buckets" not in agg:
            continue
        facets = facets or {}
        facets[agg_name[: -len("_terms")]] = {
            str(bucket.get("key_as_string", bucket["key"])): int(bucket["doc_count"]) for bucket in agg["buckets"]
        }

    return SearchResults(
        total=total,
        page=pagination.page,
        per_page=pagination.limit if pagination.page is not None else None,
        hits=hits,
        facets=facets,
        took_ms=response.get("took"),
    )
