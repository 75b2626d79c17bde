"""Search adapter layer — Pluggable connectors for search backends.

Built-in adapters:
  - opensearch: OpenSearch v2+ (Elasticsearch-compatible query DSL)
  - meilisearch: Meilisearch v1+ (instant, typo-tolerant search)

Implement ``SearchAdapter`` to connect your own search backend.
"""
