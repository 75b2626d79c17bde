"""CLI entry point — Query a search backend from the shell.

Every command prints JSON on stdout; logs go to stderr. Errors exit with
status 1 and print ``{"error": <kind>, "message": ...}``.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from unisearch import __version__
from unisearch.adapters.base.adapter import SearchAdapter
from unisearch.adapters.base.exceptions import SearchError
from unisearch.adapters.base.registry import AdapterRegistry
from unisearch.config.settings import Settings
from unisearch.models.query import SearchQuery
from unisearch.observability.logging import setup_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="unisearch",
        description="unisearch — One search contract over many full-text search backends",
    )
    parser.add_argument("--config", "-c", type=str, default=None, help="Path to YAML configuration file")
    parser.add_argument(
        "--adapter",
        "-a",
        type=str,
        default=None,
        help="Adapter to use (overrides search.default_adapter)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        default=None,
        help="Log level (overrides config)",
    )
    parser.add_argument("--version", action="version", version=f"unisearch {__version__}")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("indexes", help="List index names")
    sub.add_parser("health", help="Report backend health")

    search = sub.add_parser("search", help="Search an index")
    search.add_argument("index")
    search.add_argument("query", nargs="?", default=None, help="Free-text query (omit to match all)")
    search.add_argument("--filter", "-f", action="append", default=[], dest="filters", help="Filter expression")
    search.add_argument("--sort", "-s", action="append", default=[], help="Sort expression, e.g. -year")
    search.add_argument("--facet", action="append", default=[], dest="facets", help="Facet field")
    search.add_argument("--page", type=int, default=None)
    search.add_argument("--per-page", type=int, default=None)
    search.add_argument("--offset", type=int, default=None)
    search.add_argument("--stream", action="store_true", help="Stream every result, one JSON hit per line")

    get = sub.add_parser("get", help="Fetch a document by id")
    get.add_argument("index")
    get.add_argument("id")

    schema = sub.add_parser("schema", help="Show an index schema")
    schema.add_argument("index")

    return parser


def load_settings(args: argparse.Namespace) -> Settings:
    if args.config:
        settings = Settings.from_yaml(Path(args.config))
    else:
        settings = Settings()
    if args.log_level:
        settings.observability.log_level = args.log_level
    return settings


async def run(args: argparse.Namespace, settings: Settings) -> Any:
    """Execute the parsed command and return a JSON-serializable result."""
    registry = AdapterRegistry.with_builtins()
    adapter = await registry.initialize_from_settings(args.adapter, settings)
    try:
        return await _dispatch(adapter, args)
    finally:
        await registry.shutdown_all()


async def _dispatch(adapter: SearchAdapter, args: argparse.Namespace) -> Any:
    if args.command == "indexes":
        return await adapter.list_indexes()
    if args.command == "health":
        return (await adapter.health_check()).model_dump()
    if args.command == "get":
        doc = await adapter.get(args.index, args.id)
        return doc.model_dump() if doc is not None else None
    if args.command == "schema":
        return (await adapter.get_schema(args.index)).model_dump(mode="json")

    query = SearchQuery(
        q=args.query,
        filters=args.filters,
        sort=args.sort,
        facets=args.facets,
        page=args.page,
        per_page=args.per_page,
        offset=args.offset,
    )
    if not args.stream:
        return (await adapter.search(args.index, query)).model_dump()

    count = 0
    async with await adapter.stream_search(args.index, query) as stream:
        async for batch in stream:
            for hit in batch:
                print(json.dumps(hit.model_dump(), default=str))
                count += 1
    return {"streamed": count}


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(args)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    setup_logging(settings.observability)

    try:
        result = asyncio.run(run(args, settings))
    except SearchError as e:
        print(json.dumps({"error": e.kind.value, "message": str(e)}), file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
