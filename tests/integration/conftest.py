"""Integration test fixtures — Live search backends.

Tests are skipped unless the backends answer on their default ports (or
the URLs given in ``UNISEARCH_TEST_OPENSEARCH_URL`` /
``UNISEARCH_TEST_MEILISEARCH_URL``)::

    docker run -d -p 9200:9200 -e discovery.type=single-node \\
        -e DISABLE_SECURITY_PLUGIN=true opensearchproject/opensearch:2
    docker run -d -p 7700:7700 -e MEILI_MASTER_KEY=test-master-key getmeili/meilisearch:v1.10

Every test works on a freshly created, uniquely named index that is
dropped afterwards.
"""

from __future__ import annotations

import os
import time
import uuid

import httpx
import pytest

from unisearch.models.document import Document
from unisearch.models.schema import FieldType, Schema, SchemaField

def _wait_for_service(url: str, timeout: float = 3.0, headers: dict[str, str] | None = None) -> bool:
    """Block until *url* returns HTTP 200, or timeout."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            r = httpx.get(url, timeout=5, headers=headers)
            if r.status_code == 200:
                return True
        except httpx.HTTPError:
            pass
        time.sleep(1)
    return False


@pytest.fixture(scope="session")
def opensearch_url() -> str:
    url = os.environ.get("UNISEARCH_TEST_OPENSEARCH_URL", "http://localhost:9200")
    if not _wait_for_service(url):
        pytest.skip(f"OpenSearch not available at {url}")
    return url


@pytest.fixture(scope="session")
def meilisearch_url() -> str:
    url = os.environ.get("UNISEARCH_TEST_MEILISEARCH_URL", "http://localhost:7700")
    if not _wait_for_service(f"{url}/health"):
        pytest.skip(f"Meilisearch not available at {url}")
    return url


@pytest.fixture(scope="session")
def meilisearch_key() -> str:
    return os.environ.get("UNISEARCH_TEST_MEILISEARCH_KEY", "test-master-key")


@pytest.fixture
def index_name() -> str:
    return f"unisearch-test-{uuid.uuid4().hex[:8]}"


@pytest.fixture
def catalog_schema() -> Schema:
    return Schema(
        fields=[
            SchemaField(name="id", field_type=FieldType.KEYWORD, required=True, index=False),
            SchemaField(name="title", field_type=FieldType.TEXT, sort=True),
            SchemaField(name="summary", field_type=FieldType.TEXT),
            SchemaField(name="genre", field_type=FieldType.KEYWORD, facet=True),
            SchemaField(name="year", field_type=FieldType.INTEGER, facet=True, sort=True),
        ],
        primary_key="id",
    )


@pytest.fixture
def catalog() -> list[Document]:
    rows = [
        ("1", "Dune", "Desert planet, spice and a messianic heir", "sf", 1965),
        ("2", "Hyperion", "Pilgrims travel to the Time Tombs", "sf", 1989),
        ("3", "Emma", "A matchmaker in a small English village", "classic", 1815),
        ("4", "Ubik", "Reality decays around a team of anti-telepaths", "sf", 1969),
        ("5", "Middlemarch", "Provincial life in a Midlands town", "classic", 1871),
        ("6", "Neuromancer", "A washed-up hacker is hired for one last job", "sf", 1984),
        ("7", "Persuasion", "A second chance at love after eight years", "classic", 1817),
    ]
    return [
        Document(id=doc_id, content={"title": title, "summary": summary, "genre": genre, "year": year})
        for doc_id, title, summary, genre, year in rows
    ]
