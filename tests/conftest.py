"""Shared test fixtures and configuration."""

from __future__ import annotations

import pytest

from unisearch.config.settings import Settings
from unisearch.models.document import Document
from unisearch.models.schema import FieldType, Schema, SchemaField


@pytest.fixture
def settings() -> Settings:
    """Create a test Settings instance with defaults."""
    return Settings(_env_file=None)  # type: ignore[call-arg]


@pytest.fixture
def book_schema() -> Schema:
    """A schema using every type both backends can represent."""
    return Schema(
        fields=[
            SchemaField(name="id", field_type=FieldType.KEYWORD, required=True),
            SchemaField(name="title", field_type=FieldType.TEXT, sort=True),
            SchemaField(name="genre", field_type=FieldType.KEYWORD, facet=True),
            SchemaField(name="year", field_type=FieldType.INTEGER, facet=True, sort=True),
            SchemaField(name="rating", field_type=FieldType.FLOAT, sort=True),
            SchemaField(name="in_print", field_type=FieldType.BOOLEAN, facet=True),
        ],
        primary_key="id",
    )


@pytest.fixture
def books() -> list[Document]:
    """A handful of sample documents."""
    return [
        Document(id="1", content={"title": "Dune", "genre": "sf", "year": 1965, "rating": 4.3, "in_print": True}),
        Document(id="2", content={"title": "Hyperion", "genre": "sf", "year": 1989, "rating": 4.2, "in_print": True}),
        Document(id="3", content={"title": "Emma", "genre": "classic", "year": 1815, "rating": 4.0, "in_print": True}),
        Document(id="4", content={"title": "Ubik", "genre": "sf", "year": 1969, "rating": 4.1, "in_print": False}),
        Document(
            id="5",
            content={"title": "Middlemarch", "genre": "classic", "year": 1871, "rating": 4.0, "in_print": True},
        ),
    ]
