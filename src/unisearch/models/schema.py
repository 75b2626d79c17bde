"""Generic index schema — Field model shared by every search backend."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class FieldType(str, Enum):
    """Closed set of generic field types."""

    TEXT = "text"
    KEYWORD = "keyword"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    DATE = "date"
    GEO_POINT = "geo_point"


class SchemaField(BaseModel):
    """A single field of an index schema."""

    name: str = Field(description="Field name, unique within a schema")
    field_type: FieldType = Field(description="Generic field type")
    required: bool = Field(default=False, description="Whether every document must carry this field")
    facet: bool = Field(default=False, description="Whether the field can be faceted / filtered on")
    sort: bool = Field(default=False, description="Whether results can be sorted by this field")
    index: bool = Field(default=True, description="Whether the field is full-text searchable")


class Schema(BaseModel):
    """Ordered collection of fields plus an optional primary key."""

    fields: list[SchemaField] = Field(default_factory=list, description="Fields in declaration order")
    primary_key: str | None = Field(default=None, description="Name of the primary-key field")

    def field(self, name: str) -> SchemaField | None:
        """Return the field called *name*, or ``None``."""
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def validate_invariants(self) -> None:
        """Check the structural invariants of the schema.

        Raises:
            InvalidQueryError: If a field name is repeated or the primary
                key does not name an existing field.
        """
        from unisearch.adapters.base.exceptions import InvalidQueryError

        seen: set[str] = set()
        for f in self.fields:
            if not f.name:
                raise InvalidQueryError("Schema field names must not be empty")
            if f.name in seen:
                raise InvalidQueryError(f"Duplicate schema field '{f.name}'")
            seen.add(f.name)

        if self.primary_key is not None and self.primary_key not in seen:
            raise InvalidQueryError(f"Primary key '{self.primary_key}' does not name a schema field")
