"""Base schema mapper — Bidirectional translation of the generic schema.

Contract:
  - ``to_backend`` is authoritative: every field must map to a faithful
    native type or the call fails with ``UnsupportedError`` naming the
    field. Capabilities are never silently downgraded.
  - ``from_backend`` is informational and total: any native type maps to
    the nearest generic type.
  - For schemas that only use mappable types,
    ``from_backend(to_backend(schema)) == schema``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Generic, TypeVar

from unisearch.adapters.base.exceptions import UnsupportedError
from unisearch.models.schema import FieldType, Schema, SchemaField

SpecT = TypeVar("SpecT")


class SchemaMapper(ABC, Generic[SpecT]):
    """Abstract base class for backend schema mappers."""

    #: Generic field types with a faithful native equivalent.
    supported_types: frozenset[FieldType] = frozenset(FieldType)

    def to_backend(self, schema: Schema) -> SpecT:
        """Validate *schema* and translate it to the backend's native spec.

        Raises:
            InvalidQueryError: If the schema breaks its structural invariants.
            UnsupportedError: If a field has no faithful native mapping.
        """
        schema.validate_invariants()
        for field in schema.fields:
            self.check_field(field)
        return self.build_spec(schema)

    def check_field(self, field: SchemaField) -> None:
        """Fail with ``UnsupportedError`` if *field* cannot be mapped."""
        if field.field_type not in self.supported_types:
            raise UnsupportedError(
                f"Field '{field.name}': type '{field.field_type.value}' has no native equivalent"
            )

    @abstractmethod
    def build_spec(self, schema: Schema) -> SpecT:
        """Produce the native spec for an already validated schema."""

    @abstractmethod
    def from_backend(self, spec: SpecT) -> Schema:
        """Translate a native spec back to the generic schema."""

    def is_compatible(self, existing: Schema, requested: Schema) -> bool:
        """Return ``True`` when *existing* already satisfies *requested*.

        Every requested field must exist with the same type and flags.
        Extra fields on the existing side are allowed.
        """
        for field in requested.fields:
            current = existing.field(field.name)
            if current is None or current != field:
                return False
        return requested.primary_key is None or requested.primary_key == existing.primary_key
