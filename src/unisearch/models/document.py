"""Document model — The unit of storage shared by every adapter."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class Document(BaseModel):
    """A caller-identified document.

    The identifier is stable and unique within an index: upserting a
    document whose ``id`` already exists replaces its content, it never
    creates a duplicate.
    """

    id: str = Field(description="Caller-assigned document identifier")
    content: dict[str, Any] = Field(default_factory=dict, description="Opaque structured payload")
