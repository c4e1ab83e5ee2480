"""Pydantic models for source entities and identity mappings."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class EntityKind(str, Enum):
    """Categories of syncable record."""

    FILE = "file"
    STRUCTURED_OBJECT = "structured_object"
    DOCUMENT = "document"
    COLLECTION = "collection"
    REDIRECT = "redirect"
    PRICE_RECORD = "price_record"


class SourceField(BaseModel):
    """A typed field of a source entity."""

    key: str = Field(default=..., min_length=1, description="Field key")
    type: str = Field(
        default="single_line_text_field",
        description="Semantic type tag (e.g. file_reference, list.metaobject_reference)",
    )
    value: Any = Field(default=None, description="Raw field value as delivered by the source")


class SourceEntity(BaseModel):
    """An entity as delivered by the source-of-truth system."""

    kind: EntityKind = Field(default=..., description="Entity kind")
    external_id: str = Field(default=..., min_length=1, description="Source-assigned identifier")
    natural_key: str = Field(
        default=..., min_length=1, description="Handle, path, filename or SKU, unique within kind"
    )
    fields: list[SourceField] = Field(default_factory=list, description="Ordered typed fields")

    model_config = {
        "json_schema_extra": {
            "example": {
                "kind": "file",
                "external_id": "F1",
                "natural_key": "hero.png",
                "fields": [
                    {"key": "url", "type": "url", "value": "https://cdn.example.com/hero.png"},
                    {"key": "alt", "type": "single_line_text_field", "value": "Hero image"},
                ],
            }
        }
    }

    @field_validator("fields")
    @classmethod
    def validate_unique_keys(cls, v: list[SourceField]) -> list[SourceField]:
        """Reject entities that carry the same field key twice."""
        seen: set[str] = set()
        for source_field in v:
            if source_field.key in seen:
                raise ValueError(f"duplicate field key: {source_field.key}")
            seen.add(source_field.key)
        return v

    def get_field(self, key: str) -> SourceField | None:
        for source_field in self.fields:
            if source_field.key == key:
                return source_field
        return None

    def value(self, key: str, default: Any = None) -> Any:
        """Return the raw value of a field, or ``default`` if absent."""
        source_field = self.get_field(key)
        return default if source_field is None else source_field.value


def reference_token(kind: EntityKind, external_id: str) -> str:
    """Encode a reference to another entity as ``<kind>:<external_id>``."""
    return f"{kind.value}:{external_id}"


def parse_reference_token(token: str) -> tuple[EntityKind, str]:
    """
    Decode a ``reference_token`` value.

    Raises:
        ValueError: If the kind is unknown or the external id is empty
    """
    kind_value, _, external_id = token.partition(":")
    if not external_id:
        raise ValueError(f"malformed reference token: {token!r}")
    return EntityKind(kind_value), external_id


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MappingRecord(BaseModel):
    """Persisted association between an external id and a target id."""

    external_id: str = Field(default=..., min_length=1, description="Source identifier")
    target_id: str = Field(default=..., min_length=1, description="Target platform identifier")
    natural_key: str = Field(default=..., min_length=1, description="Natural key at last sync")
    fingerprint: str = Field(default=..., min_length=1, description="Content hash at last sync")
    last_updated: datetime = Field(default_factory=_utcnow, description="Last write timestamp")
    references_complete: bool = Field(
        default=True,
        description="False when unresolved list references were dropped at last sync",
    )
    unresolved_references: list[str] = Field(
        default_factory=list,
        description="Dropped list references at last sync, as <kind>:<external_id>",
    )
