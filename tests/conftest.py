"""Shared fakes and fixtures for the sync engine tests.

FakeSource and FakeTarget stand in for the source API and the target
platform at their protocol boundaries, so reconciliation and orchestration
can be tested without HTTP.
"""

import itertools
from collections import defaultdict
from typing import Any, Iterator

import pytest

from catalog_sync.errors import FetchError
from catalog_sync.models.config import SyncConfig
from catalog_sync.models.entity import EntityKind, SourceEntity
from catalog_sync.storage.mapping_store import MappingStores
from catalog_sync.sync.strategies import default_strategies
from catalog_sync.target.platform import MutationResult

STRATEGIES = default_strategies()


def payload_natural_key(kind: EntityKind, payload: dict[str, Any]) -> str:
    """Natural key of a record as the target platform would index it."""
    if kind == EntityKind.FILE:
        return payload["filename"]
    if kind == EntityKind.STRUCTURED_OBJECT:
        return f"{payload['type']}:{payload['handle']}"
    if kind == EntityKind.REDIRECT:
        return payload["path"]
    if kind == EntityKind.PRICE_RECORD:
        return f"{payload['sku']}:{payload['currency']}"
    return payload["handle"]


class FakeSource:
    """In-memory source: a list of raw records or entities per kind."""

    def __init__(self, entities: dict[EntityKind, list[Any]] | None = None):
        self.entities: dict[EntityKind, list[Any]] = defaultdict(list, entities or {})
        self.failing_kinds: set[EntityKind] = set()
        self.fail_after: dict[EntityKind, int] = {}

    def add(self, *entities: SourceEntity) -> None:
        for entity in entities:
            self.entities[entity.kind].append(entity)

    def replace(self, entity: SourceEntity) -> None:
        """Replace the entity with the same external id."""
        items = self.entities[entity.kind]
        for index, existing in enumerate(items):
            if getattr(existing, "external_id", None) == entity.external_id:
                items[index] = entity
                return
        items.append(entity)

    def iter_entities(self, kind: EntityKind) -> Iterator[Any]:
        if kind in self.failing_kinds:
            raise FetchError(f"source unreachable for {kind.value}")
        for index, item in enumerate(list(self.entities[kind])):
            if kind in self.fail_after and index >= self.fail_after[kind]:
                raise FetchError(f"source page for {kind.value} failed")
            yield item


class FakeTarget:
    """In-memory target platform that records every call."""

    def __init__(self):
        self.records: dict[EntityKind, dict[str, dict[str, Any]]] = defaultdict(dict)
        self.calls: list[tuple[str, EntityKind, Any]] = []
        self.rejections: dict[EntityKind, list[dict[str, Any]]] = {}
        self.failing_enumerations: set[EntityKind] = set()
        self._ids = itertools.count(1)

    @property
    def mutations(self) -> list[tuple[str, EntityKind, Any]]:
        return [call for call in self.calls if call[0] in ("create", "update", "delete")]

    def mutation_count(self, operation: str | None = None) -> int:
        return len([m for m in self.mutations if operation is None or m[0] == operation])

    def seed(self, kind: EntityKind, natural_key: str, payload: dict[str, Any] | None = None) -> str:
        """Create a record directly on the target, outside any sync."""
        target_id = f"gid://target/{kind.value}/{next(self._ids)}"
        self.records[kind][target_id] = {"natural_key": natural_key, "payload": payload or {}}
        return target_id

    def remove(self, kind: EntityKind, target_id: str) -> None:
        """Delete a record out of band."""
        del self.records[kind][target_id]

    def find_by_natural_key(self, kind: EntityKind, natural_key: str) -> str | None:
        self.calls.append(("lookup", kind, natural_key))
        for target_id, record in self.records[kind].items():
            if record["natural_key"] == natural_key:
                return target_id
        return None

    def iter_target_ids(self, kind: EntityKind) -> Iterator[str]:
        self.calls.append(("enumerate", kind, None))
        if kind in self.failing_enumerations:
            raise FetchError(f"target enumeration failed for {kind.value}")
        return iter(list(self.records[kind]))

    def create(self, kind: EntityKind, payload: dict[str, Any]) -> MutationResult:
        self.calls.append(("create", kind, payload))
        if kind in self.rejections:
            return MutationResult(errors=self.rejections[kind])
        target_id = f"gid://target/{kind.value}/{next(self._ids)}"
        self.records[kind][target_id] = {
            "natural_key": payload_natural_key(kind, payload),
            "payload": payload,
        }
        return MutationResult(target_id=target_id)

    def update(self, kind: EntityKind, target_id: str, payload: dict[str, Any]) -> MutationResult:
        self.calls.append(("update", kind, (target_id, payload)))
        if kind in self.rejections:
            return MutationResult(errors=self.rejections[kind])
        self.records[kind][target_id] = {
            "natural_key": payload_natural_key(kind, payload),
            "payload": payload,
        }
        return MutationResult(target_id=target_id)

    def delete(self, kind: EntityKind, target_id: str) -> MutationResult:
        self.calls.append(("delete", kind, target_id))
        if target_id not in self.records[kind]:
            return MutationResult(errors=[{"field": ["id"], "message": "Record does not exist"}])
        del self.records[kind][target_id]
        return MutationResult(target_id=target_id)


def file_entity(
    external_id: str = "F1",
    filename: str = "hero.png",
    alt: str | None = "Hero image",
    url: str | None = None,
) -> SourceEntity:
    raw: dict[str, Any] = {
        "id": external_id,
        "filename": filename,
        "url": url or f"https://cdn.example.com/{filename}",
    }
    if alt is not None:
        raw["alt"] = alt
    return STRATEGIES[EntityKind.FILE].parse(raw)


def structured_object_entity(
    external_id: str,
    handle: str,
    object_type: str = "faq",
    fields: list[dict[str, Any]] | None = None,
) -> SourceEntity:
    return STRATEGIES[EntityKind.STRUCTURED_OBJECT].parse(
        {
            "id": external_id,
            "type": object_type,
            "handle": handle,
            "fields": fields or [{"key": "question", "type": "single_line_text_field", "value": handle}],
        }
    )


def document_entity(
    external_id: str,
    handle: str,
    title: str = "About us",
    body: str = "<p>Hello</p>",
    metafields: list[dict[str, Any]] | None = None,
) -> SourceEntity:
    raw: dict[str, Any] = {"id": external_id, "handle": handle, "title": title, "bodyHtml": body}
    if metafields is not None:
        raw["metafields"] = metafields
    return STRATEGIES[EntityKind.DOCUMENT].parse(raw)


def redirect_entity(external_id: str, path: str, target: str) -> SourceEntity:
    return STRATEGIES[EntityKind.REDIRECT].parse({"id": external_id, "path": path, "target": target})


@pytest.fixture
def fake_source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def fake_target() -> FakeTarget:
    return FakeTarget()


@pytest.fixture
def stores() -> MappingStores:
    return MappingStores.in_memory()


@pytest.fixture
def sync_config() -> SyncConfig:
    return SyncConfig(min_call_spacing_ms=0)
