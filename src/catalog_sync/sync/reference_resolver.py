"""Rewrites foreign references from external ids to target ids."""

import json
from dataclasses import dataclass, field
from typing import Any

import structlog

from catalog_sync.errors import MissingReferenceError
from catalog_sync.models.config import PartialReferencePolicy
from catalog_sync.models.entity import EntityKind, SourceEntity, reference_token
from catalog_sync.storage.mapping_store import MappingStores
from catalog_sync.sync.strategies import KindStrategy

log = structlog.stdlib.get_logger()


@dataclass
class ResolvedFields:
    """Field values with references rewritten to target ids.

    ``dropped`` holds the external ids of omitted list entries and
    ``unresolved`` the same entries as ``reference_token`` values.
    """

    values: dict[str, Any]
    dropped: list[str] = field(default_factory=list)
    unresolved: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.dropped


def reference_id(value: Any) -> str:
    """
    Extract the external id from a single reference value.

    Accepts a plain id, a dict with an ``id`` key, or a JSON-encoded object
    with an ``id`` key. Empty values yield "".
    """
    if value is None:
        return ""
    if isinstance(value, dict):
        return reference_id(value.get("id"))
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.startswith("{"):
            try:
                decoded = json.loads(stripped)
            except json.JSONDecodeError:
                return stripped
            if isinstance(decoded, dict):
                return reference_id(decoded.get("id"))
        return stripped
    return str(value)


def reference_ids(value: Any) -> list[str]:
    """Extract external ids from a list reference (list, JSON array or single id)."""
    if value is None:
        return []
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return []
        if stripped.startswith("["):
            try:
                decoded = json.loads(stripped)
            except json.JSONDecodeError:
                decoded = None
            if isinstance(decoded, list):
                value = decoded
    if isinstance(value, (list, tuple)):
        ids = [reference_id(item) for item in value]
        return [i for i in ids if i]
    single = reference_id(value)
    return [single] if single else []


class ReferenceResolver:
    """Resolves references through the mapping stores. Never writes."""

    def __init__(
        self,
        stores: MappingStores,
        policy: PartialReferencePolicy = PartialReferencePolicy.DROP_UNRESOLVED,
    ):
        self.stores = stores
        self.policy = policy

    def resolve(self, value: Any, kind: EntityKind, field_key: str | None = None) -> str:
        """
        Resolve a single reference.

        Args:
            value: Reference value (plain id, ``{"id": ...}`` or its JSON form)
            kind: Kind the reference points at
            field_key: Field holding the reference, for error messages

        Returns:
            Target id, or "" for an empty reference

        Raises:
            MissingReferenceError: If no mapping exists for the external id
        """
        external_id = reference_id(value)
        if not external_id:
            return ""
        record = self.stores[kind].find_by_external_id(external_id)
        if record is None:
            raise MissingReferenceError(kind, external_id, field_key)
        return record.target_id

    def resolve_many(
        self, value: Any, kind: EntityKind, field_key: str | None = None
    ) -> tuple[list[str], list[str]]:
        """
        Resolve a list reference according to the partial-failure policy.

        Returns:
            Tuple of (resolved target ids, dropped external ids)

        Raises:
            MissingReferenceError: If an entry is unresolved and the policy is
                ``fail_entity``
        """
        resolved: list[str] = []
        dropped: list[str] = []
        for external_id in reference_ids(value):
            record = self.stores[kind].find_by_external_id(external_id)
            if record is not None:
                resolved.append(record.target_id)
                continue
            if self.policy == PartialReferencePolicy.FAIL_ENTITY:
                raise MissingReferenceError(kind, external_id, field_key)
            dropped.append(external_id)

        if dropped:
            log.warning(
                "unresolved_references_dropped",
                kind=kind.value,
                field_key=field_key,
                dropped=dropped,
            )
        return resolved, dropped

    def resolve_fields(self, entity: SourceEntity, strategy: KindStrategy) -> ResolvedFields:
        """
        Return every field value of ``entity`` with references rewritten.

        Raises:
            MissingReferenceError: For a missing single reference, or a missing
                list entry under the ``fail_entity`` policy
        """
        values: dict[str, Any] = {}
        dropped: list[str] = []
        unresolved: list[str] = []
        for source_field in entity.fields:
            reference = strategy.reference_for(source_field)
            if reference is None:
                values[source_field.key] = source_field.value
            elif reference.many:
                resolved, missing = self.resolve_many(
                    source_field.value, reference.kind, source_field.key
                )
                values[source_field.key] = resolved
                dropped.extend(missing)
                unresolved.extend(reference_token(reference.kind, m) for m in missing)
            else:
                values[source_field.key] = self.resolve(
                    source_field.value, reference.kind, source_field.key
                )
        return ResolvedFields(values=values, dropped=dropped, unresolved=unresolved)
