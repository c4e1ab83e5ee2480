"""Identity mapping store: external id <-> target id associations per entity kind."""

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator

import structlog

from catalog_sync.errors import MappingIntegrityError
from catalog_sync.models.entity import EntityKind, MappingRecord

log = structlog.stdlib.get_logger()


class MappingStore(ABC):
    """Persistent mapping table for one entity kind.

    Implementations must keep external id, target id and natural key unique
    within the kind, and must make every write durable before returning.
    """

    def __init__(self, kind: EntityKind):
        self.kind: EntityKind = kind

    @abstractmethod
    def find_by_external_id(self, external_id: str) -> MappingRecord | None: ...

    @abstractmethod
    def find_by_natural_key(self, natural_key: str) -> MappingRecord | None: ...

    @abstractmethod
    def find_by_fingerprint(self, fingerprint: str) -> MappingRecord | None: ...

    @abstractmethod
    def upsert(self, record: MappingRecord) -> None:
        """
        Insert or replace the record keyed by its external id.

        Raises:
            MappingIntegrityError: If the natural key or target id belongs to
                another external id
        """

    @abstractmethod
    def list_all(self) -> list[MappingRecord]: ...

    @abstractmethod
    def delete_by_target_id(self, target_id: str) -> bool:
        """Delete the record for ``target_id``. Returns False if none existed."""


def _check_unique(
    kind: EntityKind,
    record: MappingRecord,
    holder_of_natural_key: MappingRecord | None,
    holder_of_target_id: MappingRecord | None,
) -> None:
    if holder_of_natural_key and holder_of_natural_key.external_id != record.external_id:
        raise MappingIntegrityError(
            f"{kind.value} natural key '{record.natural_key}' already mapped to external id "
            f"'{holder_of_natural_key.external_id}'"
        )
    if holder_of_target_id and holder_of_target_id.external_id != record.external_id:
        raise MappingIntegrityError(
            f"{kind.value} target id '{record.target_id}' already mapped to external id "
            f"'{holder_of_target_id.external_id}'"
        )


class InMemoryMappingStore(MappingStore):
    """Dictionary-backed store for tests and dry runs."""

    def __init__(self, kind: EntityKind):
        super().__init__(kind)
        self._records: dict[str, MappingRecord] = {}

    def find_by_external_id(self, external_id: str) -> MappingRecord | None:
        return self._records.get(external_id)

    def find_by_natural_key(self, natural_key: str) -> MappingRecord | None:
        return next((r for r in self._records.values() if r.natural_key == natural_key), None)

    def find_by_fingerprint(self, fingerprint: str) -> MappingRecord | None:
        return next((r for r in self._records.values() if r.fingerprint == fingerprint), None)

    def find_by_target_id(self, target_id: str) -> MappingRecord | None:
        return next((r for r in self._records.values() if r.target_id == target_id), None)

    def upsert(self, record: MappingRecord) -> None:
        _check_unique(
            self.kind,
            record,
            self.find_by_natural_key(record.natural_key),
            self.find_by_target_id(record.target_id),
        )
        self._records[record.external_id] = record.model_copy()

    def list_all(self) -> list[MappingRecord]:
        return list(self._records.values())

    def delete_by_target_id(self, target_id: str) -> bool:
        existing = self.find_by_target_id(target_id)
        if existing is None:
            return False
        del self._records[existing.external_id]
        return True


class CachedMappingStore(MappingStore):
    """Read-through cache over another store.

    The cache is filled from ``list_all()`` on the first lookup after
    ``invalidate()`` and kept in step by write-through. Writes reach the
    backing store before the cache changes.
    """

    def __init__(self, backing: MappingStore):
        super().__init__(backing.kind)
        self._backing: MappingStore = backing
        self._by_external_id: dict[str, MappingRecord] | None = None

    @property
    def backing(self) -> MappingStore:
        return self._backing

    @property
    def loaded(self) -> bool:
        return self._by_external_id is not None

    def invalidate(self) -> None:
        """Drop cached state; the next lookup reloads from the backing store."""
        self._by_external_id = None

    def _records(self) -> dict[str, MappingRecord]:
        if self._by_external_id is None:
            records = self._backing.list_all()
            self._by_external_id = {r.external_id: r for r in records}
            log.info("mapping_cache_loaded", kind=self.kind.value, record_count=len(records))
        return self._by_external_id

    def _find(self, predicate: Callable[[MappingRecord], bool]) -> MappingRecord | None:
        return next((r for r in self._records().values() if predicate(r)), None)

    def find_by_external_id(self, external_id: str) -> MappingRecord | None:
        return self._records().get(external_id)

    def find_by_natural_key(self, natural_key: str) -> MappingRecord | None:
        return self._find(lambda r: r.natural_key == natural_key)

    def find_by_fingerprint(self, fingerprint: str) -> MappingRecord | None:
        return self._find(lambda r: r.fingerprint == fingerprint)

    def upsert(self, record: MappingRecord) -> None:
        self._backing.upsert(record)
        if self._by_external_id is not None:
            self._by_external_id[record.external_id] = record

    def list_all(self) -> list[MappingRecord]:
        return list(self._records().values())

    def delete_by_target_id(self, target_id: str) -> bool:
        deleted = self._backing.delete_by_target_id(target_id)
        if self._by_external_id is not None:
            stale = [k for k, r in self._by_external_id.items() if r.target_id == target_id]
            for external_id in stale:
                del self._by_external_id[external_id]
        return deleted


class MappingStores:
    """One mapping store per entity kind."""

    def __init__(self, stores: dict[EntityKind, MappingStore]):
        self._stores: dict[EntityKind, MappingStore] = dict(stores)

    @classmethod
    def build(cls, factory: Callable[[EntityKind], MappingStore]) -> "MappingStores":
        return cls({kind: factory(kind) for kind in EntityKind})

    @classmethod
    def in_memory(cls) -> "MappingStores":
        return cls.build(InMemoryMappingStore)

    def __getitem__(self, kind: EntityKind) -> MappingStore:
        return self._stores[kind]

    def __iter__(self) -> Iterator[EntityKind]:
        return iter(self._stores)

    def cached(self) -> "MappingStores":
        """Wrap every store in a ``CachedMappingStore`` (idempotent)."""
        return MappingStores(
            {
                kind: store if isinstance(store, CachedMappingStore) else CachedMappingStore(store)
                for kind, store in self._stores.items()
            }
        )

    def invalidate(self) -> None:
        for store in self._stores.values():
            if isinstance(store, CachedMappingStore):
                store.invalidate()
