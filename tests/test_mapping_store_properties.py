"""Property-based tests for the identity mapping stores.

Feature: catalog-sync
"""

from datetime import datetime, timezone

import pytest
import structlog
from hypothesis import given, settings, strategies as st
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from catalog_sync.errors import ConfigurationError, MappingIntegrityError
from catalog_sync.models.config import StoreConfig
from catalog_sync.models.entity import EntityKind, MappingRecord
from catalog_sync.storage import (
    CachedMappingStore,
    InMemoryMappingStore,
    MappingStores,
    SqlMappingStore,
    build_stores,
)

log = structlog.stdlib.get_logger()

ident = st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789", min_size=1, max_size=8)


def sql_store(kind: EntityKind = EntityKind.FILE) -> SqlMappingStore:
    engine = create_engine("sqlite://", poolclass=StaticPool)
    return SqlMappingStore(engine, kind)


STORE_FACTORIES = {
    "memory": lambda: InMemoryMappingStore(EntityKind.FILE),
    "sql": sql_store,
    "cached": lambda: CachedMappingStore(InMemoryMappingStore(EntityKind.FILE)),
}


def record(external_id: str, target_id: str | None = None, natural_key: str | None = None, **extra):
    return MappingRecord(
        external_id=external_id,
        target_id=target_id or f"T-{external_id}",
        natural_key=natural_key or f"nk-{external_id}",
        fingerprint=extra.pop("fingerprint", f"fp-{external_id}"),
        **extra,
    )


@st.composite
def distinct_records(draw):
    """Generate records whose three keys are unique."""
    ids = draw(st.lists(ident, min_size=1, max_size=10, unique=True))
    return [record(i) for i in ids]


@pytest.mark.parametrize("backend", sorted(STORE_FACTORIES))
@given(records=distinct_records())
@settings(max_examples=25, deadline=None)
def test_every_lookup_finds_the_upserted_record(backend: str, records: list[MappingRecord]):
    """Property: An upserted record is found by external id, natural key and fingerprint."""
    log.info("test_every_lookup_finds_the_upserted_record", backend=backend, count=len(records))

    store = STORE_FACTORIES[backend]()
    for r in records:
        store.upsert(r)

    for r in records:
        assert store.find_by_external_id(r.external_id).target_id == r.target_id
        assert store.find_by_natural_key(r.natural_key).external_id == r.external_id
        assert store.find_by_fingerprint(r.fingerprint).external_id == r.external_id

    assert sorted(r.external_id for r in store.list_all()) == sorted(
        r.external_id for r in records
    )


@pytest.mark.parametrize("backend", sorted(STORE_FACTORIES))
def test_upsert_overwrites_by_external_id(backend: str):
    """A second upsert for the same external id replaces fingerprint and target id."""
    store = STORE_FACTORIES[backend]()
    store.upsert(record("F1", target_id="T1", fingerprint="H1"))
    store.upsert(record("F1", target_id="T2", fingerprint="H2"))

    found = store.find_by_external_id("F1")
    assert found.target_id == "T2"
    assert found.fingerprint == "H2"
    assert len(store.list_all()) == 1
    assert store.find_by_fingerprint("H1") is None


@pytest.mark.parametrize("backend", sorted(STORE_FACTORIES))
def test_natural_key_held_by_another_external_id_is_rejected(backend: str):
    """Upserting a natural key owned by another external id raises MappingIntegrityError."""
    store = STORE_FACTORIES[backend]()
    store.upsert(record("F1", natural_key="hero.png"))

    with pytest.raises(MappingIntegrityError):
        store.upsert(record("F2", natural_key="hero.png"))

    assert store.find_by_external_id("F2") is None
    assert store.find_by_natural_key("hero.png").external_id == "F1"


@pytest.mark.parametrize("backend", sorted(STORE_FACTORIES))
def test_target_id_held_by_another_external_id_is_rejected(backend: str):
    """Upserting a target id owned by another external id raises MappingIntegrityError."""
    store = STORE_FACTORIES[backend]()
    store.upsert(record("F1", target_id="T1"))

    with pytest.raises(MappingIntegrityError):
        store.upsert(record("F2", target_id="T1"))

    assert [r.external_id for r in store.list_all()] == ["F1"]


@pytest.mark.parametrize("backend", sorted(STORE_FACTORIES))
def test_delete_by_target_id(backend: str):
    """delete_by_target_id removes exactly one record and reports whether it existed."""
    store = STORE_FACTORIES[backend]()
    store.upsert(record("F1", target_id="T1"))
    store.upsert(record("F2", target_id="T2"))

    assert store.delete_by_target_id("T1") is True
    assert store.delete_by_target_id("T1") is False
    assert store.find_by_external_id("F1") is None
    assert store.find_by_external_id("F2") is not None


@pytest.mark.parametrize("backend", sorted(STORE_FACTORIES))
def test_references_complete_flag_round_trips(backend: str):
    """The references_complete flag and the dropped references are persisted with the record."""
    store = STORE_FACTORIES[backend]()
    store.upsert(
        record("D1", references_complete=False, unresolved_references=["file:F404", "file:F9"])
    )

    found = store.find_by_external_id("D1")
    assert found.references_complete is False
    assert found.unresolved_references == ["file:F404", "file:F9"]


def test_sql_store_returns_utc_timestamps():
    """Timestamps written as naive or offset datetimes come back as UTC-aware values."""
    store = sql_store()
    naive = datetime(2024, 5, 1, 12, 30)
    store.upsert(record("F1", last_updated=naive))

    found = store.find_by_external_id("F1")
    assert found.last_updated.tzinfo is not None
    assert found.last_updated.utcoffset().total_seconds() == 0
    assert found.last_updated.replace(tzinfo=None) == naive


def test_sql_store_is_durable_across_instances():
    """Records written through one store instance are visible to a new instance."""
    engine = create_engine("sqlite://", poolclass=StaticPool)
    SqlMappingStore(engine, EntityKind.DOCUMENT).upsert(record("D1", target_id="T1"))

    reopened = SqlMappingStore(engine, EntityKind.DOCUMENT)

    assert reopened.find_by_external_id("D1").target_id == "T1"


def test_sql_stores_keep_kinds_apart():
    """The same external id can be mapped independently in two kinds."""
    engine = create_engine("sqlite://", poolclass=StaticPool)
    files = SqlMappingStore(engine, EntityKind.FILE)
    pages = SqlMappingStore(engine, EntityKind.DOCUMENT)

    files.upsert(record("X1", target_id="file-target"))
    pages.upsert(record("X1", target_id="page-target"))

    assert files.find_by_external_id("X1").target_id == "file-target"
    assert pages.find_by_external_id("X1").target_id == "page-target"


def test_cached_store_loads_lazily_and_writes_through():
    """The cache loads on first lookup, and writes reach the backing store first."""
    backing = InMemoryMappingStore(EntityKind.FILE)
    backing.upsert(record("F1"))
    cached = CachedMappingStore(backing)

    assert cached.loaded is False
    assert cached.find_by_external_id("F1") is not None
    assert cached.loaded is True

    cached.upsert(record("F2"))
    assert backing.find_by_external_id("F2") is not None

    cached.delete_by_target_id("T-F1")
    assert backing.find_by_external_id("F1") is None
    assert cached.find_by_external_id("F1") is None


def test_cached_store_sees_out_of_band_writes_only_after_invalidate():
    """Writes made directly to the backing store appear after invalidate()."""
    backing = InMemoryMappingStore(EntityKind.FILE)
    cached = CachedMappingStore(backing)
    assert cached.find_by_external_id("F1") is None

    backing.upsert(record("F1"))
    assert cached.find_by_external_id("F1") is None, "Loaded cache is not re-read"

    cached.invalidate()
    assert cached.find_by_external_id("F1") is not None


def test_cached_store_keeps_cache_unchanged_when_backing_write_fails():
    """A rejected upsert leaves the cache as it was."""
    cached = CachedMappingStore(InMemoryMappingStore(EntityKind.FILE))
    cached.upsert(record("F1", natural_key="hero.png"))

    with pytest.raises(MappingIntegrityError):
        cached.upsert(record("F2", natural_key="hero.png"))

    assert cached.find_by_external_id("F2") is None


def test_mapping_stores_cached_is_idempotent():
    """Wrapping twice does not stack caches."""
    stores = MappingStores.in_memory().cached()
    again = stores.cached()

    for kind in EntityKind:
        assert isinstance(again[kind], CachedMappingStore)
        assert isinstance(again[kind].backing, InMemoryMappingStore)


def test_build_stores_backends():
    """build_stores creates one store per kind for memory and sql, and rejects others."""
    memory = build_stores(StoreConfig(backend="memory"))
    assert all(isinstance(memory[kind], InMemoryMappingStore) for kind in EntityKind)

    sql = build_stores(StoreConfig(backend="sql", url="sqlite://"))
    assert all(isinstance(sql[kind], SqlMappingStore) for kind in EntityKind)
    sql[EntityKind.REDIRECT].upsert(record("R1"))
    assert sql[EntityKind.REDIRECT].find_by_external_id("R1") is not None

    with pytest.raises(ConfigurationError):
        build_stores(StoreConfig(backend="mongo"))


def test_sql_store_defaults_last_updated_to_now():
    """Records without an explicit timestamp get the current UTC time."""
    store = sql_store()
    before = datetime.now(timezone.utc)
    store.upsert(record("F1"))

    assert store.find_by_external_id("F1").last_updated >= before.replace(microsecond=0)
