"""Identity mapping storage."""

import structlog
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from catalog_sync.errors import ConfigurationError
from catalog_sync.models.config import StoreConfig
from catalog_sync.storage.mapping_store import (
    CachedMappingStore,
    InMemoryMappingStore,
    MappingStore,
    MappingStores,
)
from catalog_sync.storage.sql_mapping_store import SqlMappingStore

log = structlog.stdlib.get_logger()


def build_stores(config: StoreConfig) -> MappingStores:
    """
    Create one mapping store per entity kind for the configured backend.

    Args:
        config: Store configuration (backend ``sql`` or ``memory``)

    Returns:
        MappingStores for every entity kind

    Raises:
        ConfigurationError: If the backend is unknown
    """
    if config.backend == "memory":
        log.info("mapping_stores_created", backend="memory")
        return MappingStores.in_memory()

    if config.backend == "sql":
        if config.url in ("sqlite://", "sqlite:///:memory:"):
            engine = create_engine(config.url, poolclass=StaticPool)
        else:
            engine = create_engine(config.url)
        log.info("mapping_stores_created", backend="sql", url=engine.url.render_as_string())
        return MappingStores.build(lambda kind: SqlMappingStore(engine, kind))

    raise ConfigurationError(f"Unknown mapping store backend: {config.backend}")


__all__ = [
    "MappingStore",
    "InMemoryMappingStore",
    "CachedMappingStore",
    "MappingStores",
    "SqlMappingStore",
    "build_stores",
]
