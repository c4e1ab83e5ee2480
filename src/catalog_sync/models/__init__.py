"""Data models for the catalog synchronization engine."""

from catalog_sync.models.config import (
    AppConfig,
    LoggingConfig,
    PartialReferencePolicy,
    SourceConfig,
    StoreConfig,
    SyncConfig,
    TargetConfig,
)
from catalog_sync.models.entity import EntityKind, MappingRecord, SourceEntity, SourceField

__all__ = [
    "EntityKind",
    "SourceEntity",
    "SourceField",
    "MappingRecord",
    "AppConfig",
    "SourceConfig",
    "TargetConfig",
    "StoreConfig",
    "SyncConfig",
    "LoggingConfig",
    "PartialReferencePolicy",
]
