"""Source-of-truth access."""

from catalog_sync.ingestion.source_client import (
    HttpSourceClient,
    InvalidSourceRecord,
    SourceClient,
)

__all__ = ["HttpSourceClient", "InvalidSourceRecord", "SourceClient"]
