"""SQLAlchemy-backed identity mapping store."""

from datetime import datetime, timezone

import structlog
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Dialect,
    Engine,
    Index,
    JSON,
    MetaData,
    String,
    Table,
    TypeDecorator,
    UniqueConstraint,
    delete,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError

from catalog_sync.errors import MappingIntegrityError
from catalog_sync.models.entity import EntityKind, MappingRecord
from catalog_sync.storage.mapping_store import MappingStore

log = structlog.stdlib.get_logger()

metadata = MetaData()


class UTCDateTime(TypeDecorator[datetime]):
    """Stores timezone-aware datetimes and always returns them in UTC."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def mapping_table(kind: EntityKind) -> Table:
    """Return the table for ``kind``, defining it on first use."""
    name = f"mapping_{kind.value}"
    if name in metadata.tables:
        return metadata.tables[name]
    return Table(
        name,
        metadata,
        Column("external_id", String(255), primary_key=True),
        Column("target_id", String(255), nullable=False),
        Column("natural_key", String(1024), nullable=False),
        Column("fingerprint", String(64), nullable=False),
        Column("last_updated", UTCDateTime(), nullable=False),
        Column("references_complete", Boolean, nullable=False, default=True),
        Column("unresolved_references", JSON, nullable=False),
        UniqueConstraint("target_id", name=f"uq_{name}_target_id"),
        UniqueConstraint("natural_key", name=f"uq_{name}_natural_key"),
        Index(f"ix_{name}_fingerprint", "fingerprint"),
    )


class SqlMappingStore(MappingStore):
    """
    Mapping store for one kind backed by a relational table.

    Every write runs in its own transaction and is committed before the
    method returns.
    """

    def __init__(self, engine: Engine, kind: EntityKind, create_tables: bool = True):
        super().__init__(kind)
        self.engine = engine
        self.table = mapping_table(kind)
        if create_tables:
            self.table.create(engine, checkfirst=True)

    def _to_record(self, row) -> MappingRecord:
        return MappingRecord(
            external_id=row.external_id,
            target_id=row.target_id,
            natural_key=row.natural_key,
            fingerprint=row.fingerprint,
            last_updated=row.last_updated,
            references_complete=row.references_complete,
            unresolved_references=list(row.unresolved_references or []),
        )

    def _find_one(self, column, value: str) -> MappingRecord | None:
        stmt = select(self.table).where(column == value).limit(1)
        with self.engine.connect() as conn:
            row = conn.execute(stmt).first()
        return self._to_record(row) if row is not None else None

    def find_by_external_id(self, external_id: str) -> MappingRecord | None:
        return self._find_one(self.table.c.external_id, external_id)

    def find_by_natural_key(self, natural_key: str) -> MappingRecord | None:
        return self._find_one(self.table.c.natural_key, natural_key)

    def find_by_fingerprint(self, fingerprint: str) -> MappingRecord | None:
        return self._find_one(self.table.c.fingerprint, fingerprint)

    def upsert(self, record: MappingRecord) -> None:
        values = {
            "target_id": record.target_id,
            "natural_key": record.natural_key,
            "fingerprint": record.fingerprint,
            "last_updated": record.last_updated,
            "references_complete": record.references_complete,
            "unresolved_references": list(record.unresolved_references),
        }
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    update(self.table)
                    .where(self.table.c.external_id == record.external_id)
                    .values(**values)
                )
                if result.rowcount == 0:
                    conn.execute(
                        self.table.insert().values(external_id=record.external_id, **values)
                    )
        except IntegrityError as e:
            log.error(
                "mapping_upsert_conflict",
                kind=self.kind.value,
                external_id=record.external_id,
                target_id=record.target_id,
                natural_key=record.natural_key,
                error=str(e.orig),
            )
            raise MappingIntegrityError(
                f"{self.kind.value} mapping for external id '{record.external_id}' conflicts "
                f"with an existing record: {e.orig}"
            ) from e

    def list_all(self) -> list[MappingRecord]:
        stmt = select(self.table).order_by(self.table.c.external_id)
        with self.engine.connect() as conn:
            return [self._to_record(row) for row in conn.execute(stmt)]

    def delete_by_target_id(self, target_id: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(delete(self.table).where(self.table.c.target_id == target_id))
        return result.rowcount > 0
