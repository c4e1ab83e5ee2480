"""Dependency-ordered, multi-kind synchronization runs."""

import threading
import uuid
from datetime import datetime
from typing import Any

import structlog

from catalog_sync.errors import (
    FetchError,
    MappingIntegrityError,
    SyncCancelledError,
    ValidationError,
)
from catalog_sync.ingestion.source_client import InvalidSourceRecord, SourceClient
from catalog_sync.models.config import SyncConfig
from catalog_sync.models.entity import EntityKind, SourceEntity
from catalog_sync.storage.mapping_store import MappingStores
from catalog_sync.sync.models import KindReport, Outcome, ReconcileResult, RunReport
from catalog_sync.sync.reconciler import Reconciler
from catalog_sync.sync.reference_resolver import ReferenceResolver
from catalog_sync.sync.strategies import KindStrategy, default_strategies, dependency_order
from catalog_sync.target.platform import TargetPlatform
from catalog_sync.utils.logging_config import bind_sync_context, clear_sync_context

log = structlog.stdlib.get_logger()


class SyncOrchestrator:
    """Runs sync passes kind by kind and is the only writer of mapping records."""

    def __init__(
        self,
        source: SourceClient,
        target: TargetPlatform,
        stores: MappingStores,
        strategies: dict[EntityKind, KindStrategy] | None = None,
        config: SyncConfig | None = None,
        cancel_event: threading.Event | None = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            source: Source-of-truth client
            target: Target platform
            stores: Mapping store per kind; wrapped in read-through caches
            strategies: Strategy per kind (defaults to every built-in kind)
            config: Sync behavior (defaults to SyncConfig())
            cancel_event: Set to request cancellation between entities and kinds
        """
        self.source = source
        self.target = target
        self.stores = stores.cached()
        self.strategies = strategies or default_strategies()
        self.config = config or SyncConfig()
        self.cancel_event = cancel_event or threading.Event()
        self.order = dependency_order(self.strategies.values())
        self.resolver = ReferenceResolver(self.stores, self.config.on_partial_reference_failure)
        self.reconciler = Reconciler(
            self.stores,
            target,
            self.resolver,
            self.strategies,
            self.config,
            self.cancel_event,
        )
        log.info("sync_orchestrator_initialized", order=[kind.value for kind in self.order])

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        """Request cancellation; the current entity finishes or aborts before its mutation."""
        self.cancel_event.set()

    def sync_kind(
        self,
        kind: EntityKind,
        limit: int | None = None,
        delete_mode: bool = False,
    ) -> KindReport:
        """
        Run one kind's pass as a run of its own.

        Args:
            kind: Entity kind to sync
            limit: Maximum number of entities to process (None for all)
            delete_mode: Retract previously synced records instead of syncing

        Returns:
            KindReport for the pass
        """
        run_id = self._begin_run()
        try:
            if delete_mode:
                return self._retract_pass(kind, limit)
            return self._sync_pass(kind, limit)
        finally:
            log.info("sync_run_finished", run_id=run_id)
            clear_sync_context()

    def sync_everything(self, limit: int | None = None) -> RunReport:
        """
        Sync every kind in dependency order, each with the same ``limit``.

        A kind whose pass fails outside the per-entity loop is reported as
        aborted and later kinds still run; completed kinds are not rolled back.
        """
        run_id = self._begin_run()
        report = RunReport(run_id=run_id)
        try:
            for kind in self.order:
                if self.cancelled:
                    report.cancelled = True
                    log.warning("sync_run_cancelled", before_kind=kind.value)
                    break
                kind_report = self._sync_pass(kind, limit)
                report.kinds.append(kind_report)
                if kind_report.cancelled:
                    report.cancelled = True
                    break
        finally:
            report.end_time = datetime.now()
            log.info(
                "sync_run_finished",
                run_id=run_id,
                kinds=[r.kind.value for r in report.kinds],
                totals={outcome.value: count for outcome, count in report.totals().items()},
                cancelled=report.cancelled,
                success=report.success,
            )
            clear_sync_context()
        return report

    def retract_kind(self, kind: EntityKind, limit: int | None = None) -> KindReport:
        """Delete previously synced target records of ``kind`` and their mappings."""
        return self.sync_kind(kind, limit, delete_mode=True)

    def reconcile_stale_mappings(self, kind: EntityKind) -> int:
        """
        Remove mappings whose target record no longer exists.

        Returns:
            Number of mappings removed

        Raises:
            FetchError: If the target enumeration fails
        """
        try:
            present = set(self.target.iter_target_ids(kind))
        except FetchError:
            raise
        except Exception as e:
            raise FetchError(f"Enumerating target {kind.value} records failed: {e}") from e

        store = self.stores[kind]
        removed = 0
        for record in store.list_all():
            if record.target_id in present:
                continue
            store.delete_by_target_id(record.target_id)
            removed += 1
            log.info(
                "stale_mapping_removed",
                kind=kind.value,
                external_id=record.external_id,
                target_id=record.target_id,
            )

        log.info(
            "stale_mappings_reconciled",
            kind=kind.value,
            target_count=len(present),
            removed=removed,
        )
        return removed

    def _begin_run(self) -> str:
        run_id = uuid.uuid4().hex[:12]
        clear_sync_context()
        bind_sync_context(run_id=run_id)
        self.stores.invalidate()
        log.info("sync_run_started", run_id=run_id)
        return run_id

    def _sync_pass(self, kind: EntityKind, limit: int | None) -> KindReport:
        bind_sync_context(kind=kind.value)
        report = KindReport(kind=kind)
        log.info("kind_sync_started", kind=kind.value, limit=limit)

        try:
            report.stale_removed = self.reconcile_stale_mappings(kind)
            processed = 0
            for item in self.source.iter_entities(kind):
                if limit is not None and processed >= limit:
                    break
                if self.cancelled:
                    report.cancelled = True
                    break
                processed += 1
                if not self._process(item, report):
                    report.cancelled = True
                    break
        except FetchError as e:
            report.aborted = True
            report.abort_reason = str(e)
            log.error("kind_sync_aborted", kind=kind.value, error=str(e))
        except Exception as e:
            report.aborted = True
            report.abort_reason = f"{type(e).__name__}: {e}"
            log.error(
                "kind_sync_aborted",
                kind=kind.value,
                error=str(e),
                error_type=type(e).__name__,
            )

        self._finish(report)
        return report

    def _process(self, item: SourceEntity | InvalidSourceRecord, report: KindReport) -> bool:
        """Reconcile one entity and record its outcome. Returns False on cancellation."""
        max_samples = self.config.max_error_samples

        if isinstance(item, InvalidSourceRecord):
            report.record(
                Outcome.FAILED,
                f"{item.kind.value} {item.external_id}: invalid source record: {item.error}",
                max_samples,
            )
            return True

        try:
            result = self.reconciler.reconcile(item)
            self._write_mapping(item.kind, result)
        except SyncCancelledError as e:
            log.warning("entity_sync_cancelled", external_id=item.external_id, error=str(e))
            return False
        except MappingIntegrityError as e:
            log.error(
                "mapping_integrity_violation",
                kind=item.kind.value,
                external_id=item.external_id,
                natural_key=item.natural_key,
                error=str(e),
            )
            report.record(Outcome.FAILED, f"{item.kind.value} {item.external_id}: {e}", max_samples)
        except ValidationError as e:
            log.error(
                "entity_rejected_by_target",
                kind=item.kind.value,
                external_id=item.external_id,
                user_errors=e.user_errors,
            )
            report.record(Outcome.FAILED, f"{item.kind.value} {item.external_id}: {e}", max_samples)
        except Exception as e:
            log.error(
                "entity_sync_failed",
                kind=item.kind.value,
                external_id=item.external_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            report.record(Outcome.FAILED, f"{item.kind.value} {item.external_id}: {e}", max_samples)
        else:
            report.record(result.outcome, result.message or None, max_samples)
        return True

    def _write_mapping(self, kind: EntityKind, result: ReconcileResult) -> None:
        record = result.record
        if record is None:
            return
        store = self.stores[kind]
        replaced = result.replaces
        if replaced is not None and replaced.external_id != record.external_id:
            store.delete_by_target_id(replaced.target_id)
            log.info(
                "mapping_rekeyed",
                kind=kind.value,
                old_external_id=replaced.external_id,
                new_external_id=record.external_id,
                target_id=record.target_id,
            )
        store.upsert(record)

    def _retract_pass(self, kind: EntityKind, limit: int | None) -> KindReport:
        bind_sync_context(kind=kind.value)
        report = KindReport(kind=kind, delete_mode=True)
        store = self.stores[kind]
        max_samples = self.config.max_error_samples
        log.info("kind_retract_started", kind=kind.value, limit=limit)

        records = store.list_all()
        if limit is not None:
            records = records[:limit]

        for record in records:
            if self.cancelled:
                report.cancelled = True
                break
            try:
                result = self.target.delete(kind, record.target_id)
                if not result.ok:
                    raise ValidationError.from_user_errors(
                        f"delete {kind.value} '{record.natural_key}'", result.errors
                    )
                store.delete_by_target_id(record.target_id)
            except Exception as e:
                log.error(
                    "entity_retract_failed",
                    kind=kind.value,
                    external_id=record.external_id,
                    target_id=record.target_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                report.record(
                    Outcome.FAILED, f"{kind.value} {record.external_id}: {e}", max_samples
                )
            else:
                log.info(
                    "entity_retracted",
                    kind=kind.value,
                    external_id=record.external_id,
                    target_id=record.target_id,
                )
                report.record(Outcome.DELETED)

        self._finish(report)
        return report

    def _finish(self, report: KindReport) -> None:
        report.end_time = datetime.now()
        summary: dict[str, Any] = {
            outcome.value: count for outcome, count in report.counts.items() if count
        }
        log.info(
            "kind_sync_completed",
            kind=report.kind.value,
            delete_mode=report.delete_mode,
            counts=summary,
            stale_removed=report.stale_removed,
            aborted=report.aborted,
            cancelled=report.cancelled,
            duration_seconds=report.duration_seconds,
        )
        clear_sync_context("kind")
