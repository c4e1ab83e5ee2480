"""Data models for synchronization decisions, outcomes and reports."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from catalog_sync.models.entity import EntityKind, MappingRecord, SourceEntity


class Outcome(str, Enum):
    """Per-entity result of a sync pass."""

    CREATED = "created"
    UPDATED = "updated"
    SKIPPED_UNCHANGED = "skipped-unchanged"
    SKIPPED_MISSING_REFERENCE = "skipped-missing-reference"
    FAILED = "failed"
    DELETED = "deleted"


class Action(str, Enum):
    """What the reconciler decided to do with an entity."""

    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"
    REKEY = "rekey"


class SyncPlan(BaseModel):
    """Reconciler decision for one entity, before any mutation."""

    entity: SourceEntity = Field(..., description="Entity being reconciled")
    action: Action = Field(..., description="Chosen action")
    fingerprint: str = Field(..., description="Current fingerprint of the entity")
    target_id: str | None = Field(
        default=None, description="Target id to update, or the already materialized record"
    )
    replaces: MappingRecord | None = Field(
        default=None,
        description="Mapping held by another external id that the new record replaces",
    )
    reason: str = Field(default="", description="Why this action was chosen")


class ReconcileResult(BaseModel):
    """Result of applying a plan: the outcome and the mapping record to write."""

    outcome: Outcome = Field(..., description="Per-entity outcome")
    record: MappingRecord | None = Field(
        default=None, description="Mapping record to upsert, if any"
    )
    replaces: MappingRecord | None = Field(
        default=None, description="Mapping to delete before the upsert"
    )
    payload: dict[str, Any] | None = Field(default=None, description="Submitted payload")
    message: str = Field(default="", description="Warning or error detail")


class KindReport(BaseModel):
    """Outcome counts and error samples for one kind's pass."""

    kind: EntityKind = Field(..., description="Entity kind of this pass")
    delete_mode: bool = Field(default=False, description="True for a retraction pass")
    counts: dict[Outcome, int] = Field(
        default_factory=lambda: {outcome: 0 for outcome in Outcome},
        description="Number of entities per outcome",
    )
    errors: list[str] = Field(
        default_factory=list, description="Bounded sample of error and warning messages"
    )
    stale_removed: int = Field(default=0, ge=0, description="Stale mappings removed before the pass")
    aborted: bool = Field(default=False, description="True if a fetch error ended the pass early")
    abort_reason: str | None = Field(default=None, description="Fetch error that aborted the pass")
    cancelled: bool = Field(default=False, description="True if the run was cancelled mid-pass")
    start_time: datetime = Field(default_factory=datetime.now, description="Pass start timestamp")
    end_time: datetime | None = Field(default=None, description="Pass end timestamp")

    def record(self, outcome: Outcome, message: str | None = None, max_samples: int = 20) -> None:
        """Count an outcome and keep its message while the sample has room."""
        self.counts[outcome] = self.counts.get(outcome, 0) + 1
        if message and len(self.errors) < max_samples:
            self.errors.append(message)

    def count(self, outcome: Outcome) -> int:
        return self.counts.get(outcome, 0)

    @property
    def processed(self) -> int:
        """Number of entities that reached an outcome."""
        return sum(self.counts.values())

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        """True if the pass ran to completion without failed entities."""
        return not self.aborted and not self.cancelled and self.count(Outcome.FAILED) == 0


class RunReport(BaseModel):
    """Report of a multi-kind sync run."""

    run_id: str = Field(..., description="Identifier bound to every log line of the run")
    kinds: list[KindReport] = Field(default_factory=list, description="Per-kind reports in run order")
    cancelled: bool = Field(default=False, description="True if the run stopped on cancellation")
    start_time: datetime = Field(default_factory=datetime.now, description="Run start timestamp")
    end_time: datetime | None = Field(default=None, description="Run end timestamp")

    def totals(self) -> dict[Outcome, int]:
        totals = {outcome: 0 for outcome in Outcome}
        for report in self.kinds:
            for outcome, count in report.counts.items():
                totals[outcome] += count
        return totals

    def for_kind(self, kind: EntityKind) -> KindReport | None:
        return next((report for report in self.kinds if report.kind == kind), None)

    @property
    def success(self) -> bool:
        return not self.cancelled and all(report.success for report in self.kinds)
