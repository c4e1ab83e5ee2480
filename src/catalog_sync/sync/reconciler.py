"""Create/update/skip decisions for individual source entities."""

import threading

import structlog

from catalog_sync.errors import (
    MissingReferenceError,
    SyncCancelledError,
    TargetApiError,
    ValidationError,
)
from catalog_sync.models.config import SyncConfig
from catalog_sync.models.entity import (
    EntityKind,
    MappingRecord,
    SourceEntity,
    parse_reference_token,
)
from catalog_sync.storage.mapping_store import MappingStores
from catalog_sync.sync.fingerprint import fingerprint
from catalog_sync.sync.models import Action, Outcome, ReconcileResult, SyncPlan
from catalog_sync.sync.reference_resolver import ReferenceResolver
from catalog_sync.sync.strategies import KindStrategy
from catalog_sync.target.platform import TargetPlatform

log = structlog.stdlib.get_logger()


class Reconciler:
    """
    Decides and performs the target mutation for one entity at a time.

    The reconciler reads mapping stores and the target platform but never
    writes mappings; ``apply`` returns the record the caller must persist.
    """

    def __init__(
        self,
        stores: MappingStores,
        target: TargetPlatform,
        resolver: ReferenceResolver,
        strategies: dict[EntityKind, KindStrategy],
        config: SyncConfig,
        cancel_event: threading.Event | None = None,
    ):
        self.stores = stores
        self.target = target
        self.resolver = resolver
        self.strategies = strategies
        self.config = config
        self.cancel_event = cancel_event

    def plan(self, entity: SourceEntity) -> SyncPlan:
        """
        Choose the action for an entity from mapping and target lookups.

        Lookups run in order: external id, natural key in the store, natural
        key on the target platform. Only when all miss is the entity created.
        A store mapping found by natural key that already holds the current
        fingerprint is re-keyed without a mutation. An unchanged entity whose
        dropped list references still have no mapping is skipped.

        Args:
            entity: Source entity to reconcile

        Returns:
            SyncPlan describing the chosen action
        """
        strategy = self.strategies[entity.kind]
        store = self.stores[entity.kind]
        current = fingerprint(entity)

        existing = store.find_by_external_id(entity.external_id)
        if existing is not None:
            if existing.fingerprint == current and not self._references_resolvable(existing):
                return SyncPlan(
                    entity=entity,
                    action=Action.SKIP,
                    fingerprint=current,
                    target_id=existing.target_id,
                    reason="fingerprint unchanged",
                )
            reason = (
                "fingerprint changed"
                if existing.fingerprint != current
                else "dropped references now resolvable"
            )
            return SyncPlan(
                entity=entity,
                action=Action.UPDATE,
                fingerprint=current,
                target_id=existing.target_id,
                reason=reason,
            )

        by_natural_key = store.find_by_natural_key(entity.natural_key)
        if by_natural_key is not None:
            if by_natural_key.fingerprint == current and not self._references_resolvable(
                by_natural_key
            ):
                return SyncPlan(
                    entity=entity,
                    action=Action.REKEY,
                    fingerprint=current,
                    target_id=by_natural_key.target_id,
                    replaces=by_natural_key,
                    reason="identical content mapped under another external id",
                )
            return SyncPlan(
                entity=entity,
                action=Action.UPDATE,
                fingerprint=current,
                target_id=by_natural_key.target_id,
                replaces=by_natural_key,
                reason="natural key mapped under another external id",
            )

        lookup_key = strategy.target_lookup_key(entity, self.config)
        target_id = self.target.find_by_natural_key(entity.kind, lookup_key)
        if target_id:
            return SyncPlan(
                entity=entity,
                action=Action.UPDATE,
                fingerprint=current,
                target_id=target_id,
                reason="adopted existing target record",
            )

        return SyncPlan(
            entity=entity,
            action=Action.CREATE,
            fingerprint=current,
            reason="no mapping and no target record",
        )

    def apply(self, plan: SyncPlan) -> ReconcileResult:
        """
        Carry out a plan.

        Args:
            plan: Plan returned by ``plan``

        Returns:
            ReconcileResult with the outcome and the mapping record to write

        Raises:
            SyncCancelledError: If cancellation was requested before the mutation
            ValidationError: If the target rejected the payload
            TargetApiError: For non-retryable target errors
            ThrottleExhaustedError: If throttling outlasted the retry budget
            TransientTransportError: If transport failures outlasted the retry budget
        """
        entity = plan.entity
        strategy = self.strategies[entity.kind]

        if plan.action == Action.SKIP:
            return ReconcileResult(outcome=Outcome.SKIPPED_UNCHANGED)

        if plan.action == Action.REKEY:
            log.info(
                "entity_matched_by_fingerprint",
                kind=entity.kind.value,
                external_id=entity.external_id,
                target_id=plan.target_id,
            )
            return ReconcileResult(
                outcome=Outcome.SKIPPED_UNCHANGED,
                record=self._record(
                    entity,
                    plan.target_id,
                    plan.fingerprint,
                    plan.replaces.references_complete,
                    plan.replaces.unresolved_references,
                ),
                replaces=plan.replaces,
            )

        try:
            resolved = self.resolver.resolve_fields(entity, strategy)
        except MissingReferenceError as e:
            log.warning(
                "entity_skipped_missing_reference",
                kind=entity.kind.value,
                external_id=entity.external_id,
                referenced_kind=getattr(e.kind, "value", e.kind),
                referenced_external_id=e.external_id,
                field_key=e.field_key,
            )
            return ReconcileResult(
                outcome=Outcome.SKIPPED_MISSING_REFERENCE,
                message=f"{entity.kind.value} {entity.external_id}: {e}",
            )

        payload = strategy.build_payload(entity, resolved.values, self.config)

        if self.cancel_event is not None and self.cancel_event.is_set():
            raise SyncCancelledError(
                f"Cancelled before {plan.action.value} of {entity.kind.value} {entity.external_id}"
            )

        if plan.action == Action.CREATE:
            result = self.target.create(entity.kind, payload)
            verb, outcome = "create", Outcome.CREATED
        else:
            result = self.target.update(entity.kind, plan.target_id, payload)
            verb, outcome = "update", Outcome.UPDATED

        if not result.ok:
            raise ValidationError.from_user_errors(
                f"{verb} {entity.kind.value} '{entity.natural_key}'", result.errors
            )

        target_id = result.target_id or plan.target_id
        if not target_id:
            raise TargetApiError(
                f"{verb} of {entity.kind.value} '{entity.natural_key}' returned no target id"
            )

        log.info(
            "entity_synced",
            kind=entity.kind.value,
            external_id=entity.external_id,
            natural_key=entity.natural_key,
            action=verb,
            target_id=target_id,
            reason=plan.reason,
            references_complete=resolved.complete,
        )

        return ReconcileResult(
            outcome=outcome,
            record=self._record(
                entity, target_id, plan.fingerprint, resolved.complete, resolved.unresolved
            ),
            replaces=plan.replaces,
            payload=payload,
            message=(
                f"{entity.kind.value} {entity.external_id}: dropped unresolved references "
                f"{resolved.dropped}"
                if resolved.dropped
                else ""
            ),
        )

    def reconcile(self, entity: SourceEntity) -> ReconcileResult:
        """Plan and apply in one step."""
        return self.apply(self.plan(entity))

    def _references_resolvable(self, record: MappingRecord) -> bool:
        """
        Whether an incomplete record has a dropped reference that now has a mapping.

        Records marked incomplete without the dropped references listed are
        always retried.
        """
        if record.references_complete:
            return False
        if not record.unresolved_references:
            return True
        for token in record.unresolved_references:
            try:
                kind, external_id = parse_reference_token(token)
            except ValueError:
                return True
            if self.stores[kind].find_by_external_id(external_id) is not None:
                return True
        return False

    def _record(
        self,
        entity: SourceEntity,
        target_id: str | None,
        current: str,
        references_complete: bool,
        unresolved_references: list[str] | None = None,
    ) -> MappingRecord:
        return MappingRecord(
            external_id=entity.external_id,
            target_id=target_id,
            natural_key=entity.natural_key,
            fingerprint=current,
            references_complete=references_complete,
            unresolved_references=list(unresolved_references or []),
        )
