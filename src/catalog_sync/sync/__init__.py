"""Synchronization engine: fingerprints, reconciliation and orchestration."""

from catalog_sync.sync.fingerprint import fingerprint
from catalog_sync.sync.models import Action, KindReport, Outcome, RunReport, SyncPlan
from catalog_sync.sync.orchestrator import SyncOrchestrator
from catalog_sync.sync.reconciler import Reconciler
from catalog_sync.sync.reference_resolver import ReferenceResolver
from catalog_sync.sync.strategies import KindStrategy, default_strategies, dependency_order

__all__ = [
    "fingerprint",
    "Action",
    "Outcome",
    "SyncPlan",
    "KindReport",
    "RunReport",
    "Reconciler",
    "ReferenceResolver",
    "SyncOrchestrator",
    "KindStrategy",
    "default_strategies",
    "dependency_order",
]
