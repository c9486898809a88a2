"""Reconciliation package: existence resolution, state machine and run engine."""
from reconciliation.reconciler import Decision, Reconciler, diff_fields
from reconciliation.existence import ExistenceResolver, FirestoreDownstreamStore
from reconciliation.engine import ReconciliationEngine, ReconciliationResult
from reconciliation.scheduler import ReconciliationScheduler, ReconciliationState

__all__ = [
    'Decision',
    'Reconciler',
    'diff_fields',
    'ExistenceResolver',
    'FirestoreDownstreamStore',
    'ReconciliationEngine',
    'ReconciliationResult',
    'ReconciliationScheduler',
    'ReconciliationState',
]
