"""Periodic cache heal, retention and health tasks."""

from chatflux.reconciliation.config import (
    DEFAULT_RECONCILIATION_CONFIG,
    JobRun,
    ReconciliationConfig,
    ReconciliationTask,
)
from chatflux.reconciliation.scheduler import ReconciliationScheduler

__all__ = [
    "DEFAULT_RECONCILIATION_CONFIG",
    "JobRun",
    "ReconciliationConfig",
    "ReconciliationTask",
    "ReconciliationScheduler",
]
