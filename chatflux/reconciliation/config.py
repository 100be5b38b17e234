"""Reconciliation configuration and run records."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class ReconciliationTask(str, Enum):
    CACHE_HEAL = "cache_heal"
    RETENTION = "retention"
    HEALTH_CHECK = "health_check"


@dataclass
class ReconciliationConfig:
    """Intervals and horizons for the periodic maintenance tasks."""

    heal_interval_seconds: float = 300.0
    heal_window_minutes: int = 10
    cache_max_messages: int = 5000
    retention_interval_seconds: float = 86400.0
    retention_days: int = 30
    # None disables the health task
    health_interval_seconds: Optional[float] = 3600.0
    history_size: int = 100


@dataclass
class JobRun:
    """Outcome of one maintenance run."""

    task: ReconciliationTask
    started_at: datetime
    count: int = 0
    duration_ms: float = 0.0
    error: Optional[str] = None
    details: dict = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        return {
            "task": self.task.value,
            "started_at": self.started_at.isoformat(),
            "count": self.count,
            "duration_ms": self.duration_ms,
            "error": self.error,
            "details": dict(self.details),
        }


DEFAULT_RECONCILIATION_CONFIG = ReconciliationConfig()
