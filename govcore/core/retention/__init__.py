from __future__ import annotations

from govcore.core.retention.models import (
    AppliesTo,
    RetentionPolicy,
    RetentionSchedule,
    RetentionSummary,
    RetentionWindow,
    ScheduleStatus,
    SweepResult,
)
from govcore.core.retention.scheduler import RetentionScheduler
from govcore.core.retention.store import RetentionStore

__all__ = [
    "RetentionScheduler",
    "RetentionStore",
    "AppliesTo",
    "RetentionPolicy",
    "RetentionSchedule",
    "RetentionSummary",
    "RetentionWindow",
    "ScheduleStatus",
    "SweepResult",
]
