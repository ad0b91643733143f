from __future__ import annotations

from govcore.core.offboarding.manager import OffboardingManager
from govcore.core.offboarding.models import (
    DeletionOutcome,
    OffboardingRequest,
    OffboardingStage,
    OffboardingStatus,
    TimelineResult,
)
from govcore.core.offboarding.store import OffboardingStore

__all__ = [
    "OffboardingManager",
    "OffboardingStore",
    "DeletionOutcome",
    "OffboardingRequest",
    "OffboardingStage",
    "OffboardingStatus",
    "TimelineResult",
]
