from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field

DAY_SECONDS = 86400
# Stage timing driven by the timeline sweep.
FREEZE_AFTER_SECONDS = 24 * 3600
EXPORT_WINDOW_OPENS_AFTER_SECONDS = 48 * 3600
DEFAULT_EXPORT_WINDOW_DAYS = 30
DEFAULT_DELETION_DELAY_DAYS = 14


class OffboardingStage(str, Enum):
    initiated = "initiated"
    data_frozen = "data_frozen"
    export_window = "export_window"
    deletion_scheduled = "deletion_scheduled"
    deletion_in_progress = "deletion_in_progress"
    completed = "completed"
    cancelled = "cancelled"


TERMINAL_STAGES: FrozenSet[OffboardingStage] = frozenset({OffboardingStage.completed, OffboardingStage.cancelled})

VALID_TRANSITIONS: Dict[OffboardingStage, FrozenSet[OffboardingStage]] = {
    OffboardingStage.initiated: frozenset({OffboardingStage.data_frozen, OffboardingStage.cancelled}),
    OffboardingStage.data_frozen: frozenset({OffboardingStage.export_window, OffboardingStage.cancelled}),
    OffboardingStage.export_window: frozenset({OffboardingStage.deletion_scheduled, OffboardingStage.cancelled}),
    OffboardingStage.deletion_scheduled: frozenset({OffboardingStage.deletion_in_progress, OffboardingStage.cancelled}),
    # past this point data is being destroyed; cancelling is no longer possible
    OffboardingStage.deletion_in_progress: frozenset({OffboardingStage.completed}),
    OffboardingStage.completed: frozenset(),
    OffboardingStage.cancelled: frozenset(),
}


class StageChange(BaseModel):
    model_config = ConfigDict(extra="forbid")

    stage: OffboardingStage
    timestamp: float
    actor: str = Field(min_length=1, max_length=128)


class OffboardingRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    request_id: str = Field(default_factory=lambda: "offboard_" + uuid.uuid4().hex)
    org_id: str = Field(min_length=1, max_length=128)
    requested_by: str = Field(min_length=1, max_length=128)
    requested_at: float = Field(default_factory=lambda: time.time())
    stage: OffboardingStage = OffboardingStage.initiated
    stage_history: List[StageChange] = Field(default_factory=list)
    # identity ids whose data is removed when the offboarding completes
    subject_ids: List[str] = Field(default_factory=list)
    export_window_ends_at: float
    scheduled_deletion_at: float
    completed_at: Optional[float] = None
    confirmation_artifact: Optional[str] = None
    cancel_reason: Optional[str] = Field(default=None, max_length=500)
    audit_ref: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self.stage not in TERMINAL_STAGES

    def entered_at(self, stage: OffboardingStage) -> Optional[float]:
        for change in reversed(self.stage_history):
            if change.stage == stage:
                return change.timestamp
        return None


class OffboardingStatus(BaseModel):
    model_config = ConfigDict(extra="forbid")

    request: Optional[OffboardingRequest] = None
    current_stage: Optional[OffboardingStage] = None
    days_in_current_stage: int = 0
    export_window_remaining_days: Optional[int] = None
    deletion_scheduled_in_days: Optional[int] = None


class DeletionOutcome(BaseModel):
    model_config = ConfigDict(extra="forbid")

    success: bool
    identities_deleted: int = 0
    patterns_deleted: int = 0
    consents_revoked: int = 0
    errors: List[str] = Field(default_factory=list)


class TimelineResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    processed: int = 0
    frozen: int = 0
    windows_opened: int = 0
    deletions_scheduled: int = 0
    deletions_completed: int = 0
