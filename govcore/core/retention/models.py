from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

_YEAR_SECONDS = 365 * 24 * 3600


class RetentionWindow(str, Enum):
    one_year = "1y"
    three_years = "3y"
    five_years = "5y"
    seven_years = "7y"
    indefinite = "indefinite"


# None means the data is never scheduled for deletion.
WINDOW_SECONDS: Dict[RetentionWindow, Optional[int]] = {
    RetentionWindow.one_year: 1 * _YEAR_SECONDS,
    RetentionWindow.three_years: 3 * _YEAR_SECONDS,
    RetentionWindow.five_years: 5 * _YEAR_SECONDS,
    RetentionWindow.seven_years: 7 * _YEAR_SECONDS,
    RetentionWindow.indefinite: None,
}


class AppliesTo(str, Enum):
    all_data = "all_data"
    pattern_data = "pattern_data"
    identity_data = "identity_data"
    audit_data = "audit_data"


class PolicyStatus(str, Enum):
    active = "active"
    retired = "retired"


class ScheduleStatus(str, Enum):
    active = "active"
    legally_held = "legally_held"
    pending_deletion = "pending_deletion"


class RetentionPolicy(BaseModel):
    model_config = ConfigDict(extra="forbid")

    policy_id: str = Field(default_factory=lambda: "policy_" + uuid.uuid4().hex)
    tenant_id: str = Field(min_length=1, max_length=128)
    window: RetentionWindow
    applies_to: AppliesTo = AppliesTo.all_data
    effective_at: float = Field(default_factory=lambda: time.time())
    legal_basis: Optional[str] = Field(default=None, max_length=500)
    approved_by: str = Field(min_length=1, max_length=128)
    approved_at: float = Field(default_factory=lambda: time.time())
    status: PolicyStatus = PolicyStatus.active
    retired_at: Optional[float] = None


class RetentionSchedule(BaseModel):
    model_config = ConfigDict(extra="forbid")

    schedule_id: str = Field(default_factory=lambda: "schedule_" + uuid.uuid4().hex)
    data_ref: str = Field(min_length=1, max_length=128)
    policy_id: str
    created_at: float = Field(default_factory=lambda: time.time())
    due_at: Optional[float] = None
    legal_hold_until: Optional[float] = None
    legal_hold_reason: Optional[str] = Field(default=None, max_length=500)
    status: ScheduleStatus = ScheduleStatus.active

    def is_held(self, now: float) -> bool:
        return self.legal_hold_until is not None and float(self.legal_hold_until) > float(now)


class SweepResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    processed: int = 0
    deleted: int = 0
    held_back: int = 0
    # purge raised; the schedule stays active and is retried next sweep
    failed: int = 0


class RetentionSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")

    policy: Optional[RetentionPolicy] = None
    total_scheduled: int = 0
    active_records: int = 0
    pending_deletion: int = 0
    legal_holds: int = 0
