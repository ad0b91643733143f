from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

CONSENT_VERSION = "1.0.0"


class ConsentScope(str, Enum):
    data_collection = "data_collection"
    data_processing = "data_processing"
    data_sharing = "data_sharing"
    data_export = "data_export"
    institutional_access = "institutional_access"
    research_participation = "research_participation"
    marketing_communications = "marketing_communications"


REQUIRED_CONSENTS: List[ConsentScope] = [ConsentScope.data_collection, ConsentScope.data_processing]

DEFAULT_REVIEW_INTERVAL_DAYS = 365


class ConsentStatus(str, Enum):
    granted = "granted"
    modified = "modified"
    revoked = "revoked"
    expired = "expired"


class ConsentRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    consent_id: str = Field(default_factory=lambda: "consent_" + uuid.uuid4().hex)
    subject_id: str = Field(min_length=1, max_length=128)
    scope: ConsentScope
    status: ConsentStatus = ConsentStatus.granted
    granted_at: float = Field(default_factory=lambda: time.time())
    modified_at: Optional[float] = None
    revoked_at: Optional[float] = None
    expired_at: Optional[float] = None
    expires_at: Optional[float] = None
    conditions: Optional[str] = Field(default=None, max_length=2000)
    version: str = CONSENT_VERSION
    audit_ref: Optional[int] = None
    superseded_by: Optional[str] = None

    def is_past_expiry(self, now: float) -> bool:
        return self.expires_at is not None and float(self.expires_at) < float(now)


class ConsentCheck(BaseModel):
    model_config = ConfigDict(extra="forbid")

    has_consent: bool
    is_expired: bool = False
    consent: Optional[ConsentRecord] = None
    # True when the store could not be read and the answer defaulted to "no".
    degraded: bool = False
