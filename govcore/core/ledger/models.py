from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictFloat, StrictInt, StrictStr

# Metadata values are primitives only; nested structures cannot be hashed canonically
# across producers and tend to smuggle record content into the ledger.
MetadataValue = Union[StrictBool, StrictInt, StrictFloat, StrictStr]


class AuditEventType(str, Enum):
    data_access = "data_access"
    data_export = "data_export"
    data_share = "data_share"
    data_delete = "data_delete"
    consent_granted = "consent_granted"
    consent_modified = "consent_modified"
    consent_revoked = "consent_revoked"
    consent_expired = "consent_expired"
    policy_accepted = "policy_accepted"
    admin_action = "admin_action"
    config_change = "config_change"
    auth_event = "auth_event"
    retention_applied = "retention_applied"
    legal_hold = "legal_hold"
    enforcement_decision = "enforcement_decision"
    integrity_check = "integrity_check"
    offboarding_initiated = "offboarding_initiated"
    offboarding_completed = "offboarding_completed"


class ActorType(str, Enum):
    user = "user"
    admin = "admin"
    system = "system"
    org_admin = "org_admin"


class Actor(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    type: ActorType = ActorType.system
    ref: str = Field(min_length=1, max_length=128)

    @classmethod
    def system(cls, ref: str) -> "Actor":
        return cls(type=ActorType.system, ref=ref)


class AuditEntry(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    entry_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    sequence: int = Field(ge=1)
    timestamp: float = Field(default_factory=lambda: time.time())
    event_type: AuditEventType
    actor: Actor
    target_ref: Optional[str] = Field(default=None, max_length=256)
    action: str = Field(min_length=1, max_length=500)
    scope: Optional[str] = Field(default=None, max_length=128)
    metadata: Optional[Dict[str, MetadataValue]] = None
    previous_hash: str = Field(min_length=64, max_length=64)
    entry_hash: str = Field(min_length=64, max_length=64)


class IntegrityReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    valid: bool
    checked: int
    broken_at_sequence: Optional[int] = None
    message: str = ""
    head_hash: Optional[str] = None


class LedgerExport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    exported_at: float
    chain_integrity: IntegrityReport
    entry_count: int
    entries: List[AuditEntry] = Field(default_factory=list)
