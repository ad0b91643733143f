from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RetentionClass(str, Enum):
    active = "active"
    archived = "archived"
    pending_deletion = "pending_deletion"
    legally_held = "legally_held"


class IdentityRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    identity_id: str = Field(min_length=1, max_length=128)
    display_name: Optional[str] = Field(default=None, max_length=200)
    email: Optional[str] = Field(default=None, max_length=320)
    org_membership: Optional[str] = Field(default=None, max_length=128)
    created_at: float = Field(default_factory=lambda: time.time())
    modified_at: float = Field(default_factory=lambda: time.time())


class PatternRecord(BaseModel):
    """
    De-identified pattern data. Only the opaque reference links it to an identity.
    """

    model_config = ConfigDict(extra="forbid")

    pattern_id: str = Field(default_factory=lambda: "pattern_" + uuid.uuid4().hex)
    identity_ref: str = Field(min_length=1, max_length=64)
    data_hash: str = Field(min_length=64, max_length=64)
    created_at: float = Field(default_factory=lambda: time.time())
    retention_class: RetentionClass = RetentionClass.active


class DeletionResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    identity_deleted: bool = False
    patterns_deleted: int = 0
    error: Optional[str] = None


class SeparationReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    is_valid: bool
    identity_count: int
    pattern_count: int
    orphaned_patterns: int
    unmapped_identities: int
    issues: List[str] = Field(default_factory=list)
