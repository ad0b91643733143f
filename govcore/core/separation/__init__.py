from __future__ import annotations

from govcore.core.separation.models import DeletionResult, IdentityRecord, PatternRecord, RetentionClass, SeparationReport
from govcore.core.separation.vault import IdentityVault

__all__ = ["IdentityVault", "DeletionResult", "IdentityRecord", "PatternRecord", "RetentionClass", "SeparationReport"]
