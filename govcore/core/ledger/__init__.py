from __future__ import annotations

"""
Append-only, hash-chained governance ledger.

Every other governance component records its state changes here. Entries are
never updated or deleted; integrity is verified by re-hashing the chain.
"""

from govcore.core.ledger.ledger import Ledger
from govcore.core.ledger.models import Actor, ActorType, AuditEntry, AuditEventType, IntegrityReport

__all__ = ["Ledger", "Actor", "ActorType", "AuditEntry", "AuditEventType", "IntegrityReport"]
