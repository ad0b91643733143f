from __future__ import annotations

from govcore.core.consent.manager import ConsentLedger
from govcore.core.consent.models import (
    CONSENT_VERSION,
    REQUIRED_CONSENTS,
    ConsentCheck,
    ConsentRecord,
    ConsentScope,
    ConsentStatus,
)
from govcore.core.consent.store import ConsentStore

__all__ = [
    "ConsentLedger",
    "ConsentStore",
    "CONSENT_VERSION",
    "REQUIRED_CONSENTS",
    "ConsentCheck",
    "ConsentRecord",
    "ConsentScope",
    "ConsentStatus",
]
