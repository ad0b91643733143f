from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

from govcore.core.redaction import redact


class Severity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class GovernanceError(Exception):
    code: str
    user_message: str
    severity: Severity = Severity.ERROR
    recoverable: bool = True
    context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.code)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "recoverable": bool(self.recoverable),
            "context": redact(self.context or {}),
        }


# ---- configuration / store ----
class ConfigError(GovernanceError):
    def __init__(self, user_message: str = "Configuration error.", **ctx: Any):
        super().__init__("config_error", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)


class StoreError(GovernanceError):
    def __init__(self, user_message: str = "Durable store unavailable.", **ctx: Any):
        super().__init__("store_error", user_message, severity=Severity.ERROR, recoverable=True, context=ctx)


class NotFoundError(GovernanceError):
    def __init__(self, user_message: str = "Record not found.", **ctx: Any):
        super().__init__("not_found", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


class ValidationError(GovernanceError):
    def __init__(self, user_message: str = "Invalid request.", **ctx: Any):
        super().__init__("validation_error", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


# ---- programmer-error violations (abort the operation) ----
class DeploymentClassViolation(GovernanceError):
    def __init__(self, user_message: str = "Operation is not available for this deployment class.", **ctx: Any):
        super().__init__("deployment_class_violation", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)


class IndividualDataViolation(GovernanceError):
    def __init__(self, user_message: str = "Individual-level data is not permitted here.", **ctx: Any):
        super().__init__("individual_data_violation", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)


# ---- lifecycle ----
class AuditWriteError(GovernanceError):
    def __init__(self, user_message: str = "Audit ledger write failed; operation aborted.", **ctx: Any):
        super().__init__("audit_write_error", user_message, severity=Severity.CRITICAL, recoverable=True, context=ctx)


class SweepInProgressError(GovernanceError):
    def __init__(self, user_message: str = "A sweep of this kind is already running.", **ctx: Any):
        super().__init__("sweep_in_progress", user_message, severity=Severity.WARN, recoverable=True, context=ctx)
