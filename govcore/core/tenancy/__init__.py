from __future__ import annotations

from govcore.core.tenancy.domains import DomainRegistry, RestrictedDomainStore, load_registry
from govcore.core.tenancy.enforcement import enforce_at_api, enforce_at_checkout, enforce_at_signup
from govcore.core.tenancy.gate import TenantGate
from govcore.core.tenancy.models import (
    DeploymentClass,
    EnforcementResult,
    InstitutionalAccount,
    Operation,
    RelationalAccount,
    parse_account,
)

__all__ = [
    "DomainRegistry",
    "RestrictedDomainStore",
    "load_registry",
    "enforce_at_api",
    "enforce_at_checkout",
    "enforce_at_signup",
    "TenantGate",
    "DeploymentClass",
    "EnforcementResult",
    "InstitutionalAccount",
    "Operation",
    "RelationalAccount",
    "parse_account",
]
