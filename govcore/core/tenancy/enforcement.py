from __future__ import annotations

"""
Enforcement points at the outer surfaces (signup, checkout, API).

Each check runs against the gate's registry snapshot and returns an
EnforcementResult; every decision is ledgered when the gate has a ledger.
"""

import time
from typing import Any, Optional, Union

from govcore.core.logger import get_logger
from govcore.core.redaction import mask_email
from govcore.core.tenancy.gate import TenantGate
from govcore.core.tenancy.models import DeploymentClass, EnforcementPoint, EnforcementResult, Operation

log = get_logger("tenancy.enforcement")


def _result(allowed: bool, reason: str, point: EnforcementPoint, now: Optional[float]) -> EnforcementResult:
    return EnforcementResult(
        allowed=allowed,
        reason=reason,
        fail_closed=not allowed,
        enforcement_point=point,
        timestamp=time.time() if now is None else float(now),
    )


def enforce_at_signup(gate: TenantGate, email: str, *, now: Optional[float] = None) -> EnforcementResult:
    check = gate.registry.check(email)
    if not check.is_restricted:
        res = _result(True, "Domain not restricted", EnforcementPoint.signup_flow, now)
    else:
        res = _result(False, check.message or "Domain restricted", EnforcementPoint.signup_flow, now)
    log.info("signup %s -> allowed=%s", mask_email(email), res.allowed)
    gate.record_decision(res, domain=check.domain, action=check.action.value)
    return res


def enforce_at_checkout(
    gate: TenantGate,
    email: str,
    product_class: Union[DeploymentClass, str] = DeploymentClass.class_a_relational,
    *,
    now: Optional[float] = None,
) -> EnforcementResult:
    """
    Checkout sells relational bundles only. Restricted domains and any other
    product class are refused.
    """
    point = EnforcementPoint.checkout_flow
    check = gate.registry.check(email)
    try:
        product = DeploymentClass(product_class)
    except ValueError:
        product = None

    if check.is_restricted:
        where = check.domain or "this address"
        res = _result(False, f"Bundle purchases are not available for {where}. Enterprise agreements required.", point, now)
    elif product != DeploymentClass.class_a_relational:
        res = _result(False, "Only relational bundles can be purchased at checkout. Institutional deployments require a contract.", point, now)
    else:
        res = _result(True, "Domain not restricted", point, now)
    gate.record_decision(res, domain=check.domain, product_class=str(getattr(product, "value", product_class)))
    return res


def enforce_at_api(
    gate: TenantGate,
    email: str,
    operation: Union[Operation, str],
    *,
    account: Optional[Any] = None,
    now: Optional[float] = None,
) -> EnforcementResult:
    """
    Without an account, restricted domains are refused outright. With an account,
    the operation must be permitted for its class, and a relational account is
    still refused for a restricted domain.
    """
    point = EnforcementPoint.api_validation
    check = gate.registry.check(email)
    op_name = str(getattr(operation, "value", operation))
    try:
        op: Optional[Operation] = Operation(operation)
    except ValueError:
        op = None

    if op is None:
        res = _result(False, f'Unknown operation "{op_name}"', point, now)
    elif account is not None and not gate.is_operation_allowed(account, op):
        res = _result(False, f'Operation "{op.value}" is not permitted for this deployment class', point, now)
    elif check.is_restricted and getattr(account, "deployment_class", None) != DeploymentClass.class_b_institutional.value:
        where = check.domain or "unparsable address"
        res = _result(False, f'Operation "{op.value}" blocked for restricted domain: {where}', point, now)
    else:
        res = _result(True, "Domain not restricted" if not check.is_restricted else "Operation permitted for institutional account", point, now)
    gate.record_decision(res, domain=check.domain, operation=op_name[:64])
    return res

