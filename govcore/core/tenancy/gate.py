from __future__ import annotations

import time
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from govcore.core.errors import DeploymentClassViolation, IndividualDataViolation
from govcore.core.ledger import Actor, AuditEventType, Ledger
from govcore.core.logger import get_logger
from govcore.core.redaction import mask_email
from govcore.core.tenancy.domains import DomainRegistry
from govcore.core.tenancy.models import (
    CLASS_A_BUNDLE_SIZES,
    CLASS_B_MINIMUM_SEATS,
    DeploymentClass,
    EnforcementPoint,
    EnforcementResult,
    InstitutionalAccount,
    InstitutionalProvisionRequest,
    NamedIndividualResult,
    Operation,
    OrganizationalUnit,
    ProvisionResult,
    RelationalAccount,
    RelationalProvisionRequest,
    SchemaCheck,
)

_CLASS_B_OPERATIONS = {Operation.view_aggregated_dashboard, Operation.export_aggregate_report}

# Field-name fragments that identify a person; never allowed in institutional schemas.
PROHIBITED_INSTITUTIONAL_FIELDS = (
    "individualnotes",
    "personalnotes",
    "notes",
    "performancescore",
    "performancerating",
    "evaluation",
    "assessment",
    "freetextcommentary",
    "commentary",
    "username",
    "userfullname",
    "firstname",
    "lastname",
    "useravatar",
    "avatarurl",
    "useremail",
    "email",
    "individualtimeline",
    "personaltimeline",
    "employeeid",
    "staffid",
)


def class_supports_bundles(deployment_class: DeploymentClass) -> bool:
    return DeploymentClass(deployment_class) == DeploymentClass.class_a_relational


def class_supports_named_individuals(deployment_class: DeploymentClass) -> bool:
    return DeploymentClass(deployment_class) == DeploymentClass.class_a_relational


def class_requires_minimum_seats(deployment_class: DeploymentClass) -> bool:
    return DeploymentClass(deployment_class) == DeploymentClass.class_b_institutional


def is_prohibited_institutional_field(field_name: str) -> bool:
    normalized = str(field_name).replace("_", "").replace("-", "").lower()
    return any(p in normalized for p in PROHIBITED_INSTITUTIONAL_FIELDS)


def validate_institutional_schema(fields: Iterable[str]) -> SchemaCheck:
    violations = [f for f in fields if is_prohibited_institutional_field(f)]
    return SchemaCheck(valid=not violations, violations=violations)


def _class_of(account: Any) -> Optional[DeploymentClass]:
    try:
        return DeploymentClass(getattr(account, "deployment_class", None))
    except ValueError:
        return None


class TenantGate:
    """
    Deployment-class classification, provisioning and class-boundary guards.

    Policy denials come back as structured results (allowed=False, fail_closed=True).
    Calling a class-specific capability on the wrong class is a programming error
    and raises DeploymentClassViolation.
    """

    def __init__(self, *, registry: DomainRegistry, ledger: Optional[Ledger] = None):
        self.registry = registry
        self.ledger = ledger
        self.log = get_logger("tenancy")

    def reload(self, registry: DomainRegistry) -> None:
        self.registry = registry

    # ---- decisions ----
    def record_decision(self, result: EnforcementResult, *, domain: str = "", **meta: Any) -> None:
        if self.ledger is None:
            return
        md: Dict[str, Any] = {"point": result.enforcement_point.value, "allowed": bool(result.allowed)}
        if domain:
            md["domain"] = domain
        md.update({k: v for k, v in meta.items() if v is not None})
        self.ledger.append(
            AuditEventType.enforcement_decision,
            Actor.system("tenant_gate"),
            result.reason[:500],
            scope=result.enforcement_point.value,
            metadata=md,
            now=result.timestamp,
        )

    @staticmethod
    def _deny(point: EnforcementPoint, reason: str, now: float) -> Dict[str, Any]:
        return {"allowed": False, "reason": reason, "fail_closed": True, "enforcement_point": point, "timestamp": now}

    @staticmethod
    def _allow(point: EnforcementPoint, reason: str, now: float) -> Dict[str, Any]:
        return {"allowed": True, "reason": reason, "fail_closed": False, "enforcement_point": point, "timestamp": now}

    # ---- classification ----
    def classify(self, email: str) -> DeploymentClass:
        check = self.registry.check(email)
        if check.is_restricted:
            return DeploymentClass.class_b_institutional
        return DeploymentClass.class_a_relational

    # ---- provisioning ----
    def provision(
        self, request: Union[RelationalProvisionRequest, InstitutionalProvisionRequest], *, now: Optional[float] = None
    ) -> ProvisionResult:
        if isinstance(request, RelationalProvisionRequest):
            return self.provision_relational(
                email=request.email,
                owner_id=request.owner_id,
                bundle_size=request.bundle_size,
                consent_acknowledged=request.consent_acknowledged,
                now=now,
            )
        return self.provision_institutional(
            contract_id=request.contract_id,
            requested_seats=request.requested_seats,
            organizational_units=request.organizational_units,
            now=now,
        )

    def provision_relational(
        self,
        *,
        email: str,
        owner_id: str,
        bundle_size: int,
        consent_acknowledged: bool,
        now: Optional[float] = None,
    ) -> ProvisionResult:
        ts = time.time() if now is None else float(now)
        point = EnforcementPoint.backend_provisioning
        check = self.registry.check(email)
        if check.is_restricted:
            where = check.domain or "this address"
            res = ProvisionResult(**self._deny(point, f"Class A accounts are not available for {where}. Enterprise deployment required.", ts))
        elif int(bundle_size) not in CLASS_A_BUNDLE_SIZES:
            sizes = ", ".join(str(s) for s in CLASS_A_BUNDLE_SIZES)
            res = ProvisionResult(**self._deny(point, f"Invalid bundle size: {bundle_size}. Valid sizes: {sizes}", ts))
        elif not consent_acknowledged:
            res = ProvisionResult(**self._deny(point, "Explicit consent acknowledgment is required for Class A accounts.", ts))
        else:
            account = RelationalAccount(
                owner_id=str(owner_id),
                bundle_size=int(bundle_size),
                consent_acknowledged_at=ts,
                created_at=ts,
            )
            res = ProvisionResult(**self._allow(point, "Class A account provisioned", ts), account=account)
        self.log.info("Relational provisioning for %s: allowed=%s", mask_email(email), res.allowed)
        self.record_decision(res, domain=check.domain, deployment_class=DeploymentClass.class_a_relational.value)
        return res

    def provision_institutional(
        self,
        *,
        contract_id: str,
        requested_seats: int,
        organizational_units: Optional[Sequence[OrganizationalUnit]] = None,
        now: Optional[float] = None,
    ) -> ProvisionResult:
        ts = time.time() if now is None else float(now)
        point = EnforcementPoint.backend_provisioning
        if not str(contract_id or "").strip():
            res = ProvisionResult(**self._deny(point, "Contract ID is required for Class B institutional accounts.", ts))
        elif int(requested_seats) < CLASS_B_MINIMUM_SEATS:
            res = ProvisionResult(
                **self._deny(
                    point,
                    f"Minimum {CLASS_B_MINIMUM_SEATS} seats required for institutional deployment. Requested: {requested_seats}",
                    ts,
                )
            )
        else:
            account = InstitutionalAccount(
                contract_id=str(contract_id).strip(),
                minimum_seats=int(requested_seats),
                organizational_units=list(organizational_units or []),
                created_at=ts,
            )
            res = ProvisionResult(**self._allow(point, "Class B institutional account provisioned", ts), account=account)
        self.record_decision(res, deployment_class=DeploymentClass.class_b_institutional.value)
        return res

    # ---- class assertions ----
    @staticmethod
    def assert_relational(account: Any) -> RelationalAccount:
        if _class_of(account) != DeploymentClass.class_a_relational:
            raise DeploymentClassViolation(
                "This feature is only available for relational accounts. "
                "Institutional accounts cannot access individual-level features.",
                required=DeploymentClass.class_a_relational.value,
            )
        return account

    @staticmethod
    def assert_institutional(account: Any) -> InstitutionalAccount:
        if _class_of(account) != DeploymentClass.class_b_institutional:
            raise DeploymentClassViolation(
                "This feature requires an institutional account. Please contact sales for enterprise deployment.",
                required=DeploymentClass.class_b_institutional.value,
            )
        return account

    # ---- account mutation ----
    def add_named_individual(self, account: Any, name: str, *, now: Optional[float] = None) -> NamedIndividualResult:
        """
        Hard failure on an institutional account; capacity overflow is a
        structured denial.
        """
        acct = self.assert_relational(account)
        ts = time.time() if now is None else float(now)
        point = EnforcementPoint.backend_provisioning
        if len(acct.named_individuals) >= acct.bundle_size:
            return NamedIndividualResult(
                **self._deny(point, f"Bundle capacity reached ({acct.bundle_size}). Upgrade to add more individuals.", ts)
            )
        updated = acct.model_copy(update={"named_individuals": [*acct.named_individuals, str(name)]})
        return NamedIndividualResult(**self._allow(point, "Individual added", ts), account=updated)

    def add_organizational_unit(
        self, account: Any, *, name: str, parent_unit_id: Optional[str] = None, unit_id: Optional[str] = None
    ) -> InstitutionalAccount:
        acct = self.assert_institutional(account)
        fields: Dict[str, Any] = {"name": name, "parent_unit_id": parent_unit_id}
        if unit_id:
            fields["unit_id"] = unit_id
        unit = OrganizationalUnit(**fields)
        return acct.model_copy(update={"organizational_units": [*acct.organizational_units, unit]})

    # ---- operation / data guards ----
    @staticmethod
    def is_operation_allowed(account: Any, operation: Union[Operation, str]) -> bool:
        try:
            op = Operation(operation)
        except ValueError:
            return False
        cls = _class_of(account)
        if cls == DeploymentClass.class_a_relational:
            return op != Operation.view_aggregated_dashboard
        if cls == DeploymentClass.class_b_institutional:
            return op in _CLASS_B_OPERATIONS
        return False

    @staticmethod
    def guard_against_individual_data(
        account: Any, record: Dict[str, Any], individual_fields: Optional[Iterable[str]] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Relational: record unchanged. Institutional: the listed fields and every
        field matching the prohibited set are nulled, and None if nothing non-null
        is left. Anything else: None.
        """
        cls = _class_of(account)
        if cls == DeploymentClass.class_a_relational:
            return record
        if cls != DeploymentClass.class_b_institutional:
            return None
        targets: List[str] = [k for k in record if is_prohibited_institutional_field(k)]
        if individual_fields is not None:
            targets.extend(individual_fields)
        sanitized = dict(record)
        for f in targets:
            if f in sanitized:
                sanitized[f] = None
        if all(v is None for v in sanitized.values()):
            return None
        return sanitized

    @staticmethod
    def assert_institutional_schema(fields: Iterable[str]) -> None:
        check = validate_institutional_schema(fields)
        if not check.valid:
            raise IndividualDataViolation(
                "Institutional schemas cannot carry individual-level fields.", violations=check.violations
            )
