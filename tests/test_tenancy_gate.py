from __future__ import annotations

import pytest
from pydantic import ValidationError as PydanticValidationError

from govcore.core.errors import DeploymentClassViolation, IndividualDataViolation
from govcore.core.ledger import AuditEventType, Ledger
from govcore.core.tenancy import DeploymentClass, DomainRegistry, Operation, TenantGate, parse_account
from govcore.core.tenancy.domains import extract_domain, normalize_domain
from govcore.core.tenancy.enforcement import enforce_at_api, enforce_at_checkout, enforce_at_signup
from govcore.core.tenancy.gate import class_requires_minimum_seats, class_supports_bundles, class_supports_named_individuals
from govcore.core.tenancy.models import (
    DomainAction,
    EnforcementLevel,
    InstitutionalAccount,
    InstitutionalProvisionRequest,
    OrganizationalUnit,
    RelationalAccount,
    RelationalProvisionRequest,
    RestrictedDomain,
)

NOW = 1_800_000_000.0


def _gate(tmp_path=None) -> TenantGate:
    ledger = None
    if tmp_path is not None:
        ledger = Ledger(path=str(tmp_path / "ledger.jsonl"), head_path=str(tmp_path / "head.json"))
    return TenantGate(registry=DomainRegistry.seed_only(), ledger=ledger)


def _relational(**kw) -> RelationalAccount:
    base = {"owner_id": "owner-1", "bundle_size": 5, "consent_acknowledged_at": NOW}
    base.update(kw)
    return RelationalAccount(**base)


def _institutional(**kw) -> InstitutionalAccount:
    base = {"contract_id": "C-1", "minimum_seats": 25}
    base.update(kw)
    return InstitutionalAccount(**base)


def test_domain_helpers():
    assert extract_domain("  Alice@Example.COM ") == "example.com"
    assert extract_domain("no-at-sign") is None
    assert extract_domain("@example.com") is None
    assert extract_domain("a@localhost") is None
    assert normalize_domain("mail.eng.example.com") == "example.com"
    assert normalize_domain("dept.ox.ac.uk") == "ox.ac.uk"


def test_subdomain_of_restricted_org_is_restricted():
    reg = DomainRegistry.seed_only()
    res = reg.check("someone@eng.microsoft.com")
    assert res.is_restricted is True
    assert res.domain == "microsoft.com"
    assert res.action == DomainAction.contact_sales
    assert res.redirect_url == "/enterprise/contact"


def test_unparsable_email_is_restricted():
    res = DomainRegistry.seed_only().check("not an email")
    assert res.is_restricted is True
    assert res.action == DomainAction.block_class_a
    assert _gate().classify("not an email") == DeploymentClass.class_b_institutional


def test_sso_and_block_levels():
    extra = {
        "sso.example": RestrictedDomain(domain="sso.example", organization_name="SSO Org", enforcement_level=EnforcementLevel.redirect_sso, sso_endpoint="https://idp.sso.example"),
        "blocked.example": RestrictedDomain(domain="blocked.example", organization_name="Blocked Org"),
    }
    reg = DomainRegistry(domains=extra)
    sso = reg.check("a@sso.example")
    assert sso.action == DomainAction.redirect_sso
    assert sso.redirect_url == "https://idp.sso.example"
    assert reg.check("a@blocked.example").action == DomainAction.block_class_a
    assert reg.check("a@free.example").is_restricted is False


def test_provision_relational_rules():
    gate = _gate()
    ok = gate.provision_relational(email="a@small.example", owner_id="o", bundle_size=10, consent_acknowledged=True, now=NOW)
    assert ok.allowed is True
    assert ok.account.bundle_size == 10
    assert ok.account.consent_acknowledged_at == NOW

    bad_size = gate.provision_relational(email="a@small.example", owner_id="o", bundle_size=7, consent_acknowledged=True, now=NOW)
    assert bad_size.allowed is False
    assert bad_size.fail_closed is True
    assert "5, 10, 20, 50" in bad_size.reason

    no_consent = gate.provision_relational(email="a@small.example", owner_id="o", bundle_size=5, consent_acknowledged=False, now=NOW)
    assert no_consent.allowed is False

    restricted = gate.provision_relational(email="a@stanford.edu", owner_id="o", bundle_size=5, consent_acknowledged=True, now=NOW)
    assert restricted.allowed is False
    assert restricted.account is None


def test_provision_institutional_rules():
    gate = _gate()
    assert gate.provision_institutional(contract_id="", requested_seats=100).allowed is False
    few = gate.provision_institutional(contract_id="C-9", requested_seats=24)
    assert few.allowed is False
    assert "Minimum 25 seats" in few.reason
    ok = gate.provision_institutional(contract_id="C-9", requested_seats=25, organizational_units=[OrganizationalUnit(name="Platform")])
    assert ok.allowed is True
    assert ok.account.minimum_seats == 25


def test_add_named_individual_capacity_and_class():
    gate = _gate()
    acct = _relational(named_individuals=["a", "b", "c", "d"])
    res = gate.add_named_individual(acct, "e", now=NOW)
    assert res.allowed is True
    assert res.account.named_individuals == ["a", "b", "c", "d", "e"]
    assert acct.named_individuals == ["a", "b", "c", "d"]

    full = gate.add_named_individual(res.account, "f", now=NOW)
    assert full.allowed is False
    assert full.account is None

    with pytest.raises(DeploymentClassViolation):
        gate.add_named_individual(_institutional(), "someone")


def test_add_organizational_unit():
    gate = _gate()
    acct = gate.add_organizational_unit(_institutional(), name="Research", unit_id="unit_research")
    assert [u.unit_id for u in acct.organizational_units] == ["unit_research"]
    with pytest.raises(DeploymentClassViolation):
        gate.add_organizational_unit(_relational(), name="Research")
    with pytest.raises(PydanticValidationError):
        gate.add_organizational_unit(_institutional(), name="jane.doe@example.com")


def test_operation_matrix():
    rel, inst = _relational(), _institutional()
    assert TenantGate.is_operation_allowed(rel, Operation.view_individual_data) is True
    assert TenantGate.is_operation_allowed(rel, Operation.view_aggregated_dashboard) is False
    assert TenantGate.is_operation_allowed(inst, Operation.view_aggregated_dashboard) is True
    assert TenantGate.is_operation_allowed(inst, Operation.export_aggregate_report) is True
    assert TenantGate.is_operation_allowed(inst, Operation.view_individual_data) is False
    assert TenantGate.is_operation_allowed(inst, "drop_tables") is False
    assert TenantGate.is_operation_allowed(object(), Operation.view_individual_data) is False


def test_guard_against_individual_data():
    record = {"team": "platform", "load": 40, "user_email": "x@y.z", "performance_score": 3}
    assert TenantGate.guard_against_individual_data(_relational(), record) is record

    cleaned = TenantGate.guard_against_individual_data(_institutional(), record)
    assert cleaned == {"team": "platform", "load": 40, "user_email": None, "performance_score": None}

    only_personal = {"first_name": "Jane", "last_name": "Doe"}
    assert TenantGate.guard_against_individual_data(_institutional(), only_personal) is None
    assert TenantGate.guard_against_individual_data(None, record) is None

    explicit = TenantGate.guard_against_individual_data(_institutional(), record, ["team"])
    assert explicit["team"] is None and explicit["load"] == 40


def test_institutional_schema_assertion():
    TenantGate.assert_institutional_schema(["unit_id", "load", "risk"])
    with pytest.raises(IndividualDataViolation) as ei:
        TenantGate.assert_institutional_schema(["unit_id", "employeeId", "freeTextCommentary"])
    assert ei.value.context["violations"] == ["employeeId", "freeTextCommentary"]


def test_parse_account_rejects_unknown_class_and_fields():
    acct = parse_account({"deployment_class": "class_b_institutional", "contract_id": "C", "minimum_seats": 30})
    assert isinstance(acct, InstitutionalAccount)
    with pytest.raises(PydanticValidationError):
        parse_account({"deployment_class": "class_c", "contract_id": "C", "minimum_seats": 30})
    with pytest.raises(PydanticValidationError):
        parse_account({"deployment_class": "class_b_institutional", "contract_id": "C", "minimum_seats": 30, "named_individuals": ["x"]})
    with pytest.raises(PydanticValidationError):
        parse_account({"deployment_class": "class_a_relational", "owner_id": "o", "bundle_size": 3, "consent_acknowledged_at": NOW})


def test_enforcement_points_are_ledgered(tmp_path):
    gate = _gate(tmp_path)
    assert enforce_at_signup(gate, "a@small.example", now=NOW).allowed is True
    denied = enforce_at_signup(gate, "a@harvard.edu", now=NOW)
    assert denied.allowed is False
    assert denied.fail_closed is True

    assert enforce_at_checkout(gate, "a@small.example", now=NOW).allowed is True
    assert enforce_at_checkout(gate, "a@small.example", DeploymentClass.class_b_institutional, now=NOW).allowed is False
    assert enforce_at_checkout(gate, "a@mit.edu", now=NOW).allowed is False

    entries = gate.ledger.by_type(AuditEventType.enforcement_decision)
    assert len(entries) == 5
    assert entries[1].metadata["domain"] == "harvard.edu"
    assert entries[1].metadata["allowed"] is False
    with open(gate.ledger.path, "r", encoding="utf-8") as f:
        assert "a@harvard.edu" not in f.read()


def test_enforce_at_api():
    gate = _gate()
    assert enforce_at_api(gate, "a@small.example", "view_individual_data", now=NOW).allowed is True
    assert enforce_at_api(gate, "a@small.example", "rm_rf", now=NOW).allowed is False
    assert enforce_at_api(gate, "a@google.com", Operation.view_aggregated_dashboard, now=NOW).allowed is False
    assert enforce_at_api(gate, "a@google.com", Operation.view_aggregated_dashboard, account=_institutional(), now=NOW).allowed is True
    assert enforce_at_api(gate, "a@google.com", Operation.view_individual_data, account=_institutional(), now=NOW).allowed is False
    assert enforce_at_api(gate, "a@small.example", Operation.view_aggregated_dashboard, account=_relational(), now=NOW).allowed is False


def test_class_capabilities_and_provision_dispatch():
    assert class_supports_bundles(DeploymentClass.class_a_relational) is True
    assert class_supports_named_individuals(DeploymentClass.class_b_institutional) is False
    assert class_requires_minimum_seats(DeploymentClass.class_b_institutional) is True

    gate = _gate()
    # asking for a relational account from a restricted domain is still refused
    res = gate.provision(RelationalProvisionRequest(email="dev@apple.com", owner_id="o", bundle_size=5, consent_acknowledged=True), now=NOW)
    assert res.allowed is False
    inst = gate.provision(InstitutionalProvisionRequest(contract_id="C-2", requested_seats=30), now=NOW)
    assert inst.allowed is True
    assert inst.account.deployment_class == "class_b_institutional"


def test_explicit_field_list_still_strips_prohibited_fields():
    record = {"team": "platform", "load": 40, "email": "x@y.z", "staff_id": "S-9"}
    cleaned = TenantGate.guard_against_individual_data(_institutional(), record, ["team"])
    assert cleaned == {"team": None, "load": 40, "email": None, "staff_id": None}
