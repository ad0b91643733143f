from __future__ import annotations

import re
import time
import uuid
from enum import Enum
from typing import Annotated, Any, Dict, Final, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

CLASS_A_BUNDLE_SIZES: Final[Tuple[int, ...]] = (5, 10, 20, 50)
CLASS_B_MINIMUM_SEATS: Final = 25
TERMS_VERSION_CLASS_A: Final = "1.0-relational"
TERMS_VERSION_CLASS_B: Final = "1.0-institutional"

_EMAIL_LIKE = re.compile(r"[^@\s]+@[^@\s]+\.[^@\s]+")


class DeploymentClass(str, Enum):
    class_a_relational = "class_a_relational"
    class_b_institutional = "class_b_institutional"


class EnforcementLevel(str, Enum):
    block_all = "block_all"
    redirect_sso = "redirect_sso"
    contact_sales = "contact_sales"


class EnforcementPoint(str, Enum):
    signup_flow = "signup_flow"
    checkout_flow = "checkout_flow"
    api_validation = "api_validation"
    backend_provisioning = "backend_provisioning"


class DomainAction(str, Enum):
    allowed = "allowed"
    block_class_a = "block_class_a"
    redirect_sso = "redirect_sso"
    contact_sales = "contact_sales"


class Operation(str, Enum):
    view_individual_data = "view_individual_data"
    add_named_individual = "add_named_individual"
    purchase_bundle = "purchase_bundle"
    view_aggregated_dashboard = "view_aggregated_dashboard"
    export_individual_report = "export_individual_report"
    export_aggregate_report = "export_aggregate_report"


class RestrictedDomain(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    domain: str = Field(min_length=3, max_length=253)
    organization_name: str = Field(min_length=1, max_length=200)
    enforcement_level: EnforcementLevel = EnforcementLevel.block_all
    added_at: float = Field(default_factory=lambda: time.time())
    added_by: str = "system"
    sso_endpoint: Optional[str] = None
    sales_contact_url: Optional[str] = None

    @field_validator("domain")
    @classmethod
    def _lower(cls, v: str) -> str:
        return v.strip().lower()


class DomainCheckResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    is_restricted: bool
    domain: str = ""
    action: DomainAction = DomainAction.allowed
    message: Optional[str] = None
    redirect_url: Optional[str] = None


class EnforcementResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    allowed: bool
    reason: str
    fail_closed: bool
    enforcement_point: EnforcementPoint
    timestamp: float = Field(default_factory=lambda: time.time())


# ---- accounts ----
class OrganizationalUnit(BaseModel):
    """
    A team/department. Names describe groups, never people.
    """

    model_config = ConfigDict(extra="forbid")

    unit_id: str = Field(default_factory=lambda: "unit_" + uuid.uuid4().hex[:12], min_length=1, max_length=128)
    name: str = Field(min_length=1, max_length=200)
    parent_unit_id: Optional[str] = None
    active_signal_count: int = Field(default=0, ge=0)
    created_at: float = Field(default_factory=lambda: time.time())

    @field_validator("name")
    @classmethod
    def _not_a_person(cls, v: str) -> str:
        if _EMAIL_LIKE.search(v):
            raise ValueError("organizational unit names must not contain email addresses")
        return v


class RelationalAccount(BaseModel):
    model_config = ConfigDict(extra="forbid")

    deployment_class: Literal["class_a_relational"] = "class_a_relational"
    owner_id: str = Field(min_length=1, max_length=128)
    bundle_size: int
    named_individuals: List[str] = Field(default_factory=list)
    consent_acknowledged_at: float
    terms_version: Literal["1.0-relational"] = TERMS_VERSION_CLASS_A
    created_at: float = Field(default_factory=lambda: time.time())

    @field_validator("bundle_size")
    @classmethod
    def _valid_bundle(cls, v: int) -> int:
        if v not in CLASS_A_BUNDLE_SIZES:
            raise ValueError(f"bundle_size must be one of {list(CLASS_A_BUNDLE_SIZES)}")
        return v


class InstitutionalAccount(BaseModel):
    """
    No field here can hold a named individual; extra="forbid" rejects attempts.
    """

    model_config = ConfigDict(extra="forbid")

    deployment_class: Literal["class_b_institutional"] = "class_b_institutional"
    contract_id: str = Field(min_length=1, max_length=128)
    minimum_seats: int = Field(ge=CLASS_B_MINIMUM_SEATS)
    organizational_units: List[OrganizationalUnit] = Field(default_factory=list)
    terms_version: Literal["1.0-institutional"] = TERMS_VERSION_CLASS_B
    created_at: float = Field(default_factory=lambda: time.time())


DeploymentAccount = Annotated[Union[RelationalAccount, InstitutionalAccount], Field(discriminator="deployment_class")]

_ACCOUNT_ADAPTER: TypeAdapter = TypeAdapter(DeploymentAccount)


def parse_account(raw: Dict[str, Any]) -> Union[RelationalAccount, InstitutionalAccount]:
    """
    Validate a stored/posted account. Unknown classes and unknown fields raise
    pydantic.ValidationError.
    """
    return _ACCOUNT_ADAPTER.validate_python(raw)


# ---- provisioning ----
class RelationalProvisionRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    deployment_class: Literal["class_a_relational"] = "class_a_relational"
    email: str = Field(max_length=320)
    owner_id: str = Field(min_length=1, max_length=128)
    bundle_size: int
    consent_acknowledged: bool = False


class InstitutionalProvisionRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    deployment_class: Literal["class_b_institutional"] = "class_b_institutional"
    contract_id: str = Field(default="", max_length=128)
    requested_seats: int = Field(ge=0)
    organizational_units: List[OrganizationalUnit] = Field(default_factory=list)


class ProvisionResult(EnforcementResult):
    account: Optional[DeploymentAccount] = None


class NamedIndividualResult(EnforcementResult):
    account: Optional[RelationalAccount] = None


class SchemaCheck(BaseModel):
    model_config = ConfigDict(extra="forbid")

    valid: bool
    violations: List[str] = Field(default_factory=list)
