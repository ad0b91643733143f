from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from govcore.core.aggregation.models import ExportRequest, FilteredViewRequest, RawUnitSignals
from govcore.core.tenancy.models import DeploymentAccount, DeploymentClass


class SignupCheckRequest(BaseModel):
    email: str = Field(min_length=1, max_length=320)


class CheckoutCheckRequest(BaseModel):
    email: str = Field(min_length=1, max_length=320)
    product_class: DeploymentClass = DeploymentClass.class_a_relational


class ApiCheckRequest(BaseModel):
    email: str = Field(min_length=1, max_length=320)
    operation: str = Field(min_length=1, max_length=64)
    account: Optional[DeploymentAccount] = None


class MetricsRequest(BaseModel):
    units: List[RawUnitSignals] = Field(min_length=1, max_length=500)


class FilteredViewCheckRequest(BaseModel):
    units: List[RawUnitSignals] = Field(default_factory=list, max_length=500)
    filter: FilteredViewRequest = Field(default_factory=FilteredViewRequest)


class ExportBuildRequest(BaseModel):
    units: List[RawUnitSignals] = Field(default_factory=list, max_length=500)
    request: ExportRequest
    org_name: str = Field(default="", max_length=200)
