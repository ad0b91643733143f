from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from govcore.core.aggregation.models import ExportBundle, ExportIntegrity, FilteredViewDecision
from govcore.core.errors import GovernanceError
from govcore.core.ledger.models import IntegrityReport
from govcore.core.logger import get_logger
from govcore.core.runtime import GovernanceRuntime
from govcore.core.tenancy.enforcement import enforce_at_api, enforce_at_checkout, enforce_at_signup
from govcore.core.tenancy.models import EnforcementResult
from govcore.web.models import (
    ApiCheckRequest,
    CheckoutCheckRequest,
    ExportBuildRequest,
    FilteredViewCheckRequest,
    MetricsRequest,
    SignupCheckRequest,
)

_STATUS_BY_CODE: Dict[str, int] = {
    "validation_error": 400,
    "not_found": 404,
    "deployment_class_violation": 403,
    "individual_data_violation": 403,
    "sweep_in_progress": 409,
    "store_error": 503,
    "audit_write_error": 503,
}


def create_app(runtime: GovernanceRuntime) -> FastAPI:
    app = FastAPI(title="govcore", version="0.1.0")
    log = get_logger("web")

    @app.exception_handler(GovernanceError)
    async def governance_error_handler(request: Request, exc: GovernanceError):
        code = _STATUS_BY_CODE.get(exc.code, 500)
        if code >= 500:
            log.error("Request failed: %s", exc.to_dict())
        return JSONResponse(status_code=code, content={"detail": exc.user_message, "code": exc.code})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"detail": "Invalid request.", "code": "validation_error"})

    @app.get("/health")
    async def health():
        return {"status": "ok", "domains_failsafe": bool(runtime.gate.registry.failsafe)}

    # ---- enforcement ----
    @app.post("/v1/enforce/signup", response_model=EnforcementResult)
    async def enforce_signup(req: SignupCheckRequest):
        return enforce_at_signup(runtime.gate, req.email)

    @app.post("/v1/enforce/checkout", response_model=EnforcementResult)
    async def enforce_checkout(req: CheckoutCheckRequest):
        return enforce_at_checkout(runtime.gate, req.email, req.product_class)

    @app.post("/v1/enforce/api", response_model=EnforcementResult)
    async def enforce_api(req: ApiCheckRequest):
        return enforce_at_api(runtime.gate, req.email, req.operation, account=req.account)

    # ---- aggregates ----
    @app.post("/v1/aggregate/metrics")
    async def aggregate_metrics(req: MetricsRequest) -> Dict[str, Any]:
        metrics = runtime.aggregator.compute_all(req.units)
        return {"units": [m.model_dump(mode="json") for m in metrics]}

    @app.post("/v1/aggregate/filtered-view", response_model=FilteredViewDecision)
    async def aggregate_filtered_view(req: FilteredViewCheckRequest):
        return runtime.aggregator.validate_filtered_view(req.units, req.filter)

    @app.post("/v1/aggregate/export", response_model=ExportBundle)
    async def aggregate_export(req: ExportBuildRequest):
        return runtime.aggregator.build_export(req.units, req.request, org_name=req.org_name)

    @app.post("/v1/exports/{export_id}/verify", response_model=ExportIntegrity)
    async def export_verify(export_id: str, bundle: ExportBundle):
        return runtime.aggregator.verify_export_integrity(export_id, bundle)

    # ---- ledger ----
    @app.get("/v1/ledger/verify", response_model=IntegrityReport)
    async def ledger_verify():
        return runtime.ledger.verify_chain_integrity()

    return app
