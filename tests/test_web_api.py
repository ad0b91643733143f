from __future__ import annotations

import os
import time

from fastapi.testclient import TestClient

from govcore.web.api import create_app


def _signals(n: int, state: str = "resourced", age: float = 3600.0):
    now = time.time()
    return [{"state": state, "timestamp": now - age - i} for i in range(n)]


def _client(runtime) -> TestClient:
    return TestClient(create_app(runtime))


def test_health(runtime):
    r = _client(runtime).get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "domains_failsafe": False}


def test_signup_enforcement(runtime):
    c = _client(runtime)
    ok = c.post("/v1/enforce/signup", json={"email": "a@small.example"})
    assert ok.status_code == 200
    assert ok.json()["allowed"] is True

    denied = c.post("/v1/enforce/signup", json={"email": "a@research.stanford.edu"})
    assert denied.status_code == 200
    body = denied.json()
    assert body["allowed"] is False
    assert body["fail_closed"] is True
    assert body["enforcement_point"] == "signup_flow"


def test_checkout_and_api_enforcement(runtime):
    c = _client(runtime)
    r = c.post("/v1/enforce/checkout", json={"email": "a@small.example", "product_class": "class_b_institutional"})
    assert r.json()["allowed"] is False

    inst = {"deployment_class": "class_b_institutional", "contract_id": "C-1", "minimum_seats": 40}
    r = c.post("/v1/enforce/api", json={"email": "ops@google.com", "operation": "view_aggregated_dashboard", "account": inst})
    assert r.json()["allowed"] is True
    r = c.post("/v1/enforce/api", json={"email": "ops@google.com", "operation": "view_individual_data", "account": inst})
    assert r.json()["allowed"] is False


def test_invalid_body_is_400(runtime):
    c = _client(runtime)
    assert c.post("/v1/enforce/signup", json={}).status_code == 400
    smuggled = {"deployment_class": "class_b_institutional", "contract_id": "C", "minimum_seats": 40, "named_individuals": ["x"]}
    r = c.post("/v1/enforce/api", json={"email": "a@b.example", "operation": "view_individual_data", "account": smuggled})
    assert r.status_code == 400
    assert r.json()["code"] == "validation_error"


def test_metrics_suppress_small_units(runtime):
    c = _client(runtime)
    units = [
        {"unit_id": "big", "unit_name": "Platform", "signals": _signals(5)},
        {"unit_id": "small", "unit_name": "Legal", "signals": _signals(4)},
        {"unit_id": "fresh", "signals": _signals(4) + _signals(1, age=10)},
    ]
    r = c.post("/v1/aggregate/metrics", json={"units": units})
    assert r.status_code == 200
    out = {u["unit_id"]: u for u in r.json()["units"]}
    assert out["big"]["is_suppressed"] is False
    assert out["big"]["load"] == 100
    assert out["small"]["is_suppressed"] is True
    assert out["small"]["load"] is None
    assert "signal_count" not in out["small"]
    assert out["fresh"]["is_suppressed"] is True


def test_filtered_view(runtime):
    c = _client(runtime)
    units = [{"unit_id": "a", "signals": _signals(3) + _signals(3, "depleted")}]
    r = c.post("/v1/aggregate/filtered-view", json={"units": units, "filter": {"states": ["depleted"]}})
    assert r.status_code == 200
    assert r.json() == {"allowed": False, "reason": "Filtered view contains only 3 signals. Minimum 5 required.", "resulting_count": 3}


def test_export_builds_bundle_and_ledgers(runtime):
    c = _client(runtime)
    units = [{"unit_id": "a", "signals": _signals(6)}, {"unit_id": "b", "signals": _signals(2)}]
    r = c.post("/v1/aggregate/export", json={"units": units, "request": {"format": "csv", "include_units": ["a", "b", "zzz"]}})
    assert r.status_code == 200
    body = r.json()
    assert body["blocked_units"] == ["b", "zzz"]
    assert [u["is_suppressed"] for u in body["units"]] == [False, True, True]
    assert body["audit_sequence"] is not None

    v = c.get("/v1/ledger/verify")
    assert v.status_code == 200
    assert v.json()["valid"] is True
    assert v.json()["checked"] >= 1


def test_unwritable_ledger_maps_to_503(runtime, tmp_config_root):
    c = _client(runtime)
    units = [{"unit_id": "a", "signals": _signals(6)}]
    assert c.post("/v1/aggregate/export", json={"units": units, "request": {"include_units": ["a"]}}).status_code == 200
    os.remove(os.path.join(tmp_config_root.root, runtime.config.ledger.head_path))
    r = c.post("/v1/aggregate/export", json={"units": units, "request": {"include_units": ["a"]}})
    assert r.status_code == 503
    assert r.json()["code"] == "audit_write_error"


def test_export_watermark_verifies_round_trip(runtime):
    c = _client(runtime)
    units = [{"unit_id": "a", "signals": _signals(6)}, {"unit_id": "b", "signals": _signals(2)}]
    r = c.post("/v1/aggregate/export", json={"units": units, "request": {"include_units": ["a", "b"]}, "org_name": "Northwind"})
    assert r.status_code == 200
    bundle = r.json()
    assert bundle["watermark"]["org_name"] == "Northwind"
    assert bundle["watermark"]["record_count"] == 1
    export_id = bundle["export_id"]

    ok = c.post(f"/v1/exports/{export_id}/verify", json=bundle)
    assert ok.status_code == 200
    assert ok.json()["is_valid"] is True

    bundle["blocked_units"] = []
    bad = c.post(f"/v1/exports/{export_id}/verify", json=bundle)
    assert bad.json()["is_valid"] is False
