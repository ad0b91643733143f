from __future__ import annotations

import pytest

from govcore.core.consent import ConsentLedger, ConsentStore
from govcore.core.consent.models import ConsentScope
from govcore.core.errors import NotFoundError, SweepInProgressError, ValidationError
from govcore.core.ledger import AuditEventType, Ledger
from govcore.core.offboarding import OffboardingManager, OffboardingStage, OffboardingStore
from govcore.core.separation import IdentityVault, RetentionClass
from govcore.core.separation.models import DeletionResult, IdentityRecord

NOW = 1_800_000_000.0
HOUR = 3600.0
DAY = 24 * HOUR


def _mk(tmp_path) -> OffboardingManager:
    db = str(tmp_path / "gov.sqlite")
    led = Ledger(path=str(tmp_path / "ledger.jsonl"), head_path=str(tmp_path / "head.json"))
    vault = IdentityVault(db_path=db, ledger=led)
    consent = ConsentLedger(store=ConsentStore(db_path=db), ledger=led)
    return OffboardingManager(store=OffboardingStore(db_path=db), ledger=led, vault=vault, consent=consent)


def _subject(mgr: OffboardingManager, identity_id: str) -> str:
    ref = mgr.vault.save_identity(IdentityRecord(identity_id=identity_id, email=f"{identity_id}@example.com"))
    mgr.vault.create_pattern_record(ref, {"state": "stretched"})
    mgr.consent.grant(identity_id, ConsentScope.data_collection, now=NOW - DAY)
    return ref


def test_initiate_sets_timeline_and_ledgers(tmp_path):
    mgr = _mk(tmp_path)
    req = mgr.initiate("org-1", "admin-1", subject_ids=["p1"], now=NOW)
    assert req.stage == OffboardingStage.initiated
    assert req.export_window_ends_at == NOW + 30 * DAY
    assert req.scheduled_deletion_at == NOW + 44 * DAY
    assert mgr.active_request("org-1").request_id == req.request_id

    entry = mgr.ledger.get(req.audit_ref)
    assert entry.event_type == AuditEventType.offboarding_initiated
    assert entry.scope == "org-1"
    assert entry.metadata["subjects"] == 1

    with pytest.raises(ValidationError):
        mgr.initiate("org-1", "admin-2", now=NOW + 1)


def test_invalid_transition_rejected(tmp_path):
    mgr = _mk(tmp_path)
    req = mgr.initiate("org-1", "admin-1", now=NOW)
    with pytest.raises(ValidationError):
        mgr.advance(req.request_id, OffboardingStage.export_window, "admin-1", now=NOW)
    with pytest.raises(NotFoundError):
        mgr.advance("offboard_missing", OffboardingStage.data_frozen, "admin-1")
    assert mgr.get(req.request_id).stage == OffboardingStage.initiated


def test_cancel_records_reason_and_frees_org(tmp_path):
    mgr = _mk(tmp_path)
    req = mgr.initiate("org-1", "admin-1", now=NOW)
    assert mgr.execute_data_freeze(req.request_id, now=NOW + DAY) is True
    assert mgr.is_frozen("org-1") is True

    cancelled = mgr.cancel(req.request_id, "admin-1", "contract renewed", now=NOW + 2 * DAY)
    assert cancelled.stage == OffboardingStage.cancelled
    assert cancelled.cancel_reason == "contract renewed"
    assert mgr.is_frozen("org-1") is False
    assert mgr.active_request("org-1") is None
    assert mgr.initiate("org-1", "admin-1", now=NOW + 3 * DAY).stage == OffboardingStage.initiated

    last = [e for e in mgr.ledger.by_target(req.request_id)][-1]
    assert last.metadata == {"from": "data_frozen", "to": "cancelled", "reason": "contract renewed"}


def test_deletion_waits_for_export_window_and_delay(tmp_path):
    mgr = _mk(tmp_path)
    req = mgr.initiate("org-1", "admin-1", now=NOW)
    mgr.execute_data_freeze(req.request_id, now=NOW + DAY)
    mgr.open_export_window(req.request_id, now=NOW + 3 * DAY)

    assert mgr.schedule_deletion(req.request_id, now=NOW + 10 * DAY) is False
    assert mgr.schedule_deletion(req.request_id, now=NOW + 30 * DAY) is True
    assert mgr.execute_deletion(req.request_id, now=NOW + 40 * DAY).success is False
    assert mgr.get(req.request_id).stage == OffboardingStage.deletion_scheduled


def test_timeline_sweep_runs_full_lifecycle(tmp_path):
    mgr = _mk(tmp_path)
    ref = _subject(mgr, "p1")
    _subject(mgr, "p2")
    req = mgr.initiate("org-1", "admin-1", subject_ids=["p1", "p2"], now=NOW)

    assert mgr.process_timeline(now=NOW + HOUR).frozen == 0
    assert mgr.process_timeline(now=NOW + DAY).frozen == 1
    assert mgr.process_timeline(now=NOW + 2 * DAY).windows_opened == 0
    assert mgr.process_timeline(now=NOW + 3 * DAY).windows_opened == 1
    assert mgr.process_timeline(now=NOW + 30 * DAY).deletions_scheduled == 1
    assert mgr.process_timeline(now=NOW + 43 * DAY).deletions_completed == 0

    res = mgr.process_timeline(now=NOW + 44 * DAY)
    assert (res.processed, res.deletions_completed) == (1, 1)

    done = mgr.get(req.request_id)
    assert done.stage == OffboardingStage.completed
    assert done.completed_at == NOW + 44 * DAY
    assert done.confirmation_artifact.startswith(f"offboard_confirm_{req.request_id}_")
    assert [c.stage for c in done.stage_history] == [
        OffboardingStage.initiated,
        OffboardingStage.data_frozen,
        OffboardingStage.export_window,
        OffboardingStage.deletion_scheduled,
        OffboardingStage.deletion_in_progress,
        OffboardingStage.completed,
    ]

    assert mgr.vault.get_identity("p1") is None
    assert mgr.vault.get_identity("p2") is None
    assert [p for p in mgr.vault.patterns_by_retention_class(RetentionClass.active) if p.identity_ref == ref] == []
    assert mgr.consent.active_consents("p1", now=NOW + 44 * DAY) == []
    assert len(mgr.ledger.by_type(AuditEventType.offboarding_completed)) == 1
    assert mgr.process_timeline(now=NOW + 45 * DAY).processed == 0


def test_execute_deletion_reports_counts(tmp_path):
    mgr = _mk(tmp_path)
    _subject(mgr, "p1")
    req = mgr.initiate("org-1", "admin-1", subject_ids=["p1", "ghost"], now=NOW)
    mgr.execute_data_freeze(req.request_id, now=NOW + DAY)
    mgr.open_export_window(req.request_id, now=NOW + 3 * DAY)
    mgr.schedule_deletion(req.request_id, now=NOW + 30 * DAY)

    out = mgr.execute_deletion(req.request_id, now=NOW + 44 * DAY)
    assert out.success is True
    assert (out.identities_deleted, out.patterns_deleted, out.consents_revoked) == (1, 1, 1)
    assert mgr.execute_deletion(req.request_id, now=NOW + 45 * DAY).success is False


def test_vault_failure_leaves_deletion_in_progress(tmp_path, monkeypatch):
    mgr = _mk(tmp_path)
    _subject(mgr, "p1")
    req = mgr.initiate("org-1", "admin-1", subject_ids=["p1"], now=NOW)
    mgr.execute_data_freeze(req.request_id, now=NOW + DAY)
    mgr.open_export_window(req.request_id, now=NOW + 3 * DAY)
    mgr.schedule_deletion(req.request_id, now=NOW + 30 * DAY)

    real_delete = mgr.vault.delete_identity
    monkeypatch.setattr(mgr.vault, "delete_identity", lambda _iid: DeletionResult(error="database is locked"))
    out = mgr.execute_deletion(req.request_id, now=NOW + 44 * DAY)
    assert out.success is False
    assert out.errors == ["database is locked"]
    assert mgr.get(req.request_id).stage == OffboardingStage.deletion_in_progress
    with pytest.raises(ValidationError):
        mgr.cancel(req.request_id, "admin-1", "too late", now=NOW + 44 * DAY)

    monkeypatch.setattr(mgr.vault, "delete_identity", real_delete)
    assert mgr.execute_deletion(req.request_id, now=NOW + 45 * DAY).success is True
    assert mgr.get(req.request_id).stage == OffboardingStage.completed
    assert mgr.vault.get_identity("p1") is None


def test_status_reports_remaining_days(tmp_path):
    mgr = _mk(tmp_path)
    req = mgr.initiate("org-1", "admin-1", now=NOW)
    st = mgr.status(req.request_id, now=NOW + 2.5 * DAY)
    assert st.current_stage == OffboardingStage.initiated
    assert st.days_in_current_stage == 2
    assert st.export_window_remaining_days == 28
    assert st.deletion_scheduled_in_days == 42
    assert mgr.status("offboard_missing").request is None


def test_timeline_is_single_flight(tmp_path):
    mgr = _mk(tmp_path)
    with mgr._flight.guard():
        with pytest.raises(SweepInProgressError):
            mgr.process_timeline(now=NOW)


def test_ledger_never_names_subjects(tmp_path):
    mgr = _mk(tmp_path)
    req = mgr.initiate("org-1", "admin-1", subject_ids=["person-secret-id"], now=NOW)
    mgr.cancel(req.request_id, "admin-1", "mistake", now=NOW + 1)
    with open(mgr.ledger.path, "r", encoding="utf-8") as f:
        assert "person-secret-id" not in f.read()
