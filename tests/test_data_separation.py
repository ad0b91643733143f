from __future__ import annotations

import sqlite3

import pytest

from govcore.core.errors import StoreError, ValidationError
from govcore.core.ledger import AuditEventType, Ledger
from govcore.core.separation import IdentityVault, RetentionClass
from govcore.core.separation.models import IdentityRecord
from govcore.core.separation.vault import hash_payload


def _mk(tmp_path):
    led = Ledger(path=str(tmp_path / "ledger.jsonl"), head_path=str(tmp_path / "head.json"))
    return IdentityVault(db_path=str(tmp_path / "gov.sqlite"), ledger=led), led


def test_opaque_ref_is_stable_and_not_derived(tmp_path):
    vault, _ = _mk(tmp_path)
    ref = vault.save_identity(IdentityRecord(identity_id="alice-123", email="alice@example.com"))
    assert ref.startswith("ref_")
    assert "alice" not in ref
    assert vault.save_identity(IdentityRecord(identity_id="alice-123", display_name="Alice")) == ref
    assert vault.opaque_ref("alice-123") == ref
    assert vault.get_identity("alice-123").display_name == "Alice"
    assert vault.opaque_ref("nobody") is None


def test_pattern_records_carry_only_ref_and_hash(tmp_path):
    vault, led = _mk(tmp_path)
    ref = vault.save_identity(IdentityRecord(identity_id="bob", email="bob@example.com"))
    pat = vault.create_pattern_record(ref, {"state": "depleted", "note": "tired"})
    assert pat.identity_ref == ref
    assert pat.data_hash == hash_payload({"note": "tired", "state": "depleted"})
    assert vault.get_pattern(pat.pattern_id).retention_class == RetentionClass.active

    with open(led.path, "r", encoding="utf-8") as f:
        text = f.read()
    assert "bob@example.com" not in text
    assert '"bob"' not in text
    assert "tired" not in text


def test_pattern_requires_known_ref(tmp_path):
    vault, _ = _mk(tmp_path)
    with pytest.raises(ValidationError):
        vault.create_pattern_record("ref_unknown", {"x": 1})


def test_delete_identity_cascades_patterns(tmp_path):
    vault, led = _mk(tmp_path)
    ref = vault.save_identity(IdentityRecord(identity_id="carol"))
    for i in range(3):
        vault.create_pattern_record(ref, {"i": i})
    other = vault.save_identity(IdentityRecord(identity_id="dave"))
    vault.create_pattern_record(other, {"i": 0})

    res = vault.delete_identity("carol")
    assert res.identity_deleted is True
    assert res.patterns_deleted == 3
    assert res.error is None
    assert vault.get_identity("carol") is None
    assert vault.opaque_ref("carol") is None

    rep = vault.verify_separation()
    assert rep.is_valid is True
    assert (rep.identity_count, rep.pattern_count) == (1, 1)

    deletes = led.by_type(AuditEventType.data_delete)
    assert deletes[-1].target_ref == ref
    assert deletes[-1].metadata == {"identity_deleted": True, "patterns_deleted": 3}

    assert vault.delete_identity("carol").identity_deleted is False


def test_delete_identity_reports_store_failure(tmp_path, monkeypatch):
    vault, _ = _mk(tmp_path)
    vault.save_identity(IdentityRecord(identity_id="erin"))

    def _broken_conn():
        raise StoreError(error="database is locked")

    monkeypatch.setattr(vault, "_session", _broken_conn)
    res = vault.delete_identity("erin")
    assert res.identity_deleted is False
    assert res.patterns_deleted == 0
    assert res.error == "database is locked"


def test_retention_class_updates_and_purge(tmp_path):
    vault, _ = _mk(tmp_path)
    ref = vault.save_identity(IdentityRecord(identity_id="frank"))
    a = vault.create_pattern_record(ref, {"a": 1})
    b = vault.create_pattern_record(ref, {"b": 2})

    assert vault.update_pattern_retention_class(a.pattern_id, RetentionClass.archived) is True
    assert vault.update_pattern_retention_class("pattern_missing", RetentionClass.archived) is False
    assert [p.pattern_id for p in vault.patterns_by_retention_class(RetentionClass.archived)] == [a.pattern_id]

    assert vault.delete_pattern(b.pattern_id) is True
    assert vault.delete_pattern(b.pattern_id) is False
    assert vault.purge_patterns_by_ref(ref) == 1
    assert vault.get_identity("frank") is not None


def test_verify_separation_flags_orphans_and_unmapped(tmp_path):
    db = str(tmp_path / "gov.sqlite")
    vault = IdentityVault(db_path=db)
    vault.save_identity(IdentityRecord(identity_id="gina"))
    conn = sqlite3.connect(db)
    conn.execute("INSERT INTO patterns(pattern_id, identity_ref, data_hash, created_at, retention_class) VALUES ('p1', 'ref_gone', ?, 0, 'active')", ("0" * 64,))
    conn.execute("INSERT INTO identities(identity_id, created_at, modified_at) VALUES ('henry', 0, 0)")
    conn.commit()
    conn.close()

    rep = vault.verify_separation()
    assert rep.is_valid is False
    assert rep.orphaned_patterns == 1
    assert rep.unmapped_identities == 1
    assert len(rep.issues) == 2
