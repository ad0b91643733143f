from __future__ import annotations

import json
import multiprocessing
import os
import threading

import pytest

from govcore.core.errors import AuditWriteError
from govcore.core.ledger import Actor, AuditEventType, Ledger
from govcore.core.ledger.hasher import GENESIS_HASH, compute_hash, strip_chain_fields


def _mk_ledger(tmp_path) -> Ledger:
    return Ledger(path=str(tmp_path / "ledger" / "ledger.jsonl"), head_path=str(tmp_path / "ledger" / "head.json"))


def _fill(led: Ledger, n: int = 3) -> None:
    for i in range(n):
        led.append(AuditEventType.admin_action, Actor.system("test"), f"action {i}", target_ref=f"t{i}", metadata={"i": i}, now=1000.0 + i)


def _rewrite_line(path: str, idx: int, **changes) -> None:
    with open(path, "r", encoding="utf-8") as f:
        lines = f.readlines()
    obj = json.loads(lines[idx])
    obj.update(changes)
    lines[idx] = json.dumps(obj, ensure_ascii=False, sort_keys=True) + "\n"
    with open(path, "w", encoding="utf-8") as f:
        f.writelines(lines)


def test_empty_ledger_is_valid(tmp_path):
    rep = _mk_ledger(tmp_path).verify_chain_integrity()
    assert rep.valid is True
    assert rep.checked == 0


def test_append_assigns_contiguous_sequence_and_links(tmp_path):
    led = _mk_ledger(tmp_path)
    e1 = led.append(AuditEventType.config_change, Actor.system("test"), "first")
    e2 = led.append(AuditEventType.config_change, Actor.system("test"), "second")
    assert (e1.sequence, e2.sequence) == (1, 2)
    assert e1.previous_hash == GENESIS_HASH
    assert e2.previous_hash == e1.entry_hash

    rep = led.verify_chain_integrity()
    assert rep.valid is True
    assert rep.checked == 2
    assert rep.head_hash == e2.entry_hash


def test_sequence_survives_reopen(tmp_path):
    _fill(_mk_ledger(tmp_path), 2)
    e3 = _mk_ledger(tmp_path).append(AuditEventType.admin_action, Actor.system("test"), "after reopen")
    assert e3.sequence == 3


@pytest.mark.parametrize(
    "field,value",
    [
        ("action", "TAMPERED"),
        ("timestamp", 1.0),
        ("target_ref", "someone-else"),
        ("metadata", {"i": 99}),
        ("event_type", "data_delete"),
        ("actor", {"type": "admin", "ref": "x"}),
    ],
)
def test_tamper_any_field_breaks_chain(tmp_path, field, value):
    led = _mk_ledger(tmp_path)
    _fill(led, 3)
    _rewrite_line(led.path, 1, **{field: value})
    rep = led.verify_chain_integrity()
    assert rep.valid is False
    assert rep.broken_at_sequence == 2
    assert rep.checked == 1


def test_recomputed_hash_still_detected_downstream(tmp_path):
    led = _mk_ledger(tmp_path)
    _fill(led, 3)
    with open(led.path, "r", encoding="utf-8") as f:
        lines = f.readlines()
    obj = json.loads(lines[0])
    obj["action"] = "rewritten"
    obj["entry_hash"] = compute_hash(obj["previous_hash"], strip_chain_fields(obj))
    lines[0] = json.dumps(obj, sort_keys=True) + "\n"
    with open(led.path, "w", encoding="utf-8") as f:
        f.writelines(lines)

    rep = led.verify_chain_integrity()
    assert rep.valid is False
    assert rep.broken_at_sequence == 2
    assert rep.message == "previous_hash mismatch"


def test_truncation_detected_via_head(tmp_path):
    led = _mk_ledger(tmp_path)
    _fill(led, 3)
    with open(led.path, "r", encoding="utf-8") as f:
        lines = f.readlines()
    with open(led.path, "w", encoding="utf-8") as f:
        f.writelines(lines[:2])
    rep = led.verify_chain_integrity()
    assert rep.valid is False
    assert rep.checked == 2
    assert rep.broken_at_sequence == 3


def test_unparseable_line_reported(tmp_path):
    led = _mk_ledger(tmp_path)
    _fill(led, 2)
    with open(led.path, "a", encoding="utf-8") as f:
        f.write("{not json\n")
    rep = led.verify_chain_integrity()
    assert rep.valid is False
    assert rep.broken_at_sequence == 3
    assert rep.message == "unparseable entry"


def test_append_refuses_when_head_lost(tmp_path):
    led = _mk_ledger(tmp_path)
    _fill(led, 2)
    os.remove(str(tmp_path / "ledger" / "head.json"))
    with pytest.raises(AuditWriteError):
        led.append(AuditEventType.admin_action, Actor.system("test"), "would fork")
    with open(led.path, "r", encoding="utf-8") as f:
        assert len(f.readlines()) == 2


def test_nested_metadata_rejected_before_write(tmp_path):
    led = _mk_ledger(tmp_path)
    with pytest.raises(Exception):
        led.append(AuditEventType.admin_action, Actor.system("test"), "bad", metadata={"nested": {"a": 1}})
    assert led.entries() == []
    assert led.verify_chain_integrity().valid is True


def test_readers(tmp_path):
    led = _mk_ledger(tmp_path)
    _fill(led, 3)
    led.append(AuditEventType.data_delete, Actor.system("sweeper"), "deleted", target_ref="t1", now=2000.0)

    assert [e.sequence for e in led.entries(limit=2)] == [4, 3]
    assert led.get(2).action == "action 1"
    assert led.get(99) is None
    assert [e.sequence for e in led.by_type(AuditEventType.data_delete)] == [4]
    assert [e.sequence for e in led.by_actor("sweeper")] == [4]
    assert [e.sequence for e in led.by_target("t1")] == [2, 4]
    assert [e.sequence for e in led.by_date_range(1000.0, 1001.0)] == [1, 2]


def test_export_writes_entries_and_integrity(tmp_path):
    led = _mk_ledger(tmp_path)
    _fill(led, 3)
    out = str(tmp_path / "exports" / "ledger.json")
    doc = led.export(out, start=1001.0)
    assert doc.entry_count == 2
    assert doc.chain_integrity.valid is True
    with open(out, "r", encoding="utf-8") as f:
        raw = json.load(f)
    assert raw["entry_count"] == 2
    assert [e["sequence"] for e in raw["entries"]] == [2, 3]


def _append_many(path: str, head_path: str, writer: str, n: int) -> None:
    led = Ledger(path=path, head_path=head_path)
    for i in range(n):
        led.append(AuditEventType.admin_action, Actor.system(writer), f"{writer} {i}")


def _assert_contiguous(led: Ledger, total: int) -> None:
    with open(led.path, "r", encoding="utf-8") as f:
        seqs = [json.loads(line)["sequence"] for line in f if line.strip()]
    assert seqs == list(range(1, total + 1))
    rep = led.verify_chain_integrity()
    assert rep.valid is True
    assert rep.checked == total


def test_threaded_appends_on_shared_ledger(tmp_path):
    led = _mk_ledger(tmp_path)

    def _worker(name: str) -> None:
        for i in range(25):
            led.append(AuditEventType.admin_action, Actor.system(name), f"{name} {i}")

    threads = [threading.Thread(target=_worker, args=(f"w{n}",)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    _assert_contiguous(led, 100)


def test_threaded_appends_across_ledger_instances(tmp_path):
    led = _mk_ledger(tmp_path)
    _fill(led, 1)
    errors = []

    def _worker(name: str) -> None:
        try:
            _append_many(led.path, str(tmp_path / "ledger" / "head.json"), name, 30)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=_worker, args=(f"inst{n}",)) for n in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert errors == []
    _assert_contiguous(led, 61)


def test_multiprocess_appends_keep_chain_gapless(tmp_path):
    led = _mk_ledger(tmp_path)
    _fill(led, 1)
    ctx = multiprocessing.get_context("spawn")
    head_path = str(tmp_path / "ledger" / "head.json")
    procs = [ctx.Process(target=_append_many, args=(led.path, head_path, f"proc{n}", 50)) for n in range(2)]
    for p in procs:
        p.start()
    for p in procs:
        p.join(timeout=120)
    assert [p.exitcode for p in procs] == [0, 0]
    _assert_contiguous(led, 101)


def test_failed_head_write_is_rolled_forward(tmp_path, monkeypatch):
    led = _mk_ledger(tmp_path)
    _fill(led, 1)
    real_write = led._store._write_head
    calls = {"n": 0}

    def _flaky(head_hash, sequence):
        calls["n"] += 1
        if calls["n"] == 1:
            raise OSError("disk full")
        real_write(head_hash, sequence)

    monkeypatch.setattr(led._store, "_write_head", _flaky)
    e2 = led.append(AuditEventType.admin_action, Actor.system("test"), "persisted, head stale")
    assert e2.sequence == 2
    assert led._store.read_head()[1] == 1

    e3 = led.append(AuditEventType.admin_action, Actor.system("test"), "after recovery")
    assert e3.sequence == 3
    assert e3.previous_hash == e2.entry_hash
    _assert_contiguous(led, 3)


def test_append_refuses_when_log_truncated(tmp_path):
    led = _mk_ledger(tmp_path)
    _fill(led, 3)
    with open(led.path, "r", encoding="utf-8") as f:
        lines = f.readlines()
    with open(led.path, "w", encoding="utf-8") as f:
        f.writelines(lines[:1])
    with pytest.raises(AuditWriteError):
        led.append(AuditEventType.admin_action, Actor.system("test"), "would reuse a sequence")
