from __future__ import annotations

import hashlib
import json
from typing import Any, Dict

GENESIS_HASH = "0" * 64

# Fields that are outputs of the chain and never part of the hashed payload.
CHAIN_FIELDS = ("previous_hash", "entry_hash")


def canonical_json(obj: Dict[str, Any]) -> str:
    # Deterministic JSON (no whitespace, sorted keys)
    return json.dumps(obj, ensure_ascii=False, sort_keys=True, separators=(",", ":"))


def compute_hash(previous_hash: str, payload: Dict[str, Any]) -> str:
    h = hashlib.sha256()
    h.update(previous_hash.encode("utf-8"))
    h.update(b"\n")
    h.update(canonical_json(payload).encode("utf-8"))
    return h.hexdigest()


def strip_chain_fields(record: Dict[str, Any]) -> Dict[str, Any]:
    payload = dict(record)
    for k in CHAIN_FIELDS:
        payload.pop(k, None)
    return payload


def chain_record(*, payload: Dict[str, Any], previous_hash: str) -> Dict[str, Any]:
    rec = strip_chain_fields(payload)
    rec["previous_hash"] = previous_hash
    rec["entry_hash"] = compute_hash(previous_hash, strip_chain_fields(payload))
    return rec
