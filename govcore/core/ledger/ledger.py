from __future__ import annotations

import json
import os
import time
import uuid
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError

from govcore.core.errors import AuditWriteError
from govcore.core.ledger.hasher import GENESIS_HASH, compute_hash, strip_chain_fields
from govcore.core.ledger.models import Actor, AuditEntry, AuditEventType, IntegrityReport, LedgerExport
from govcore.core.ledger.store_jsonl import LedgerJsonlStore
from govcore.core.logger import get_logger


class Ledger:
    """
    Governance ledger (append + read + verify). There is intentionally no update
    or delete method: corrections are new entries.
    """

    def __init__(self, *, path: str, head_path: str):
        self._store = LedgerJsonlStore(path=path, head_path=head_path)
        self.log = get_logger("ledger")

    @property
    def path(self) -> str:
        return self._store.path

    # ---- write ----
    def append(
        self,
        event_type: AuditEventType,
        actor: Actor,
        action: str,
        *,
        target_ref: Optional[str] = None,
        scope: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
        now: Optional[float] = None,
    ) -> AuditEntry:
        ts = float(now) if now is not None else time.time()
        entry_id = uuid.uuid4().hex

        def _payload(seq: int) -> Dict[str, Any]:
            # Validate through the model (with placeholder chain fields) so a bad
            # metadata value is rejected before anything is written.
            draft = AuditEntry(
                entry_id=entry_id,
                sequence=seq,
                timestamp=ts,
                event_type=event_type,
                actor=actor,
                target_ref=target_ref,
                action=action,
                scope=scope,
                metadata=dict(metadata) if metadata is not None else None,
                previous_hash=GENESIS_HASH,
                entry_hash=GENESIS_HASH,
            )
            return strip_chain_fields(draft.model_dump(mode="json"))

        try:
            rec = self._store.append(_payload)
        except OSError as e:
            self.log.error("Ledger append failed: %s", e)
            raise AuditWriteError(event_type=str(getattr(event_type, "value", event_type)), error=str(e)) from e
        return AuditEntry.model_validate(rec)

    # ---- integrity ----
    def verify_chain_integrity(self) -> IntegrityReport:
        head_hash, head_seq = self._store.read_head()
        prev_hash = GENESIS_HASH
        checked = 0
        expected = 0
        for _, rec in self._store.iter_raw():
            expected += 1
            reason = self._check_record(rec, expected=expected, prev_hash=prev_hash)
            if reason is not None:
                return self._broken(checked, expected, reason, head_hash)
            prev_hash = str(rec["entry_hash"])  # type: ignore[index]
            checked += 1

        if head_seq != checked or (checked > 0 and head_hash != prev_hash):
            return self._broken(checked, checked + 1, "head mismatch (log truncated or head rewritten)", head_hash)
        return IntegrityReport(valid=True, checked=checked, message="ok", head_hash=head_hash)

    @staticmethod
    def _check_record(rec: Optional[Dict[str, Any]], *, expected: int, prev_hash: str) -> Optional[str]:
        if rec is None:
            return "unparseable entry"
        if rec.get("sequence") != expected:
            return "sequence mismatch"
        if str(rec.get("previous_hash") or "") != prev_hash:
            return "previous_hash mismatch"
        if compute_hash(prev_hash, strip_chain_fields(rec)) != str(rec.get("entry_hash") or ""):
            return "entry_hash mismatch"
        return None

    def _broken(self, checked: int, at: int, reason: str, head_hash: str) -> IntegrityReport:
        self.log.error("Ledger integrity broken at sequence %s: %s", at, reason)
        return IntegrityReport(valid=False, checked=checked, broken_at_sequence=at, message=reason, head_hash=head_hash)

    # ---- read ----
    def _all(self) -> List[AuditEntry]:
        out: List[AuditEntry] = []
        for rec in self._store.read_all():
            try:
                out.append(AuditEntry.model_validate(rec))
            except ValidationError:
                continue
        return out

    def entries(self, limit: int = 100) -> List[AuditEntry]:
        items = self._all()
        items.reverse()
        return items[: max(0, int(limit))]

    def get(self, sequence: int) -> Optional[AuditEntry]:
        for e in self._all():
            if e.sequence == int(sequence):
                return e
        return None

    def by_type(self, event_type: AuditEventType) -> List[AuditEntry]:
        return [e for e in self._all() if e.event_type == event_type]

    def by_actor(self, actor_ref: str) -> List[AuditEntry]:
        return [e for e in self._all() if e.actor.ref == actor_ref]

    def by_target(self, target_ref: str) -> List[AuditEntry]:
        return [e for e in self._all() if e.target_ref == target_ref]

    def by_date_range(self, start: float, end: float) -> List[AuditEntry]:
        return [e for e in self._all() if float(start) <= e.timestamp <= float(end)]

    # ---- export ----
    def export(self, path: str, *, start: Optional[float] = None, end: Optional[float] = None) -> LedgerExport:
        items = self._all()
        if start is not None:
            items = [e for e in items if e.timestamp >= float(start)]
        if end is not None:
            items = [e for e in items if e.timestamp <= float(end)]
        doc = LedgerExport(
            exported_at=time.time(),
            chain_integrity=self.verify_chain_integrity(),
            entry_count=len(items),
            entries=items,
        )
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(doc.model_dump(mode="json"), f, indent=2, ensure_ascii=False)
        return doc
