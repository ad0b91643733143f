from __future__ import annotations

import hashlib
import json
import secrets
import sqlite3
import time
from typing import Any, List, Optional

from govcore.core.errors import StoreError, ValidationError
from govcore.core.ledger import Actor, AuditEventType, Ledger
from govcore.core.logger import get_logger
from govcore.core.separation.models import (
    DeletionResult,
    IdentityRecord,
    PatternRecord,
    RetentionClass,
    SeparationReport,
)
from govcore.core.storage import SqliteStore

_ACTOR = Actor.system("data_separation")


def new_opaque_ref() -> str:
    # Random, never derived from the identity id.
    return "ref_" + secrets.token_hex(16)


def hash_payload(payload: Any) -> str:
    raw = json.dumps(payload, ensure_ascii=False, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class IdentityVault(SqliteStore):
    """
    Identity records and pattern records live in disjoint tables. The only link
    is the opaque reference held in identity_refs; pattern rows never carry an
    identity id, and ledger entries only ever name the opaque reference.
    """

    def __init__(self, *, db_path: str, ledger: Optional[Ledger] = None):
        self.ledger = ledger
        self.log = get_logger("separation")
        super().__init__(db_path=db_path)

    def _init_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS identities (
              identity_id TEXT PRIMARY KEY,
              display_name TEXT,
              email TEXT,
              org_membership TEXT,
              created_at REAL,
              modified_at REAL
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS identity_refs (
              identity_id TEXT PRIMARY KEY,
              opaque_ref TEXT NOT NULL UNIQUE
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS patterns (
              pattern_id TEXT PRIMARY KEY,
              identity_ref TEXT NOT NULL,
              data_hash TEXT NOT NULL,
              created_at REAL,
              retention_class TEXT NOT NULL
            )
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_patterns_ref ON patterns(identity_ref)")

    def _record(self, event_type: AuditEventType, action: str, *, target_ref: Optional[str], **meta: Any) -> None:
        if self.ledger is None:
            return
        self.ledger.append(event_type, _ACTOR, action, target_ref=target_ref, scope="data_separation", metadata=meta or None)

    # ---- identities ----
    def save_identity(self, record: IdentityRecord) -> str:
        """
        Insert or update an identity; returns its opaque reference.
        """
        with self._session() as conn:
            existing = conn.execute("SELECT created_at FROM identities WHERE identity_id=?", (record.identity_id,)).fetchone()
            conn.execute(
                """
                INSERT INTO identities(identity_id, display_name, email, org_membership, created_at, modified_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(identity_id) DO UPDATE SET
                  display_name=excluded.display_name,
                  email=excluded.email,
                  org_membership=excluded.org_membership,
                  modified_at=excluded.modified_at
                """,
                (record.identity_id, record.display_name, record.email, record.org_membership, record.created_at, time.time()),
            )
            row = conn.execute("SELECT opaque_ref FROM identity_refs WHERE identity_id=?", (record.identity_id,)).fetchone()
            if row:
                ref = str(row["opaque_ref"])
            else:
                ref = new_opaque_ref()
                conn.execute("INSERT INTO identity_refs(identity_id, opaque_ref) VALUES (?, ?)", (record.identity_id, ref))
        self._record(
            AuditEventType.data_access,
            "Identity record updated" if existing else "Identity record created",
            target_ref=ref,
        )
        return ref

    def get_identity(self, identity_id: str) -> Optional[IdentityRecord]:
        with self._session() as conn:
            row = conn.execute("SELECT * FROM identities WHERE identity_id=?", (str(identity_id),)).fetchone()
        if not row:
            return None
        return IdentityRecord(
            identity_id=row["identity_id"],
            display_name=row["display_name"],
            email=row["email"],
            org_membership=row["org_membership"],
            created_at=float(row["created_at"] or 0.0),
            modified_at=float(row["modified_at"] or 0.0),
        )

    def opaque_ref(self, identity_id: str) -> Optional[str]:
        with self._session() as conn:
            row = conn.execute("SELECT opaque_ref FROM identity_refs WHERE identity_id=?", (str(identity_id),)).fetchone()
        return str(row["opaque_ref"]) if row else None

    def delete_identity(self, identity_id: str) -> DeletionResult:
        """
        Identity row, ref mapping and every pattern under the ref go in one
        transaction. A store failure rolls everything back and is reported.
        """
        iid = str(identity_id)
        ref: Optional[str] = None
        try:
            with self._session() as conn:
                row = conn.execute("SELECT opaque_ref FROM identity_refs WHERE identity_id=?", (iid,)).fetchone()
                ref = str(row["opaque_ref"]) if row else None
                identity_deleted = conn.execute("DELETE FROM identities WHERE identity_id=?", (iid,)).rowcount > 0
                conn.execute("DELETE FROM identity_refs WHERE identity_id=?", (iid,))
                patterns_deleted = 0
                if ref is not None:
                    patterns_deleted = conn.execute("DELETE FROM patterns WHERE identity_ref=?", (ref,)).rowcount
        except StoreError as e:
            self.log.error("Identity deletion rolled back: %s", e.context.get("error"))
            return DeletionResult(identity_deleted=False, patterns_deleted=0, error=str(e.context.get("error") or e.code))

        result = DeletionResult(identity_deleted=bool(identity_deleted), patterns_deleted=int(patterns_deleted))
        if result.identity_deleted or result.patterns_deleted:
            self._record(
                AuditEventType.data_delete,
                "Full data deletion completed",
                target_ref=ref or "unknown",
                identity_deleted=result.identity_deleted,
                patterns_deleted=result.patterns_deleted,
            )
        return result

    # ---- patterns ----
    def create_pattern_record(self, identity_ref: str, payload: Any) -> PatternRecord:
        rec = PatternRecord(identity_ref=str(identity_ref), data_hash=hash_payload(payload))
        with self._session() as conn:
            known = conn.execute("SELECT 1 FROM identity_refs WHERE opaque_ref=?", (rec.identity_ref,)).fetchone()
            if not known:
                raise ValidationError("Pattern records must reference a known opaque identity reference.")
            conn.execute(
                "INSERT INTO patterns(pattern_id, identity_ref, data_hash, created_at, retention_class) VALUES (?, ?, ?, ?, ?)",
                (rec.pattern_id, rec.identity_ref, rec.data_hash, rec.created_at, rec.retention_class.value),
            )
        self._record(AuditEventType.data_access, "Pattern record created", target_ref=rec.pattern_id, data_hash=rec.data_hash)
        return rec

    @staticmethod
    def _pattern_from_row(row: sqlite3.Row) -> PatternRecord:
        return PatternRecord(
            pattern_id=row["pattern_id"],
            identity_ref=row["identity_ref"],
            data_hash=row["data_hash"],
            created_at=float(row["created_at"] or 0.0),
            retention_class=RetentionClass(str(row["retention_class"])),
        )

    def get_pattern(self, pattern_id: str) -> Optional[PatternRecord]:
        with self._session() as conn:
            row = conn.execute("SELECT * FROM patterns WHERE pattern_id=?", (str(pattern_id),)).fetchone()
        return self._pattern_from_row(row) if row else None

    def patterns_by_retention_class(self, retention_class: RetentionClass) -> List[PatternRecord]:
        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM patterns WHERE retention_class=? ORDER BY created_at ASC", (RetentionClass(retention_class).value,)
            ).fetchall()
        return [self._pattern_from_row(r) for r in rows]

    def update_pattern_retention_class(self, pattern_id: str, retention_class: RetentionClass) -> bool:
        new_cls = RetentionClass(retention_class)
        with self._session() as conn:
            row = conn.execute("SELECT retention_class FROM patterns WHERE pattern_id=?", (str(pattern_id),)).fetchone()
            if not row:
                return False
            old_cls = str(row["retention_class"])
            conn.execute("UPDATE patterns SET retention_class=? WHERE pattern_id=?", (new_cls.value, str(pattern_id)))
        self._record(
            AuditEventType.retention_applied,
            f"Pattern retention class changed: {old_cls} -> {new_cls.value}",
            target_ref=str(pattern_id),
        )
        return True

    def delete_pattern(self, pattern_id: str) -> bool:
        with self._session() as conn:
            n = conn.execute("DELETE FROM patterns WHERE pattern_id=?", (str(pattern_id),)).rowcount
        if n:
            self._record(AuditEventType.data_delete, "Pattern record deleted", target_ref=str(pattern_id))
        return bool(n)

    def purge_patterns_by_ref(self, identity_ref: str) -> int:
        with self._session() as conn:
            n = conn.execute("DELETE FROM patterns WHERE identity_ref=?", (str(identity_ref),)).rowcount
        self._record(
            AuditEventType.data_delete,
            f"Pattern records purged for identity ref ({n} total)",
            target_ref=str(identity_ref),
            record_count=int(n),
        )
        return int(n)

    # ---- checks ----
    def verify_separation(self) -> SeparationReport:
        with self._session() as conn:
            identity_count = int(conn.execute("SELECT COUNT(*) FROM identities").fetchone()[0])
            pattern_count = int(conn.execute("SELECT COUNT(*) FROM patterns").fetchone()[0])
            orphaned = int(
                conn.execute(
                    "SELECT COUNT(*) FROM patterns p LEFT JOIN identity_refs r ON p.identity_ref = r.opaque_ref WHERE r.opaque_ref IS NULL"
                ).fetchone()[0]
            )
            unmapped = int(
                conn.execute(
                    "SELECT COUNT(*) FROM identities i LEFT JOIN identity_refs r ON i.identity_id = r.identity_id WHERE r.identity_id IS NULL"
                ).fetchone()[0]
            )
        issues: List[str] = []
        if orphaned:
            issues.append(f"{orphaned} orphaned pattern records found")
        if unmapped:
            issues.append(f"{unmapped} identities without reference mapping")
        return SeparationReport(
            is_valid=not issues,
            identity_count=identity_count,
            pattern_count=pattern_count,
            orphaned_patterns=orphaned,
            unmapped_identities=unmapped,
            issues=issues,
        )
