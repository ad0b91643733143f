from __future__ import annotations

import sqlite3
from typing import Any, Dict, List, Optional

from govcore.core.consent.models import ConsentRecord, ConsentScope, ConsentStatus
from govcore.core.storage import SqliteStore

_COLUMNS = (
    "consent_id",
    "subject_id",
    "scope",
    "status",
    "granted_at",
    "modified_at",
    "revoked_at",
    "expired_at",
    "expires_at",
    "conditions",
    "version",
    "audit_ref",
    "superseded_by",
)


class ConsentStore(SqliteStore):
    """
    Consent records (SQLite). A partial unique index allows at most one
    `granted` row per (subject, scope); a second concurrent grant fails in the
    store instead of leaving two live grants.
    """

    def _init_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS consents (
              consent_id TEXT PRIMARY KEY,
              subject_id TEXT NOT NULL,
              scope TEXT NOT NULL,
              status TEXT NOT NULL,
              granted_at REAL,
              modified_at REAL,
              revoked_at REAL,
              expired_at REAL,
              expires_at REAL,
              conditions TEXT,
              version TEXT,
              audit_ref INTEGER,
              superseded_by TEXT
            )
            """
        )
        conn.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS ux_consents_one_granted ON consents(subject_id, scope) WHERE status='granted'"
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_consents_subject ON consents(subject_id)")

    @staticmethod
    def _from_row(row: sqlite3.Row) -> ConsentRecord:
        return ConsentRecord.model_validate({k: row[k] for k in _COLUMNS})

    @staticmethod
    def _params(rec: ConsentRecord) -> Dict[str, Any]:
        d = rec.model_dump(mode="json")
        return {k: d.get(k) for k in _COLUMNS}

    def _insert(self, conn: sqlite3.Connection, rec: ConsentRecord) -> None:
        cols = ", ".join(_COLUMNS)
        marks = ", ".join(f":{c}" for c in _COLUMNS)
        conn.execute(f"INSERT INTO consents({cols}) VALUES ({marks})", self._params(rec))

    def _update(self, conn: sqlite3.Connection, rec: ConsentRecord) -> None:
        sets = ", ".join(f"{c}=:{c}" for c in _COLUMNS if c != "consent_id")
        conn.execute(f"UPDATE consents SET {sets} WHERE consent_id=:consent_id", self._params(rec))

    # ---- reads ----
    def get(self, consent_id: str) -> Optional[ConsentRecord]:
        with self._session() as conn:
            row = conn.execute("SELECT * FROM consents WHERE consent_id=?", (str(consent_id),)).fetchone()
        return self._from_row(row) if row else None

    def current_granted(self, subject_id: str, scope: ConsentScope) -> Optional[ConsentRecord]:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM consents WHERE subject_id=? AND scope=? AND status='granted'",
                (str(subject_id), ConsentScope(scope).value),
            ).fetchone()
        return self._from_row(row) if row else None

    def list_for_subject(self, subject_id: str, *, status: Optional[ConsentStatus] = None) -> List[ConsentRecord]:
        with self._session() as conn:
            if status is None:
                rows = conn.execute(
                    "SELECT * FROM consents WHERE subject_id=? ORDER BY granted_at ASC, rowid ASC", (str(subject_id),)
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM consents WHERE subject_id=? AND status=? ORDER BY granted_at ASC, rowid ASC",
                    (str(subject_id), ConsentStatus(status).value),
                ).fetchall()
        return [self._from_row(r) for r in rows]

    def granted_past_expiry(self, now: float) -> List[ConsentRecord]:
        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM consents WHERE status='granted' AND expires_at IS NOT NULL AND expires_at < ? ORDER BY expires_at ASC",
                (float(now),),
            ).fetchall()
        return [self._from_row(r) for r in rows]

    # ---- writes ----
    def insert(self, rec: ConsentRecord) -> None:
        with self._session() as conn:
            self._insert(conn, rec)

    def update(self, rec: ConsentRecord) -> None:
        with self._session() as conn:
            self._update(conn, rec)

    def supersede(self, old: Optional[ConsentRecord], new: ConsentRecord) -> None:
        """
        Retire `old` (already marked modified by the caller) and insert `new` in
        one transaction; the old row is written first so the unique index holds.
        """
        with self._session() as conn:
            if old is not None:
                self._update(conn, old)
            self._insert(conn, new)

    def update_many(self, recs: List[ConsentRecord]) -> None:
        with self._session() as conn:
            for rec in recs:
                self._update(conn, rec)
