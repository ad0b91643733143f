from __future__ import annotations

import json
import sqlite3
from typing import List, Optional

from govcore.core.offboarding.models import OffboardingRequest
from govcore.core.storage import SqliteStore


class OffboardingStore(SqliteStore):
    """
    Offboarding requests (SQLite). The request document is stored as JSON next
    to the columns that are queried. A partial unique index allows one open
    request per organisation.
    """

    def _init_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS offboarding_requests (
              request_id TEXT PRIMARY KEY,
              org_id TEXT NOT NULL,
              stage TEXT NOT NULL,
              requested_at REAL NOT NULL,
              doc_json TEXT NOT NULL
            )
            """
        )
        conn.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS ux_offboarding_one_open ON offboarding_requests(org_id) "
            "WHERE stage NOT IN ('completed', 'cancelled')"
        )

    @staticmethod
    def _from_row(row: sqlite3.Row) -> OffboardingRequest:
        return OffboardingRequest.model_validate(json.loads(row["doc_json"]))

    @staticmethod
    def _params(req: OffboardingRequest) -> dict:
        return {
            "request_id": req.request_id,
            "org_id": req.org_id,
            "stage": req.stage.value,
            "requested_at": req.requested_at,
            "doc_json": json.dumps(req.model_dump(mode="json"), sort_keys=True),
        }

    def insert(self, req: OffboardingRequest) -> None:
        with self._session() as conn:
            conn.execute(
                "INSERT INTO offboarding_requests(request_id, org_id, stage, requested_at, doc_json) "
                "VALUES (:request_id, :org_id, :stage, :requested_at, :doc_json)",
                self._params(req),
            )

    def update(self, req: OffboardingRequest) -> None:
        with self._session() as conn:
            conn.execute(
                "UPDATE offboarding_requests SET stage=:stage, doc_json=:doc_json WHERE request_id=:request_id",
                self._params(req),
            )

    def get(self, request_id: str) -> Optional[OffboardingRequest]:
        with self._session() as conn:
            row = conn.execute("SELECT * FROM offboarding_requests WHERE request_id=?", (str(request_id),)).fetchone()
        return self._from_row(row) if row else None

    def open_for_org(self, org_id: str) -> Optional[OffboardingRequest]:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM offboarding_requests WHERE org_id=? AND stage NOT IN ('completed', 'cancelled')",
                (str(org_id),),
            ).fetchone()
        return self._from_row(row) if row else None

    def list_open(self) -> List[OffboardingRequest]:
        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM offboarding_requests WHERE stage NOT IN ('completed', 'cancelled') ORDER BY requested_at ASC"
            ).fetchall()
        return [self._from_row(r) for r in rows]

    def list_all(self) -> List[OffboardingRequest]:
        with self._session() as conn:
            rows = conn.execute("SELECT * FROM offboarding_requests ORDER BY requested_at ASC, rowid ASC").fetchall()
        return [self._from_row(r) for r in rows]
