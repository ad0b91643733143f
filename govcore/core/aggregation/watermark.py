from __future__ import annotations

"""
Export watermarking and the export access log.

Every aggregate export carries a watermark (who, when, what scope, how many
visible units, a sha256 over the exported content). Exports are recorded in
SQLite so later access can be counted and the content checked against the hash
that was issued.
"""

import hashlib
import json
import sqlite3
import uuid
from typing import Any, Dict, List, Optional, Sequence

from govcore.core.aggregation.models import AggregatedUnitMetrics, ExportFormat, ExportRecord, ExportWatermark
from govcore.core.ledger.hasher import canonical_json
from govcore.core.storage import SqliteStore

EXPORT_DISCLAIMER = (
    "NON-DIAGNOSTIC | READ-ONLY | This export contains self-reported capacity data "
    "and does not constitute clinical evaluation or diagnosis."
)

_COLUMNS = ("export_id", "format", "watermark_json", "created_at", "expires_at", "access_count", "audit_sequence")


def new_export_id() -> str:
    return "export_" + uuid.uuid4().hex


def content_hash(units: Sequence[AggregatedUnitMetrics], blocked_units: Sequence[str]) -> str:
    doc: Dict[str, Any] = {
        "units": [u.model_dump(mode="json") for u in units],
        "blocked_units": list(blocked_units),
    }
    return hashlib.sha256(canonical_json(doc).encode("utf-8")).hexdigest()


def make_watermark(
    *,
    units: Sequence[AggregatedUnitMetrics],
    blocked_units: Sequence[str],
    exported_by: str,
    export_date: float,
    org_name: str = "",
    scope: str = "aggregate",
) -> ExportWatermark:
    return ExportWatermark(
        org_name=org_name,
        export_date=float(export_date),
        scope=scope,
        record_count=sum(1 for u in units if not u.is_suppressed),
        disclaimer=EXPORT_DISCLAIMER,
        exported_by=exported_by,
        integrity_hash=content_hash(units, blocked_units),
    )


class ExportRegistry(SqliteStore):
    """
    Issued exports (SQLite). Rows are never rewritten except for the access count.
    """

    def _init_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS watermarked_exports (
              export_id TEXT PRIMARY KEY,
              format TEXT NOT NULL,
              watermark_json TEXT NOT NULL,
              created_at REAL NOT NULL,
              expires_at REAL,
              access_count INTEGER NOT NULL DEFAULT 0,
              audit_sequence INTEGER
            )
            """
        )

    @staticmethod
    def _from_row(row: sqlite3.Row) -> ExportRecord:
        return ExportRecord(
            export_id=str(row["export_id"]),
            format=ExportFormat(str(row["format"])),
            watermark=ExportWatermark.model_validate(json.loads(row["watermark_json"])),
            created_at=float(row["created_at"]),
            expires_at=row["expires_at"],
            access_count=int(row["access_count"] or 0),
            audit_sequence=row["audit_sequence"],
        )

    def insert(self, rec: ExportRecord) -> None:
        params = {
            "export_id": rec.export_id,
            "format": rec.format.value,
            "watermark_json": json.dumps(rec.watermark.model_dump(mode="json"), sort_keys=True),
            "created_at": rec.created_at,
            "expires_at": rec.expires_at,
            "access_count": rec.access_count,
            "audit_sequence": rec.audit_sequence,
        }
        with self._session() as conn:
            conn.execute(
                f"INSERT INTO watermarked_exports({', '.join(_COLUMNS)}) VALUES ({', '.join(':' + c for c in _COLUMNS)})",
                params,
            )

    def get(self, export_id: str) -> Optional[ExportRecord]:
        with self._session() as conn:
            row = conn.execute("SELECT * FROM watermarked_exports WHERE export_id=?", (str(export_id),)).fetchone()
        return self._from_row(row) if row else None

    def increment_access(self, export_id: str) -> Optional[ExportRecord]:
        with self._session() as conn:
            n = conn.execute(
                "UPDATE watermarked_exports SET access_count = access_count + 1 WHERE export_id=?", (str(export_id),)
            ).rowcount
            row = conn.execute("SELECT * FROM watermarked_exports WHERE export_id=?", (str(export_id),)).fetchone() if n else None
        return self._from_row(row) if row else None

    def recent(self, limit: int = 100) -> List[ExportRecord]:
        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM watermarked_exports ORDER BY created_at DESC, rowid DESC LIMIT ?", (max(0, int(limit)),)
            ).fetchall()
        return [self._from_row(r) for r in rows]
