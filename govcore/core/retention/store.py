from __future__ import annotations

import sqlite3
from typing import List, Optional

from govcore.core.retention.models import PolicyStatus, RetentionPolicy, RetentionSchedule, ScheduleStatus
from govcore.core.storage import SqliteStore

_POLICY_COLUMNS = (
    "policy_id",
    "tenant_id",
    "window",
    "applies_to",
    "effective_at",
    "legal_basis",
    "approved_by",
    "approved_at",
    "status",
    "retired_at",
)
_SCHEDULE_COLUMNS = (
    "schedule_id",
    "data_ref",
    "policy_id",
    "created_at",
    "due_at",
    "legal_hold_until",
    "legal_hold_reason",
    "status",
)


def _q(column: str) -> str:
    # "window" is an sqlite keyword
    return f'"{column}"'


def _insert_sql(table: str, columns: tuple) -> str:
    return f"INSERT INTO {table}({', '.join(_q(c) for c in columns)}) VALUES ({', '.join(':' + c for c in columns)})"


def _update_sql(table: str, columns: tuple, key: str) -> str:
    sets = ", ".join(f"{_q(c)}=:{c}" for c in columns if c != key)
    return f"UPDATE {table} SET {sets} WHERE {key}=:{key}"


class RetentionStore(SqliteStore):
    """
    Retention policies and per-record schedules (SQLite).
    At most one active policy per tenant (partial unique index).
    """

    def _init_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS retention_policies (
              policy_id TEXT PRIMARY KEY,
              tenant_id TEXT NOT NULL,
              "window" TEXT NOT NULL,
              applies_to TEXT NOT NULL,
              effective_at REAL,
              legal_basis TEXT,
              approved_by TEXT,
              approved_at REAL,
              status TEXT NOT NULL,
              retired_at REAL
            )
            """
        )
        conn.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS ux_retention_one_active ON retention_policies(tenant_id) WHERE status='active'"
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS retention_schedules (
              schedule_id TEXT PRIMARY KEY,
              data_ref TEXT NOT NULL,
              policy_id TEXT NOT NULL,
              created_at REAL,
              due_at REAL,
              legal_hold_until REAL,
              legal_hold_reason TEXT,
              status TEXT NOT NULL
            )
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_schedules_ref ON retention_schedules(data_ref)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_schedules_due ON retention_schedules(status, due_at)")

    @staticmethod
    def _policy(row: sqlite3.Row) -> RetentionPolicy:
        return RetentionPolicy.model_validate({k: row[k] for k in _POLICY_COLUMNS})

    @staticmethod
    def _schedule(row: sqlite3.Row) -> RetentionSchedule:
        return RetentionSchedule.model_validate({k: row[k] for k in _SCHEDULE_COLUMNS})

    # ---- policies ----
    def replace_active_policy(self, policy: RetentionPolicy, *, now: float) -> Optional[RetentionPolicy]:
        """
        Retire the tenant's active policy (if any) and insert `policy`, atomically.
        Returns the retired policy.
        """
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM retention_policies WHERE tenant_id=? AND status='active'", (policy.tenant_id,)
            ).fetchone()
            retired = None
            if row:
                retired = self._policy(row).model_copy(update={"status": PolicyStatus.retired, "retired_at": float(now)})
                conn.execute(_update_sql("retention_policies", _POLICY_COLUMNS, "policy_id"), retired.model_dump(mode="json"))
            conn.execute(_insert_sql("retention_policies", _POLICY_COLUMNS), policy.model_dump(mode="json"))
        return retired

    def get_policy(self, policy_id: str) -> Optional[RetentionPolicy]:
        with self._session() as conn:
            row = conn.execute("SELECT * FROM retention_policies WHERE policy_id=?", (str(policy_id),)).fetchone()
        return self._policy(row) if row else None

    def active_policy(self, tenant_id: str) -> Optional[RetentionPolicy]:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM retention_policies WHERE tenant_id=? AND status='active'", (str(tenant_id),)
            ).fetchone()
        return self._policy(row) if row else None

    def update_policy(self, policy: RetentionPolicy) -> None:
        with self._session() as conn:
            conn.execute(_update_sql("retention_policies", _POLICY_COLUMNS, "policy_id"), policy.model_dump(mode="json"))

    # ---- schedules ----
    def insert_schedule(self, schedule: RetentionSchedule) -> None:
        with self._session() as conn:
            conn.execute(_insert_sql("retention_schedules", _SCHEDULE_COLUMNS), schedule.model_dump(mode="json"))

    def update_schedule(self, schedule: RetentionSchedule) -> None:
        with self._session() as conn:
            conn.execute(_update_sql("retention_schedules", _SCHEDULE_COLUMNS, "schedule_id"), schedule.model_dump(mode="json"))

    def schedules_for_ref(self, data_ref: str) -> List[RetentionSchedule]:
        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM retention_schedules WHERE data_ref=? ORDER BY created_at ASC", (str(data_ref),)
            ).fetchall()
        return [self._schedule(r) for r in rows]

    def schedules_for_policy(self, policy_id: str) -> List[RetentionSchedule]:
        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM retention_schedules WHERE policy_id=? ORDER BY created_at ASC", (str(policy_id),)
            ).fetchall()
        return [self._schedule(r) for r in rows]

    def due_schedules(self, now: float) -> List[RetentionSchedule]:
        """
        Past-due schedules not yet marked for deletion. Indefinite schedules
        (no due date) never qualify.
        """
        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM retention_schedules WHERE status != ? AND due_at IS NOT NULL AND due_at <= ? ORDER BY due_at ASC",
                (ScheduleStatus.pending_deletion.value, float(now)),
            ).fetchall()
        return [self._schedule(r) for r in rows]

    def active_due_before(self, cutoff: float) -> List[RetentionSchedule]:
        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM retention_schedules WHERE status=? AND due_at IS NOT NULL AND due_at <= ? ORDER BY due_at ASC",
                (ScheduleStatus.active.value, float(cutoff)),
            ).fetchall()
        return [self._schedule(r) for r in rows]
