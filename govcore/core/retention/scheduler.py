from __future__ import annotations

import time
from typing import Callable, List, Optional

from govcore.core.errors import NotFoundError, StoreError, ValidationError
from govcore.core.ledger import Actor, ActorType, AuditEventType, Ledger
from govcore.core.logger import get_logger
from govcore.core.retention.models import (
    WINDOW_SECONDS,
    AppliesTo,
    PolicyStatus,
    RetentionPolicy,
    RetentionSchedule,
    RetentionSummary,
    RetentionWindow,
    ScheduleStatus,
    SweepResult,
)
from govcore.core.retention.store import RetentionStore
from govcore.core.separation import IdentityVault, RetentionClass
from govcore.core.sweeps import SingleFlight

_SYSTEM = Actor.system("retention_scheduler")


class RetentionScheduler:
    """
    Retention policies, per-record schedules, legal holds and the deletion sweep.

    The sweep is audit-gated: a "sweep started" ledger entry must be written
    before any schedule changes state. Each deletion is ledgered, then purged,
    and only then is the schedule marked pending_deletion. If the ledger is
    unwritable the sweep aborts (AuditWriteError) with nothing deleted.
    """

    def __init__(
        self,
        *,
        store: RetentionStore,
        ledger: Ledger,
        vault: Optional[IdentityVault] = None,
        purge: Optional[Callable[[str], bool]] = None,
    ):
        self.store = store
        self.ledger = ledger
        self.vault = vault
        if purge is None and vault is not None:
            purge = vault.delete_pattern
        self._purge = purge
        self.log = get_logger("retention")
        self._flight = SingleFlight("retention")

    def _set_pattern_class(self, data_ref: str, cls: RetentionClass) -> None:
        if self.vault is not None:
            self.vault.update_pattern_retention_class(data_ref, cls)

    # ---- policies ----
    def create_policy(
        self,
        tenant_id: str,
        window: RetentionWindow,
        approved_by: str,
        *,
        applies_to: AppliesTo = AppliesTo.all_data,
        legal_basis: Optional[str] = None,
        now: Optional[float] = None,
    ) -> RetentionPolicy:
        ts = time.time() if now is None else float(now)
        policy = RetentionPolicy(
            tenant_id=str(tenant_id),
            window=RetentionWindow(window),
            applies_to=AppliesTo(applies_to),
            effective_at=ts,
            legal_basis=legal_basis,
            approved_by=str(approved_by),
            approved_at=ts,
        )
        self.ledger.append(
            AuditEventType.config_change,
            Actor(type=ActorType.org_admin, ref=str(approved_by)),
            f"Retention policy created: {policy.window.value} for {policy.applies_to.value}",
            target_ref=policy.policy_id,
            scope=policy.tenant_id,
            metadata={"window": policy.window.value, "applies_to": policy.applies_to.value},
            now=ts,
        )
        retired = self.store.replace_active_policy(policy, now=ts)
        if retired is not None:
            self.log.info("Retired retention policy %s for tenant %s", retired.policy_id, policy.tenant_id)
        return policy

    def update_policy(
        self,
        policy_id: str,
        *,
        updated_by: str,
        window: Optional[RetentionWindow] = None,
        legal_basis: Optional[str] = None,
        now: Optional[float] = None,
    ) -> RetentionPolicy:
        """
        Changes apply to schedules created afterwards; existing due dates stand.
        """
        ts = time.time() if now is None else float(now)
        old = self.store.get_policy(policy_id)
        if old is None:
            raise NotFoundError("Retention policy not found.", policy_id=str(policy_id))
        if old.status != PolicyStatus.active:
            raise ValidationError("Retired retention policies cannot be updated.", policy_id=old.policy_id)
        new = old.model_copy(
            update={
                "window": RetentionWindow(window) if window is not None else old.window,
                "legal_basis": legal_basis if legal_basis is not None else old.legal_basis,
                "approved_by": str(updated_by),
                "approved_at": ts,
            }
        )
        self.ledger.append(
            AuditEventType.config_change,
            Actor(type=ActorType.org_admin, ref=str(updated_by)),
            f"Retention policy updated: {old.window.value} -> {new.window.value}",
            target_ref=new.policy_id,
            scope=new.tenant_id,
            now=ts,
        )
        self.store.update_policy(new)
        return new

    def active_policy(self, tenant_id: str) -> Optional[RetentionPolicy]:
        return self.store.active_policy(tenant_id)

    def summary(self, tenant_id: str) -> RetentionSummary:
        policy = self.store.active_policy(tenant_id)
        if policy is None:
            return RetentionSummary()
        schedules = self.store.schedules_for_policy(policy.policy_id)
        return RetentionSummary(
            policy=policy,
            total_scheduled=len(schedules),
            active_records=sum(1 for s in schedules if s.status == ScheduleStatus.active),
            pending_deletion=sum(1 for s in schedules if s.status == ScheduleStatus.pending_deletion),
            legal_holds=sum(1 for s in schedules if s.status == ScheduleStatus.legally_held),
        )

    # ---- schedules ----
    def create_schedule(self, data_ref: str, policy_id: str, *, now: Optional[float] = None) -> RetentionSchedule:
        ts = time.time() if now is None else float(now)
        policy = self.store.get_policy(policy_id)
        if policy is None:
            raise NotFoundError("Retention policy not found.", policy_id=str(policy_id))
        window_s = WINDOW_SECONDS[policy.window]
        schedule = RetentionSchedule(
            data_ref=str(data_ref),
            policy_id=policy.policy_id,
            created_at=ts,
            due_at=(ts + window_s) if window_s is not None else None,
        )
        self.ledger.append(
            AuditEventType.retention_applied,
            _SYSTEM,
            f"Retention schedule created: {policy.window.value}",
            target_ref=schedule.data_ref,
            metadata={"policy_id": policy.policy_id, "window": policy.window.value},
            now=ts,
        )
        self.store.insert_schedule(schedule)
        return schedule

    def apply_legal_hold(
        self, data_ref: str, hold_until: float, reason: str, applied_by: str, *, now: Optional[float] = None
    ) -> List[RetentionSchedule]:
        """
        Holds every schedule for `data_ref`. Returns the held schedules (empty if
        the reference has no schedule).
        """
        ts = time.time() if now is None else float(now)
        if float(hold_until) <= ts:
            raise ValidationError("Legal hold must end in the future.", hold_until=float(hold_until))
        schedules = [s for s in self.store.schedules_for_ref(data_ref) if s.status != ScheduleStatus.pending_deletion]
        if not schedules:
            return []
        self.ledger.append(
            AuditEventType.legal_hold,
            Actor(type=ActorType.admin, ref=str(applied_by)),
            f"Legal hold applied: {reason}",
            target_ref=str(data_ref),
            metadata={"hold_until": float(hold_until), "reason": str(reason)},
            now=ts,
        )
        held: List[RetentionSchedule] = []
        for s in schedules:
            h = s.model_copy(update={"legal_hold_until": float(hold_until), "legal_hold_reason": str(reason), "status": ScheduleStatus.legally_held})
            self.store.update_schedule(h)
            held.append(h)
        self._set_pattern_class(str(data_ref), RetentionClass.legally_held)
        return held

    def release_legal_hold(self, data_ref: str, released_by: str, *, now: Optional[float] = None) -> List[RetentionSchedule]:
        ts = time.time() if now is None else float(now)
        schedules = [s for s in self.store.schedules_for_ref(data_ref) if s.status == ScheduleStatus.legally_held]
        if not schedules:
            return []
        self.ledger.append(
            AuditEventType.legal_hold,
            Actor(type=ActorType.admin, ref=str(released_by)),
            "Legal hold released",
            target_ref=str(data_ref),
            now=ts,
        )
        released: List[RetentionSchedule] = []
        for s in schedules:
            r = s.model_copy(update={"legal_hold_until": None, "legal_hold_reason": None, "status": ScheduleStatus.active})
            self.store.update_schedule(r)
            released.append(r)
        self._set_pattern_class(str(data_ref), RetentionClass.active)
        return released

    # ---- sweep ----
    def process_scheduled_deletions(self, *, now: Optional[float] = None) -> SweepResult:
        ts = time.time() if now is None else float(now)
        with self._flight.guard():
            due = self.store.due_schedules(ts)
            # Raises AuditWriteError before anything has changed.
            self.ledger.append(
                AuditEventType.retention_applied,
                _SYSTEM,
                "Retention sweep started",
                metadata={"due": len(due)},
                now=ts,
            )

            result = SweepResult()
            for s in due:
                result.processed += 1
                if s.is_held(ts):
                    result.held_back += 1
                    continue
                self.ledger.append(
                    AuditEventType.data_delete,
                    _SYSTEM,
                    "Scheduled deletion",
                    target_ref=s.data_ref,
                    metadata={"schedule_id": s.schedule_id, "policy_id": s.policy_id},
                    now=ts,
                )
                self._set_pattern_class(s.data_ref, RetentionClass.pending_deletion)
                # The schedule stays active until the purge succeeds, so a failed
                # purge is retried by the next sweep.
                purged = True
                if self._purge is not None:
                    try:
                        purged = bool(self._purge(s.data_ref))
                    except StoreError as e:
                        result.failed += 1
                        self.log.error("Purge failed for schedule %s: %s", s.schedule_id, e.context.get("error"))
                        self.ledger.append(
                            AuditEventType.data_delete,
                            _SYSTEM,
                            "Scheduled deletion failed; will retry",
                            target_ref=s.data_ref,
                            metadata={"schedule_id": s.schedule_id, "error": str(e.code)},
                            now=ts,
                        )
                        continue
                self.store.update_schedule(s.model_copy(update={"status": ScheduleStatus.pending_deletion}))
                if purged:
                    result.deleted += 1
                else:
                    self.log.info("Schedule %s had no data left to purge", s.schedule_id)

            self.ledger.append(
                AuditEventType.retention_applied,
                _SYSTEM,
                "Scheduled deletions processed",
                metadata={"processed": result.processed, "deleted": result.deleted, "held_back": result.held_back, "failed": result.failed},
                now=ts,
            )
        self.log.info(
            "Retention sweep: processed=%s deleted=%s held_back=%s failed=%s", result.processed, result.deleted, result.held_back, result.failed
        )
        return result

    def get_upcoming_deletions(self, within_days: int = 30, *, now: Optional[float] = None) -> List[RetentionSchedule]:
        ts = time.time() if now is None else float(now)
        cutoff = ts + int(within_days) * 86400
        return [
            s
            for s in self.store.active_due_before(cutoff)
            if s.legal_hold_until is None or (s.due_at is not None and s.legal_hold_until < s.due_at)
        ]
