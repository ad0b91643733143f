from __future__ import annotations

import hashlib
import math
import time
from typing import Iterable, Optional

from govcore.core.consent import ConsentLedger
from govcore.core.errors import NotFoundError, ValidationError
from govcore.core.ledger import Actor, ActorType, AuditEventType, Ledger
from govcore.core.ledger.hasher import canonical_json
from govcore.core.logger import get_logger
from govcore.core.offboarding.models import (
    DAY_SECONDS,
    DEFAULT_DELETION_DELAY_DAYS,
    DEFAULT_EXPORT_WINDOW_DAYS,
    EXPORT_WINDOW_OPENS_AFTER_SECONDS,
    FREEZE_AFTER_SECONDS,
    VALID_TRANSITIONS,
    DeletionOutcome,
    OffboardingRequest,
    OffboardingStage,
    OffboardingStatus,
    StageChange,
    TimelineResult,
)
from govcore.core.offboarding.store import OffboardingStore
from govcore.core.separation import IdentityVault
from govcore.core.sweeps import SingleFlight

_SYSTEM = "system"


def _actor(ref: str) -> Actor:
    if ref == _SYSTEM:
        return Actor.system("offboarding")
    return Actor(type=ActorType.org_admin, ref=str(ref))


class OffboardingManager:
    """
    Staged organisation offboarding:

        initiated -> data_frozen -> export_window -> deletion_scheduled
                  -> deletion_in_progress -> completed

    Any stage before deletion_in_progress may be cancelled. Every transition is
    ledgered before the request is stored. The final stage revokes the
    subjects' consents and deletes their identities and patterns through the
    vault.
    """

    def __init__(
        self,
        *,
        store: OffboardingStore,
        ledger: Ledger,
        vault: Optional[IdentityVault] = None,
        consent: Optional[ConsentLedger] = None,
        export_window_days: int = DEFAULT_EXPORT_WINDOW_DAYS,
        deletion_delay_days: int = DEFAULT_DELETION_DELAY_DAYS,
    ):
        self.store = store
        self.ledger = ledger
        self.vault = vault
        self.consent = consent
        self.export_window_days = int(export_window_days)
        self.deletion_delay_days = int(deletion_delay_days)
        self.log = get_logger("offboarding")
        self._flight = SingleFlight("offboarding")

    def _get(self, request_id: str) -> OffboardingRequest:
        req = self.store.get(request_id)
        if req is None:
            raise NotFoundError("Offboarding request not found.", request_id=str(request_id))
        return req

    # ---- requests ----
    def initiate(
        self, org_id: str, requested_by: str, *, subject_ids: Iterable[str] = (), now: Optional[float] = None
    ) -> OffboardingRequest:
        ts = time.time() if now is None else float(now)
        if self.store.open_for_org(org_id) is not None:
            raise ValidationError("An offboarding request is already open for this organisation.", org_id=str(org_id))
        window_ends = ts + self.export_window_days * DAY_SECONDS
        req = OffboardingRequest(
            org_id=str(org_id),
            requested_by=str(requested_by),
            requested_at=ts,
            stage_history=[StageChange(stage=OffboardingStage.initiated, timestamp=ts, actor=str(requested_by))],
            subject_ids=[str(s) for s in subject_ids],
            export_window_ends_at=window_ends,
            scheduled_deletion_at=window_ends + self.deletion_delay_days * DAY_SECONDS,
        )
        entry = self.ledger.append(
            AuditEventType.offboarding_initiated,
            _actor(requested_by),
            "Account offboarding initiated",
            target_ref=req.request_id,
            scope=req.org_id,
            metadata={
                "export_window_ends_at": req.export_window_ends_at,
                "scheduled_deletion_at": req.scheduled_deletion_at,
                "subjects": len(req.subject_ids),
            },
            now=ts,
        )
        req = req.model_copy(update={"audit_ref": entry.sequence})
        self.store.insert(req)
        self.log.info("Offboarding %s initiated for org %s", req.request_id, req.org_id)
        return req

    def advance(
        self,
        request_id: str,
        new_stage: OffboardingStage,
        actor: str,
        *,
        reason: Optional[str] = None,
        now: Optional[float] = None,
    ) -> OffboardingRequest:
        ts = time.time() if now is None else float(now)
        req = self._get(request_id)
        target = OffboardingStage(new_stage)
        if target not in VALID_TRANSITIONS[req.stage]:
            raise ValidationError(
                "Invalid offboarding stage transition.", request_id=req.request_id, current=req.stage.value, requested=target.value
            )

        update = {
            "stage": target,
            "stage_history": [*req.stage_history, StageChange(stage=target, timestamp=ts, actor=str(actor))],
        }
        if target == OffboardingStage.completed:
            update["completed_at"] = ts
        if target == OffboardingStage.cancelled:
            update["cancel_reason"] = reason
        moved = req.model_copy(update=update)
        if target == OffboardingStage.completed:
            moved = moved.model_copy(update={"confirmation_artifact": self._confirmation(moved)})

        metadata = {"from": req.stage.value, "to": target.value}
        if reason:
            metadata["reason"] = str(reason)
        self.ledger.append(
            AuditEventType.offboarding_completed if target == OffboardingStage.completed else AuditEventType.admin_action,
            _actor(actor),
            f"Offboarding stage advanced: {target.value}",
            target_ref=req.request_id,
            scope=req.org_id,
            metadata=metadata,
            now=ts,
        )
        self.store.update(moved)
        return moved

    def cancel(self, request_id: str, cancelled_by: str, reason: str, *, now: Optional[float] = None) -> OffboardingRequest:
        return self.advance(request_id, OffboardingStage.cancelled, cancelled_by, reason=reason, now=now)

    @staticmethod
    def _confirmation(req: OffboardingRequest) -> str:
        digest = hashlib.sha256(canonical_json(req.model_dump(mode="json", exclude={"confirmation_artifact"})).encode("utf-8"))
        return f"offboard_confirm_{req.request_id}_{digest.hexdigest()[:16]}"

    def get(self, request_id: str) -> Optional[OffboardingRequest]:
        return self.store.get(request_id)

    def active_request(self, org_id: str) -> Optional[OffboardingRequest]:
        return self.store.open_for_org(org_id)

    def is_frozen(self, org_id: str) -> bool:
        """
        True from data_frozen until the request completes or is cancelled.
        """
        req = self.store.open_for_org(org_id)
        return req is not None and req.stage != OffboardingStage.initiated

    # ---- stage execution ----
    def execute_data_freeze(self, request_id: str, *, now: Optional[float] = None) -> bool:
        req = self._get(request_id)
        if req.stage != OffboardingStage.initiated:
            return False
        self.advance(request_id, OffboardingStage.data_frozen, _SYSTEM, now=now)
        return True

    def open_export_window(self, request_id: str, *, now: Optional[float] = None) -> bool:
        req = self._get(request_id)
        if req.stage != OffboardingStage.data_frozen:
            return False
        self.advance(request_id, OffboardingStage.export_window, _SYSTEM, now=now)
        return True

    def schedule_deletion(self, request_id: str, *, now: Optional[float] = None) -> bool:
        ts = time.time() if now is None else float(now)
        req = self._get(request_id)
        if req.stage != OffboardingStage.export_window or ts < req.export_window_ends_at:
            return False
        self.advance(request_id, OffboardingStage.deletion_scheduled, _SYSTEM, now=ts)
        return True

    def execute_deletion(self, request_id: str, *, now: Optional[float] = None) -> DeletionOutcome:
        """
        Revokes consents and deletes identities for every subject of the request.
        A vault failure leaves the request in deletion_in_progress so the next
        call (or timeline sweep) retries; deleting an already-deleted identity
        is a no-op.
        """
        ts = time.time() if now is None else float(now)
        req = self._get(request_id)
        if req.stage not in (OffboardingStage.deletion_scheduled, OffboardingStage.deletion_in_progress):
            return DeletionOutcome(success=False)
        if ts < req.scheduled_deletion_at:
            return DeletionOutcome(success=False)
        if req.stage == OffboardingStage.deletion_scheduled:
            req = self.advance(request_id, OffboardingStage.deletion_in_progress, _SYSTEM, now=ts)

        outcome = DeletionOutcome(success=True)
        for subject_id in req.subject_ids:
            if self.consent is not None:
                outcome.consents_revoked += self.consent.revoke_all(subject_id, now=ts)
            if self.vault is not None:
                result = self.vault.delete_identity(subject_id)
                if result.error:
                    outcome.errors.append(result.error)
                    continue
                outcome.identities_deleted += int(result.identity_deleted)
                outcome.patterns_deleted += result.patterns_deleted

        if outcome.errors:
            outcome.success = False
            self.log.error("Offboarding %s deletion incomplete: %s error(s)", req.request_id, len(outcome.errors))
            return outcome
        self.advance(request_id, OffboardingStage.completed, _SYSTEM, now=ts)
        return outcome

    # ---- status / timeline ----
    def status(self, request_id: str, *, now: Optional[float] = None) -> OffboardingStatus:
        ts = time.time() if now is None else float(now)
        req = self.store.get(request_id)
        if req is None:
            return OffboardingStatus()
        last_change = req.stage_history[-1].timestamp if req.stage_history else req.requested_at
        out = OffboardingStatus(
            request=req,
            current_stage=req.stage,
            days_in_current_stage=int(max(0.0, ts - last_change) // DAY_SECONDS),
        )
        if req.export_window_ends_at > ts:
            out.export_window_remaining_days = math.ceil((req.export_window_ends_at - ts) / DAY_SECONDS)
        if req.scheduled_deletion_at > ts:
            out.deletion_scheduled_in_days = math.ceil((req.scheduled_deletion_at - ts) / DAY_SECONDS)
        return out

    def process_timeline(self, *, now: Optional[float] = None) -> TimelineResult:
        """
        Moves every open request along its timeline: freeze 24h after
        initiation, open the export window 48h after the freeze, schedule
        deletion when the window closes, delete when the deletion date passes.
        Raises SweepInProgressError if another timeline sweep is running.
        """
        ts = time.time() if now is None else float(now)
        result = TimelineResult()
        with self._flight.guard():
            for req in self.store.list_open():
                result.processed += 1
                if req.stage == OffboardingStage.initiated:
                    if ts >= req.requested_at + FREEZE_AFTER_SECONDS and self.execute_data_freeze(req.request_id, now=ts):
                        result.frozen += 1
                elif req.stage == OffboardingStage.data_frozen:
                    frozen_at = req.entered_at(OffboardingStage.data_frozen) or req.requested_at
                    if ts >= frozen_at + EXPORT_WINDOW_OPENS_AFTER_SECONDS and self.open_export_window(req.request_id, now=ts):
                        result.windows_opened += 1
                elif req.stage == OffboardingStage.export_window:
                    if self.schedule_deletion(req.request_id, now=ts):
                        result.deletions_scheduled += 1
                elif req.stage in (OffboardingStage.deletion_scheduled, OffboardingStage.deletion_in_progress):
                    if self.execute_deletion(req.request_id, now=ts).success:
                        result.deletions_completed += 1
        self.log.info(
            "Offboarding timeline: processed=%s frozen=%s windows_opened=%s deletions_scheduled=%s deletions_completed=%s",
            result.processed,
            result.frozen,
            result.windows_opened,
            result.deletions_scheduled,
            result.deletions_completed,
        )
        return result
