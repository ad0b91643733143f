from __future__ import annotations

import time
from typing import List, Optional

from govcore.core.consent.models import (
    DEFAULT_REVIEW_INTERVAL_DAYS,
    REQUIRED_CONSENTS,
    ConsentCheck,
    ConsentRecord,
    ConsentScope,
    ConsentStatus,
)
from govcore.core.consent.store import ConsentStore
from govcore.core.errors import GovernanceError, NotFoundError, ValidationError
from govcore.core.ledger import Actor, ActorType, AuditEntry, AuditEventType, Ledger
from govcore.core.logger import get_logger
from govcore.core.sweeps import SingleFlight


class ConsentLedger:
    """
    Consent lifecycle per (subject, scope): grant, modify, revoke, expire.

    Every transition is written to the governance ledger before the store is
    touched, so a failed audit write aborts the change.
    """

    def __init__(self, *, store: ConsentStore, ledger: Ledger, review_interval_days: int = DEFAULT_REVIEW_INTERVAL_DAYS):
        self.store = store
        self.ledger = ledger
        self.review_interval_days = int(review_interval_days)
        self.log = get_logger("consent")
        self._expiry_flight = SingleFlight("consent_expiry")

    @staticmethod
    def _subject_actor(subject_id: str) -> Actor:
        return Actor(type=ActorType.user, ref=str(subject_id)[:128])

    def _record(self, event_type: AuditEventType, rec: ConsentRecord, action: str, *, actor: Actor, now: float) -> AuditEntry:
        return self.ledger.append(
            event_type,
            actor,
            action,
            target_ref=rec.consent_id,
            scope=rec.scope.value,
            metadata={"consent_id": rec.consent_id, "version": rec.version},
            now=now,
        )

    def _owned(self, subject_id: str, consent_id: str) -> ConsentRecord:
        rec = self.store.get(consent_id)
        if rec is None or rec.subject_id != str(subject_id):
            raise NotFoundError("Consent record not found.", consent_id=str(consent_id))
        return rec

    # ---- transitions ----
    def grant(
        self,
        subject_id: str,
        scope: ConsentScope,
        *,
        expires_at: Optional[float] = None,
        conditions: Optional[str] = None,
        now: Optional[float] = None,
    ) -> ConsentRecord:
        ts = time.time() if now is None else float(now)
        actor = self._subject_actor(subject_id)
        new = ConsentRecord(subject_id=str(subject_id), scope=ConsentScope(scope), granted_at=ts, expires_at=expires_at, conditions=conditions)

        prior = self.store.current_granted(subject_id, new.scope)
        if prior is not None:
            prior = prior.model_copy(update={"status": ConsentStatus.modified, "modified_at": ts, "superseded_by": new.consent_id})
            self._record(AuditEventType.consent_modified, prior, f"Consent superseded for scope: {new.scope.value}", actor=actor, now=ts)

        entry = self._record(AuditEventType.consent_granted, new, f"Consent granted for scope: {new.scope.value}", actor=actor, now=ts)
        new = new.model_copy(update={"audit_ref": entry.sequence})
        self.store.supersede(prior, new)
        self.log.info("Consent granted scope=%s seq=%s", new.scope.value, entry.sequence)
        return new

    def modify(
        self,
        subject_id: str,
        consent_id: str,
        *,
        expires_at: Optional[float] = None,
        conditions: Optional[str] = None,
        now: Optional[float] = None,
    ) -> ConsentRecord:
        """
        The existing record becomes `modified`; a new granted record carries the
        updated terms (unspecified terms are carried over).
        """
        ts = time.time() if now is None else float(now)
        actor = self._subject_actor(subject_id)
        existing = self._owned(subject_id, consent_id)
        if existing.status != ConsentStatus.granted:
            raise ValidationError("Only a granted consent can be modified.", consent_id=existing.consent_id, status=existing.status.value)

        new = ConsentRecord(
            subject_id=existing.subject_id,
            scope=existing.scope,
            granted_at=ts,
            expires_at=expires_at if expires_at is not None else existing.expires_at,
            conditions=conditions if conditions is not None else existing.conditions,
        )
        old = existing.model_copy(update={"status": ConsentStatus.modified, "modified_at": ts, "superseded_by": new.consent_id})
        self._record(AuditEventType.consent_modified, old, f"Consent modified for scope: {old.scope.value}", actor=actor, now=ts)
        entry = self._record(AuditEventType.consent_granted, new, f"Consent re-granted with new terms for scope: {new.scope.value}", actor=actor, now=ts)
        new = new.model_copy(update={"audit_ref": entry.sequence})
        self.store.supersede(old, new)
        return new

    def revoke(self, subject_id: str, consent_id: str, *, now: Optional[float] = None) -> ConsentRecord:
        ts = time.time() if now is None else float(now)
        existing = self._owned(subject_id, consent_id)
        if existing.status != ConsentStatus.granted:
            raise ValidationError("Only a granted consent can be revoked.", consent_id=existing.consent_id, status=existing.status.value)
        revoked = existing.model_copy(update={"status": ConsentStatus.revoked, "revoked_at": ts})
        self._record(AuditEventType.consent_revoked, revoked, f"Consent revoked for scope: {revoked.scope.value}", actor=self._subject_actor(subject_id), now=ts)
        self.store.update(revoked)
        return revoked

    def revoke_all(self, subject_id: str, *, now: Optional[float] = None) -> int:
        """
        Revokes every currently granted record; revoked/expired/modified records
        are left alone. Returns the number revoked.
        """
        ts = time.time() if now is None else float(now)
        actor = self._subject_actor(subject_id)
        revoked: List[ConsentRecord] = []
        for rec in self.store.list_for_subject(subject_id, status=ConsentStatus.granted):
            r = rec.model_copy(update={"status": ConsentStatus.revoked, "revoked_at": ts})
            self._record(AuditEventType.consent_revoked, r, f"Consent revoked for scope: {r.scope.value} (revoke all)", actor=actor, now=ts)
            revoked.append(r)
        if revoked:
            self.store.update_many(revoked)
        return len(revoked)

    def _expire(self, rec: ConsentRecord, now: float) -> ConsentRecord:
        expired = rec.model_copy(update={"status": ConsentStatus.expired, "expired_at": now})
        self._record(AuditEventType.consent_expired, expired, f"Consent expired for scope: {expired.scope.value}", actor=Actor.system("consent_expiry"), now=now)
        self.store.update(expired)
        return expired

    # ---- queries ----
    def check_status(self, subject_id: str, scope: ConsentScope, *, now: Optional[float] = None) -> ConsentCheck:
        """
        Expiry is applied lazily. Any store/ledger failure answers "not granted"
        with degraded=True rather than raising.
        """
        ts = time.time() if now is None else float(now)
        try:
            rec = self.store.current_granted(subject_id, scope)
            if rec is None:
                return ConsentCheck(has_consent=False)
            if rec.is_past_expiry(ts):
                return ConsentCheck(has_consent=False, is_expired=True, consent=self._expire(rec, ts))
            return ConsentCheck(has_consent=True, consent=rec)
        except GovernanceError as e:
            self.log.warning("Consent check degraded (%s); treating as not granted", e.code)
            return ConsentCheck(has_consent=False, degraded=True)

    def active_consents(self, subject_id: str, *, now: Optional[float] = None) -> List[ConsentRecord]:
        ts = time.time() if now is None else float(now)
        return [r for r in self.store.list_for_subject(subject_id, status=ConsentStatus.granted) if not r.is_past_expiry(ts)]

    def history(self, subject_id: str) -> List[ConsentRecord]:
        return self.store.list_for_subject(subject_id)

    def has_required_consents(self, subject_id: str, *, now: Optional[float] = None) -> bool:
        return all(self.check_status(subject_id, scope, now=now).has_consent for scope in REQUIRED_CONSENTS)

    def review_due(self, subject_id: str, *, now: Optional[float] = None) -> bool:
        """
        True once the newest granted record is older than the review interval.
        Subjects with nothing granted have nothing to review.
        """
        ts = time.time() if now is None else float(now)
        granted = self.store.list_for_subject(subject_id, status=ConsentStatus.granted)
        if not granted:
            return False
        last_reviewed = max(r.granted_at for r in granted)
        return ts >= last_reviewed + self.review_interval_days * 86400

    # ---- sweep ----
    def process_expired(self, *, now: Optional[float] = None) -> int:
        """
        Granted records past expiry -> expired. Records are never deleted here.
        Raises SweepInProgressError if another expiry sweep is running.
        """
        ts = time.time() if now is None else float(now)
        with self._expiry_flight.guard():
            count = 0
            for rec in self.store.granted_past_expiry(ts):
                self._expire(rec, ts)
                count += 1
        if count:
            self.log.info("Consent expiry sweep expired %s record(s)", count)
        return count
