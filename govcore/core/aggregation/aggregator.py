from __future__ import annotations

import time
from typing import List, Optional, Sequence

from govcore.core.aggregation import kanon
from govcore.core.aggregation.constants import FRESHNESS_WINDOW_HOURS, SIGNAL_DELAY_SECONDS
from govcore.core.aggregation.models import (
    AggregatedUnitMetrics,
    DrillDownDecision,
    DrillDownKind,
    ExportBundle,
    ExportDecision,
    ExportIntegrity,
    ExportRecord,
    ExportRequest,
    FilteredViewDecision,
    FilteredViewRequest,
    RawUnitSignals,
)
from govcore.core.aggregation.watermark import ExportRegistry, content_hash, make_watermark, new_export_id
from govcore.core.errors import ConfigError, NotFoundError
from govcore.core.ledger import Actor, AuditEventType, Ledger
from govcore.core.logger import get_logger


class Aggregator:
    """
    Gated aggregate reads. Every entry point applies the signal delay first, then
    re-checks the k-anonymity floor on whatever set of signals survives.
    """

    def __init__(
        self,
        *,
        ledger: Optional[Ledger] = None,
        signal_delay_seconds: int = SIGNAL_DELAY_SECONDS,
        freshness_window_hours: int = FRESHNESS_WINDOW_HOURS,
        exports: Optional[ExportRegistry] = None,
    ):
        if int(signal_delay_seconds) < SIGNAL_DELAY_SECONDS:
            raise ConfigError("Signal delay cannot be lowered below the floor.", signal_delay_seconds=int(signal_delay_seconds))
        self.ledger = ledger
        self.signal_delay_seconds = int(signal_delay_seconds)
        self.freshness_window_hours = int(freshness_window_hours)
        self.exports = exports
        self.log = get_logger("aggregation")

    def _eligible(self, unit: RawUnitSignals, now: float) -> RawUnitSignals:
        return RawUnitSignals(
            unit_id=unit.unit_id,
            unit_name=unit.unit_name,
            signals=kanon.apply_delay(unit.signals, self.signal_delay_seconds, now=now),
        )

    def _eligible_all(self, units: Sequence[RawUnitSignals], now: float) -> List[RawUnitSignals]:
        return [self._eligible(u, now) for u in units]

    def apply_delay(self, unit: RawUnitSignals, now: Optional[float] = None) -> RawUnitSignals:
        return self._eligible(unit, time.time() if now is None else float(now))

    def compute_metrics(self, unit: RawUnitSignals, now: Optional[float] = None) -> AggregatedUnitMetrics:
        ts = time.time() if now is None else float(now)
        return kanon.compute_metrics(self._eligible(unit, ts), now=ts, freshness_window_hours=self.freshness_window_hours)

    def compute_all(self, units: Sequence[RawUnitSignals], now: Optional[float] = None) -> List[AggregatedUnitMetrics]:
        ts = time.time() if now is None else float(now)
        return [self.compute_metrics(u, now=ts) for u in units]

    def validate_filtered_view(
        self, all_signals: Sequence[RawUnitSignals], view: FilteredViewRequest, now: Optional[float] = None
    ) -> FilteredViewDecision:
        ts = time.time() if now is None else float(now)
        decision = kanon.validate_filtered_view(self._eligible_all(all_signals, ts), view)
        if not decision.allowed:
            self.log.info("Filtered view denied (count=%s)", decision.resulting_count)
        return decision

    def validate_export(
        self, all_signals: Sequence[RawUnitSignals], request: ExportRequest, now: Optional[float] = None
    ) -> ExportDecision:
        ts = time.time() if now is None else float(now)
        return kanon.validate_export(self._eligible_all(all_signals, ts), request)

    def validate_drill_down(self, unit: RawUnitSignals, kind: DrillDownKind, now: Optional[float] = None) -> DrillDownDecision:
        ts = time.time() if now is None else float(now)
        return kanon.validate_drill_down(self._eligible(unit, ts), kind)

    def build_export(
        self,
        all_signals: Sequence[RawUnitSignals],
        request: ExportRequest,
        *,
        actor: Optional[Actor] = None,
        org_name: str = "",
        expires_in_days: Optional[int] = None,
        now: Optional[float] = None,
    ) -> ExportBundle:
        """
        One metrics object per requested unit. Units that fail the floor (or are
        unknown) are present only as the suppressed sentinel. The bundle is
        watermarked, and logged in the export registry when one is attached.
        """
        ts = time.time() if now is None else float(now)
        who = actor or Actor.system("aggregator")
        eligible = {u.unit_id: u for u in self._eligible_all(all_signals, ts)}
        decision = kanon.validate_export(list(eligible.values()), request)
        blocked = set(decision.blocked_units)

        units: List[AggregatedUnitMetrics] = []
        for unit_id in request.include_units:
            unit = eligible.get(unit_id)
            if unit is None or unit_id in blocked:
                units.append(kanon.suppressed(unit_id, unit.unit_name if unit is not None else ""))
                continue
            in_range = RawUnitSignals(
                unit_id=unit.unit_id,
                unit_name=unit.unit_name,
                signals=[s for s in unit.signals if request.date_range is None or request.date_range.contains(s.timestamp)],
            )
            units.append(kanon.compute_metrics(in_range, now=ts, freshness_window_hours=self.freshness_window_hours))

        watermark = make_watermark(
            units=units,
            blocked_units=decision.blocked_units,
            exported_by=who.ref,
            export_date=ts,
            org_name=org_name,
        )
        export_id = new_export_id() if self.exports is not None else None

        audit_sequence: Optional[int] = None
        if self.ledger is not None:
            entry = self.ledger.append(
                AuditEventType.data_export,
                who,
                "aggregate export built",
                target_ref=export_id,
                scope=watermark.scope,
                metadata={
                    "format": request.format.value,
                    "requested_units": len(request.include_units),
                    "blocked_units": len(decision.blocked_units),
                    "integrity_hash": watermark.integrity_hash,
                },
                now=ts,
            )
            audit_sequence = entry.sequence

        if self.exports is not None and export_id is not None:
            self.exports.insert(
                ExportRecord(
                    export_id=export_id,
                    format=request.format,
                    watermark=watermark,
                    created_at=ts,
                    expires_at=(ts + int(expires_in_days) * 86400) if expires_in_days else None,
                    audit_sequence=audit_sequence,
                )
            )

        return ExportBundle(
            format=request.format,
            generated_at=ts,
            delay_notice=kanon.delay_notice(self.signal_delay_seconds),
            units=units,
            blocked_units=list(decision.blocked_units),
            audit_sequence=audit_sequence,
            watermark=watermark,
            export_id=export_id,
        )

    def _registry(self) -> ExportRegistry:
        if self.exports is None:
            raise ConfigError("No export registry attached.")
        return self.exports

    def record_export_access(self, export_id: str, *, actor: Optional[Actor] = None, now: Optional[float] = None) -> ExportRecord:
        registry = self._registry()
        if registry.get(export_id) is None:
            raise NotFoundError("Export not found.", export_id=str(export_id))
        if self.ledger is not None:
            self.ledger.append(
                AuditEventType.data_access,
                actor or Actor.system("aggregator"),
                "Watermarked export accessed",
                target_ref=str(export_id),
                now=now,
            )
        rec = registry.increment_access(export_id)
        if rec is None:
            raise NotFoundError("Export not found.", export_id=str(export_id))
        return rec

    def verify_export_integrity(self, export_id: str, bundle: ExportBundle) -> ExportIntegrity:
        """
        Recomputes the content hash of `bundle` and compares it with the hash
        issued for `export_id`. An unknown export is never valid.
        """
        computed = content_hash(bundle.units, bundle.blocked_units)
        rec = self._registry().get(export_id)
        if rec is None:
            return ExportIntegrity(is_valid=False, stored_hash="not_found", computed_hash=computed)
        stored = rec.watermark.integrity_hash
        if stored != computed:
            self.log.warning("Export %s failed integrity check", export_id)
        return ExportIntegrity(is_valid=stored == computed, stored_hash=stored, computed_hash=computed)
