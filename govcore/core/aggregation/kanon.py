from __future__ import annotations

"""
Pure k-anonymity computations.

Functions here take `now` explicitly; only apply_delay falls back to the clock.
`govcore.core.aggregation.aggregator.Aggregator` is the gated entry point used
by the rest of the system.
"""

import time
from typing import Iterable, List, Optional, Sequence, Tuple

from govcore.core.aggregation.constants import (
    FRESHNESS_WINDOW_HOURS,
    K_ANONYMITY_THRESHOLD,
    SIGNAL_DELAY_SECONDS,
    STALE_MULTIPLIER,
    VELOCITY_DELTA_POINTS,
    VELOCITY_WINDOW_SECONDS,
)
from govcore.core.aggregation.models import (
    AggregatedUnitMetrics,
    DateRange,
    DrillDownDecision,
    DrillDownKind,
    ExportDecision,
    ExportRequest,
    FilteredViewDecision,
    FilteredViewRequest,
    Freshness,
    RawSignal,
    RawUnitSignals,
    SignalState,
    SuppressedUnitMetrics,
    TrendDirection,
    VelocityBasis,
    VisibleUnitMetrics,
)


def meets_k_anonymity(count: int) -> bool:
    return int(count) >= K_ANONYMITY_THRESHOLD


def percent_of(signals: Sequence[RawSignal], state: SignalState) -> int:
    """
    Integer percentage, rounded half up.
    """
    n = len(signals)
    if n == 0:
        return 0
    hits = sum(1 for s in signals if s.state == state)
    return (200 * hits + n) // (2 * n)


def compute_load(signals: Sequence[RawSignal]) -> int:
    return percent_of(signals, SignalState.resourced)


def compute_risk(signals: Sequence[RawSignal]) -> int:
    return percent_of(signals, SignalState.depleted)


def compute_velocity(signals: Sequence[RawSignal], *, now: float) -> Tuple[TrendDirection, VelocityBasis]:
    recent_start = now - VELOCITY_WINDOW_SECONDS
    previous_start = now - 2 * VELOCITY_WINDOW_SECONDS
    recent = [s for s in signals if recent_start < s.timestamp <= now]
    previous = [s for s in signals if previous_start < s.timestamp <= recent_start]
    if not meets_k_anonymity(len(recent)) or not meets_k_anonymity(len(previous)):
        return TrendDirection.stable, VelocityBasis.insufficient_window_data

    delta = compute_load(recent) - compute_load(previous)
    if delta > VELOCITY_DELTA_POINTS:
        return TrendDirection.improving, VelocityBasis.measured
    if delta < -VELOCITY_DELTA_POINTS:
        return TrendDirection.declining, VelocityBasis.measured
    return TrendDirection.stable, VelocityBasis.measured


def compute_freshness(
    signals: Sequence[RawSignal], *, now: float, window_hours: int = FRESHNESS_WINDOW_HOURS
) -> Freshness:
    if not signals:
        return Freshness.dormant
    newest = max(s.timestamp for s in signals)
    hours = (now - newest) / 3600.0
    if hours <= window_hours:
        return Freshness.fresh
    if hours <= window_hours * STALE_MULTIPLIER:
        return Freshness.stale
    return Freshness.dormant


def suppressed(unit_id: str, unit_name: str = "") -> SuppressedUnitMetrics:
    return SuppressedUnitMetrics(unit_id=unit_id, unit_name=unit_name)


def compute_metrics(
    unit: RawUnitSignals, *, now: float, freshness_window_hours: int = FRESHNESS_WINDOW_HOURS
) -> AggregatedUnitMetrics:
    signals = list(unit.signals)
    if not meets_k_anonymity(len(signals)):
        return suppressed(unit.unit_id, unit.unit_name)
    velocity, basis = compute_velocity(signals, now=now)
    return VisibleUnitMetrics(
        unit_id=unit.unit_id,
        unit_name=unit.unit_name,
        signal_count=len(signals),
        load=compute_load(signals),
        risk=compute_risk(signals),
        velocity=velocity,
        velocity_basis=basis,
        freshness=compute_freshness(signals, now=now, window_hours=freshness_window_hours),
    )


def apply_delay(signals: Iterable[RawSignal], delay_seconds: int, now: Optional[float] = None) -> List[RawSignal]:
    """
    Keep signals strictly older than now - delay. A delay below the floor is
    raised to the floor.
    """
    ts = time.time() if now is None else float(now)
    cutoff = ts - max(int(delay_seconds), SIGNAL_DELAY_SECONDS)
    return [s for s in signals if s.timestamp < cutoff]


def _in_range(signals: Iterable[RawSignal], date_range: Optional[DateRange]) -> List[RawSignal]:
    if date_range is None:
        return list(signals)
    return [s for s in signals if date_range.contains(s.timestamp)]


def validate_filtered_view(all_signals: Sequence[RawUnitSignals], view: FilteredViewRequest) -> FilteredViewDecision:
    units = list(all_signals)
    if view.unit_ids:
        wanted = set(view.unit_ids)
        units = [u for u in units if u.unit_id in wanted]

    states = set(view.states)
    total = 0
    for u in units:
        sigs = _in_range(u.signals, view.date_range)
        if states:
            sigs = [s for s in sigs if s.state in states]
        total += len(sigs)

    if not meets_k_anonymity(total):
        return FilteredViewDecision(
            allowed=False,
            reason=f"Filtered view contains only {total} signals. Minimum {K_ANONYMITY_THRESHOLD} required.",
            resulting_count=total,
        )
    return FilteredViewDecision(allowed=True, reason="K-anonymity threshold met", resulting_count=total)


def validate_export(all_signals: Sequence[RawUnitSignals], request: ExportRequest) -> ExportDecision:
    by_id = {u.unit_id: u for u in all_signals}
    blocked: List[str] = []
    for unit_id in request.include_units:
        unit = by_id.get(unit_id)
        # Unknown units are blocked rather than skipped.
        if unit is None or not meets_k_anonymity(len(_in_range(unit.signals, request.date_range))):
            blocked.append(unit_id)

    if blocked:
        return ExportDecision(
            allowed=False,
            reason=f"{len(blocked)} unit(s) do not meet K-anonymity threshold and will be excluded from export.",
            blocked_units=blocked,
        )
    return ExportDecision(allowed=True, reason="All units meet K-anonymity threshold", blocked_units=[])


def validate_drill_down(unit: RawUnitSignals, kind: DrillDownKind) -> DrillDownDecision:
    if not meets_k_anonymity(len(unit.signals)):
        return DrillDownDecision(
            allowed=False,
            reason="Insufficient data for drill-down. Unit does not meet privacy threshold.",
        )
    return DrillDownDecision(allowed=True, reason=f"{DrillDownKind(kind).value} drill-down permitted")


def delay_notice(delay_seconds: int) -> str:
    minutes = (int(delay_seconds) + 30) // 60
    return f"Data is delayed by {minutes} minutes to protect privacy."
