from __future__ import annotations

from govcore.core.aggregation.aggregator import Aggregator
from govcore.core.aggregation.constants import K_ANONYMITY_THRESHOLD, SIGNAL_DELAY_SECONDS
from govcore.core.aggregation.models import (
    AggregatedUnitMetrics,
    RawSignal,
    RawUnitSignals,
    SuppressedUnitMetrics,
    VisibleUnitMetrics,
)
from govcore.core.aggregation.watermark import ExportRegistry

__all__ = [
    "Aggregator",
    "ExportRegistry",
    "K_ANONYMITY_THRESHOLD",
    "SIGNAL_DELAY_SECONDS",
    "AggregatedUnitMetrics",
    "RawSignal",
    "RawUnitSignals",
    "SuppressedUnitMetrics",
    "VisibleUnitMetrics",
]
