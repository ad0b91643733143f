from __future__ import annotations

from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SignalState(str, Enum):
    resourced = "resourced"
    stretched = "stretched"
    depleted = "depleted"


class TrendDirection(str, Enum):
    improving = "improving"
    stable = "stable"
    declining = "declining"


class VelocityBasis(str, Enum):
    measured = "measured"
    insufficient_window_data = "insufficient_window_data"


class Freshness(str, Enum):
    fresh = "fresh"
    stale = "stale"
    dormant = "dormant"


class RawSignal(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    state: SignalState
    timestamp: float


class RawUnitSignals(BaseModel):
    model_config = ConfigDict(extra="forbid")

    unit_id: str = Field(min_length=1, max_length=128)
    unit_name: str = Field(default="", max_length=200)
    signals: List[RawSignal] = Field(default_factory=list)


class VisibleUnitMetrics(BaseModel):
    model_config = ConfigDict(extra="forbid")

    is_suppressed: Literal[False] = False
    unit_id: str
    unit_name: str
    signal_count: int = Field(ge=0)
    load: int = Field(ge=0, le=100)
    risk: int = Field(ge=0, le=100)
    velocity: TrendDirection
    velocity_basis: VelocityBasis
    freshness: Freshness


class SuppressedUnitMetrics(BaseModel):
    """
    Sentinel for a unit below the k-anonymity floor. It has no numeric field at
    all (not even the signal count), so nothing partial can leak through it.
    """

    model_config = ConfigDict(extra="forbid")

    is_suppressed: Literal[True] = True
    unit_id: str
    unit_name: str
    load: None = None
    risk: None = None
    velocity: Literal["suppressed"] = "suppressed"
    freshness: Literal["suppressed"] = "suppressed"
    suppression_reason: Literal["insufficient_data"] = "insufficient_data"


AggregatedUnitMetrics = Union[VisibleUnitMetrics, SuppressedUnitMetrics]


class DateRange(BaseModel):
    model_config = ConfigDict(extra="forbid")

    start: float
    end: float

    @model_validator(mode="after")
    def _ordered(self) -> "DateRange":
        if self.end < self.start:
            raise ValueError("date range end is before start")
        return self

    def contains(self, ts: float) -> bool:
        return self.start <= ts <= self.end


class FilteredViewRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    unit_ids: List[str] = Field(default_factory=list)
    date_range: Optional[DateRange] = None
    states: List[SignalState] = Field(default_factory=list)


class FilteredViewDecision(BaseModel):
    model_config = ConfigDict(extra="forbid")

    allowed: bool
    reason: str
    resulting_count: int


class ExportFormat(str, Enum):
    csv = "csv"
    json = "json"
    pdf = "pdf"


class ExportRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    format: ExportFormat = ExportFormat.json
    include_units: List[str] = Field(min_length=1)
    date_range: Optional[DateRange] = None


class ExportDecision(BaseModel):
    model_config = ConfigDict(extra="forbid")

    allowed: bool
    reason: str
    blocked_units: List[str] = Field(default_factory=list)


class DrillDownKind(str, Enum):
    time_series = "time_series"
    state_breakdown = "state_breakdown"
    subunit_view = "subunit_view"


class DrillDownDecision(BaseModel):
    model_config = ConfigDict(extra="forbid")

    allowed: bool
    reason: str


class ExportWatermark(BaseModel):
    """
    Stamped on every export. `integrity_hash` covers the units and blocked list,
    so a recipient can check the content against the export log.
    """

    model_config = ConfigDict(extra="forbid")

    org_name: str = Field(default="", max_length=200)
    export_date: float
    scope: str = Field(min_length=1, max_length=128)
    record_count: int = Field(ge=0)
    disclaimer: str
    exported_by: str = Field(min_length=1, max_length=128)
    integrity_hash: str = Field(min_length=64, max_length=64)


class ExportBundle(BaseModel):
    model_config = ConfigDict(extra="forbid")

    format: ExportFormat
    generated_at: float
    delay_notice: str
    units: List[AggregatedUnitMetrics] = Field(default_factory=list)
    blocked_units: List[str] = Field(default_factory=list)
    audit_sequence: Optional[int] = None
    watermark: Optional[ExportWatermark] = None
    export_id: Optional[str] = None


class ExportRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    export_id: str
    format: ExportFormat
    watermark: ExportWatermark
    created_at: float
    expires_at: Optional[float] = None
    access_count: int = 0
    audit_sequence: Optional[int] = None


class ExportIntegrity(BaseModel):
    model_config = ConfigDict(extra="forbid")

    is_valid: bool
    stored_hash: str
    computed_hash: str
