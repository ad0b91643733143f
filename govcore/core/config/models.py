from __future__ import annotations

from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field

# Floor for the aggregate signal delay. Deployments may raise it, never lower it.
MIN_SIGNAL_DELAY_SECONDS = 300


class LedgerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    path_jsonl: str = "logs/ledger/ledger.jsonl"
    head_path: str = "logs/ledger/head.json"
    verify_on_startup: bool = True


class StoreConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    sqlite_path: str = "runtime/governance.sqlite"


class AggregationConfig(BaseModel):
    """
    NOTE: the k-anonymity floor is deliberately absent here; it is a module
    constant in govcore.core.aggregation.constants.
    """

    model_config = ConfigDict(extra="forbid")

    signal_delay_seconds: int = Field(default=MIN_SIGNAL_DELAY_SECONDS, ge=MIN_SIGNAL_DELAY_SECONDS, le=86400)
    freshness_window_hours: int = Field(default=24, ge=1, le=24 * 30)


class RestrictedDomainsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    load_from_store: bool = True


class ConsentConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    review_interval_days: int = Field(default=365, ge=1, le=3650)


class OffboardingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    export_window_days: int = Field(default=30, ge=1, le=365)
    deletion_delay_days: int = Field(default=14, ge=0, le=365)


class GovernanceConfigFile(BaseModel):
    """
    config/governance.json schema.
    """

    model_config = ConfigDict(extra="forbid")

    schema_version: int = Field(default=1, ge=1, le=10)
    log_dir: str = "logs"
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    aggregation: AggregationConfig = Field(default_factory=AggregationConfig)
    restricted_domains: RestrictedDomainsConfig = Field(default_factory=RestrictedDomainsConfig)
    consent: ConsentConfig = Field(default_factory=ConsentConfig)
    offboarding: OffboardingConfig = Field(default_factory=OffboardingConfig)


def default_governance_config_dict() -> Dict[str, Any]:
    return GovernanceConfigFile().model_dump()
