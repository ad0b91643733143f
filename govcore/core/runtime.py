from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from govcore.core.aggregation import Aggregator, ExportRegistry
from govcore.core.config.manager import ConfigManager
from govcore.core.config.models import GovernanceConfigFile
from govcore.core.config.paths import ConfigFsPaths
from govcore.core.consent import ConsentLedger, ConsentStore
from govcore.core.ledger import Ledger
from govcore.core.logger import get_logger
from govcore.core.offboarding import OffboardingManager, OffboardingStore
from govcore.core.retention import RetentionScheduler, RetentionStore
from govcore.core.separation import IdentityVault
from govcore.core.tenancy import RestrictedDomainStore, TenantGate, load_registry


@dataclass
class GovernanceRuntime:
    """
    The composed governance engine. Components share one ledger and one sqlite file.
    """

    config: GovernanceConfigFile
    ledger: Ledger
    vault: IdentityVault
    consent: ConsentLedger
    retention: RetentionScheduler
    aggregator: Aggregator
    gate: TenantGate
    offboarding: OffboardingManager
    domain_store: Optional[RestrictedDomainStore] = None

    @classmethod
    def from_config(cls, cfg: GovernanceConfigFile, *, root: str = ".") -> "GovernanceRuntime":
        fs = ConfigFsPaths(root)
        log = get_logger("runtime")
        ledger = Ledger(path=fs.resolve(cfg.ledger.path_jsonl), head_path=fs.resolve(cfg.ledger.head_path))
        if cfg.ledger.verify_on_startup:
            report = ledger.verify_chain_integrity()
            if not report.valid:
                log.error("Ledger integrity check failed at startup: %s", report.message)

        db_path = fs.resolve(cfg.store.sqlite_path)
        vault = IdentityVault(db_path=db_path, ledger=ledger)
        consent = ConsentLedger(
            store=ConsentStore(db_path=db_path), ledger=ledger, review_interval_days=cfg.consent.review_interval_days
        )
        retention = RetentionScheduler(store=RetentionStore(db_path=db_path), ledger=ledger, vault=vault)
        aggregator = Aggregator(
            ledger=ledger,
            signal_delay_seconds=cfg.aggregation.signal_delay_seconds,
            freshness_window_hours=cfg.aggregation.freshness_window_hours,
            exports=ExportRegistry(db_path=db_path),
        )
        offboarding = OffboardingManager(
            store=OffboardingStore(db_path=db_path),
            ledger=ledger,
            vault=vault,
            consent=consent,
            export_window_days=cfg.offboarding.export_window_days,
            deletion_delay_days=cfg.offboarding.deletion_delay_days,
        )

        domain_store = RestrictedDomainStore(db_path=db_path) if cfg.restricted_domains.load_from_store else None
        registry = load_registry(domain_store)
        if registry.failsafe:
            log.warning("Restricted-domain registry running on seed list only")
        gate = TenantGate(registry=registry, ledger=ledger)

        return cls(
            config=cfg,
            ledger=ledger,
            vault=vault,
            consent=consent,
            retention=retention,
            aggregator=aggregator,
            gate=gate,
            offboarding=offboarding,
            domain_store=domain_store,
        )

    @classmethod
    def load(cls, root: str = ".", *, read_only: bool = False) -> "GovernanceRuntime":
        mgr = ConfigManager(fs=ConfigFsPaths(root), read_only=read_only)
        return cls.from_config(mgr.load_all(), root=root)

    def reload_domains(self) -> int:
        """
        Re-reads the store. On a store failure the gate keeps every domain it
        already knew (plus the seed list) and reports failsafe.
        """
        registry = load_registry(self.domain_store, previous=self.gate.registry)
        self.gate.reload(registry)
        return len(registry)
