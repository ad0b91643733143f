from __future__ import annotations

import sqlite3

from govcore.core.errors import StoreError
from govcore.core.tenancy import RestrictedDomainStore, load_registry
from govcore.core.tenancy.domains import SEED_DOMAINS
from govcore.core.tenancy.models import DomainAction, EnforcementLevel, RestrictedDomain


class _BrokenStore:
    def list_active_rows(self):
        raise StoreError(error="disk I/O error")


def test_no_store_gives_seed_list():
    reg = load_registry(None)
    assert len(reg) == len(SEED_DOMAINS) == 10
    assert reg.failsafe is False


def test_store_failure_falls_back_to_seed_only():
    reg = load_registry(_BrokenStore())
    assert reg.failsafe is True
    assert len(reg) == 10
    assert reg.check("x@google.com").is_restricted is True


def test_store_rows_extend_seed(tmp_path):
    store = RestrictedDomainStore(db_path=str(tmp_path / "gov.sqlite"))
    store.add(RestrictedDomain(domain="Acme-Health.org", organization_name="Acme Health", enforcement_level=EnforcementLevel.redirect_sso, sso_endpoint="https://sso.acme-health.org"))
    reg = load_registry(store)
    assert len(reg) == 11
    res = reg.check("nurse@acme-health.org")
    assert res.action == DomainAction.redirect_sso

    assert store.deactivate("acme-health.org") is True
    assert load_registry(store).check("nurse@acme-health.org").is_restricted is False


def test_unknown_enforcement_level_loads_as_block_all(tmp_path):
    db = str(tmp_path / "gov.sqlite")
    store = RestrictedDomainStore(db_path=db)
    store.add(RestrictedDomain(domain="odd.example", organization_name="Odd", enforcement_level=EnforcementLevel.contact_sales))
    conn = sqlite3.connect(db)
    conn.execute("UPDATE restricted_domains SET enforcement_level='shrug', organization_name='' WHERE domain='odd.example'")
    conn.commit()
    conn.close()

    reg = load_registry(store)
    hit = reg.lookup("odd.example")
    assert hit is not None
    assert hit.enforcement_level == EnforcementLevel.block_all
    assert reg.check("a@odd.example").action == DomainAction.block_class_a


def test_store_cannot_remove_seed_domains(tmp_path):
    store = RestrictedDomainStore(db_path=str(tmp_path / "gov.sqlite"))
    store.deactivate("google.com")
    assert load_registry(store).check("a@google.com").is_restricted is True


def test_store_failure_keeps_previous_snapshot(tmp_path):
    store = RestrictedDomainStore(db_path=str(tmp_path / "gov.sqlite"))
    store.add(RestrictedDomain(domain="acme-health.org", organization_name="Acme Health", enforcement_level=EnforcementLevel.block_all))
    previous = load_registry(store)

    reg = load_registry(_BrokenStore(), previous=previous)
    assert reg.failsafe is True
    assert len(reg) == 11
    assert reg.check("nurse@acme-health.org").action == DomainAction.block_class_a
    assert reg.check("x@google.com").is_restricted is True
