from __future__ import annotations

"""
Restricted-domain registry.

The registry is an immutable snapshot: the fixed seed list, augmented from the
durable store. If the store cannot be read the snapshot is the seed list plus
whatever the previous snapshot knew (never empty) and `failsafe` is set.
"""

import sqlite3
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from govcore.core.errors import StoreError
from govcore.core.logger import get_logger
from govcore.core.storage import SqliteStore
from govcore.core.tenancy.models import DomainAction, DomainCheckResult, EnforcementLevel, RestrictedDomain

# 2025-01-01T00:00:00Z
_SEED_ADDED_AT = 1735689600.0
_SALES_URL = "/enterprise/contact"

_SEED = (
    ("microsoft.com", "Microsoft Corporation"),
    ("google.com", "Google LLC"),
    ("amazon.com", "Amazon.com Inc."),
    ("apple.com", "Apple Inc."),
    ("meta.com", "Meta Platforms Inc."),
    ("netflix.com", "Netflix Inc."),
    ("kaiserpermanente.org", "Kaiser Permanente"),
    ("harvard.edu", "Harvard University"),
    ("stanford.edu", "Stanford University"),
    ("mit.edu", "Massachusetts Institute of Technology"),
)

SEED_DOMAINS: List[RestrictedDomain] = [
    RestrictedDomain(
        domain=d,
        organization_name=org,
        enforcement_level=EnforcementLevel.contact_sales,
        added_at=_SEED_ADDED_AT,
        added_by="system",
        sales_contact_url=_SALES_URL,
    )
    for d, org in _SEED
]

# second-level public suffixes kept with their registrable label
_TWO_LEVEL_SUFFIXES = {"co.uk", "com.au", "co.nz", "ac.uk", "gov.uk"}


def extract_domain(email: str) -> Optional[str]:
    if not isinstance(email, str):
        return None
    s = email.strip().lower()
    at = s.rfind("@")
    if at <= 0 or at == len(s) - 1:
        return None
    domain = s[at + 1 :].strip(".")
    if "." not in domain or " " in domain:
        return None
    return domain


def normalize_domain(domain: str) -> str:
    """
    Reduce a host to its registrable domain: mail.eng.example.com -> example.com,
    dept.ox.ac.uk -> ox.ac.uk.
    """
    parts = domain.strip().lower().split(".")
    if len(parts) > 2:
        if ".".join(parts[-2:]) in _TWO_LEVEL_SUFFIXES:
            return ".".join(parts[-3:])
        return ".".join(parts[-2:])
    return ".".join(parts)


def _parents(domain: str) -> List[str]:
    parts = domain.split(".")
    return [".".join(parts[i:]) for i in range(len(parts))]


@dataclass(frozen=True)
class DomainRegistry:
    domains: Dict[str, RestrictedDomain] = field(default_factory=dict)
    failsafe: bool = False

    @classmethod
    def seed_only(cls, *, failsafe: bool = False) -> "DomainRegistry":
        return cls(domains={d.domain: d for d in SEED_DOMAINS}, failsafe=failsafe)

    def __len__(self) -> int:
        return len(self.domains)

    def lookup(self, domain: str) -> Optional[RestrictedDomain]:
        """
        Exact match on the normalized domain first, then the full host and its
        parents (most specific first).
        """
        host = domain.strip().lower()
        hit = self.domains.get(normalize_domain(host))
        if hit is not None:
            return hit
        for candidate in _parents(host):
            hit = self.domains.get(candidate)
            if hit is not None:
                return hit
        return None

    def check(self, email: str) -> DomainCheckResult:
        domain = extract_domain(email)
        if domain is None:
            # Unparsable input is treated as restricted.
            return DomainCheckResult(
                is_restricted=True,
                domain="",
                action=DomainAction.block_class_a,
                message="Email address could not be parsed.",
            )
        normalized = normalize_domain(domain)
        r = self.lookup(domain)
        if r is None:
            return DomainCheckResult(is_restricted=False, domain=normalized, action=DomainAction.allowed)
        if r.enforcement_level == EnforcementLevel.redirect_sso:
            return DomainCheckResult(
                is_restricted=True,
                domain=normalized,
                action=DomainAction.redirect_sso,
                redirect_url=r.sso_endpoint,
                message=f"{r.organization_name} uses Single Sign-On. Redirecting...",
            )
        if r.enforcement_level == EnforcementLevel.contact_sales:
            return DomainCheckResult(
                is_restricted=True,
                domain=normalized,
                action=DomainAction.contact_sales,
                redirect_url=r.sales_contact_url or _SALES_URL,
                message=f"{r.organization_name} requires an enterprise agreement. Please contact our sales team.",
            )
        return DomainCheckResult(
            is_restricted=True,
            domain=normalized,
            action=DomainAction.block_class_a,
            message=f"{r.organization_name} requires an institutional deployment. Please contact your IT administrator.",
        )

    def all(self) -> List[RestrictedDomain]:
        return sorted(self.domains.values(), key=lambda d: d.domain)


class RestrictedDomainStore(SqliteStore):
    """
    Durable restricted-domain rows (SQLite). Rows are soft-deactivated, never removed.
    """

    def _init_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS restricted_domains (
              domain TEXT PRIMARY KEY,
              organization_name TEXT NOT NULL,
              enforcement_level TEXT NOT NULL,
              added_at REAL,
              added_by TEXT,
              sso_endpoint TEXT,
              sales_contact_url TEXT,
              is_active INTEGER NOT NULL DEFAULT 1
            )
            """
        )

    def add(self, domain: RestrictedDomain) -> None:
        d = domain.model_dump(mode="json")
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO restricted_domains(domain, organization_name, enforcement_level, added_at, added_by, sso_endpoint, sales_contact_url, is_active)
                VALUES (:domain, :organization_name, :enforcement_level, :added_at, :added_by, :sso_endpoint, :sales_contact_url, 1)
                ON CONFLICT(domain) DO UPDATE SET
                  organization_name=excluded.organization_name,
                  enforcement_level=excluded.enforcement_level,
                  added_at=excluded.added_at,
                  added_by=excluded.added_by,
                  sso_endpoint=excluded.sso_endpoint,
                  sales_contact_url=excluded.sales_contact_url,
                  is_active=1
                """,
                d,
            )

    def deactivate(self, domain: str) -> bool:
        with self._session() as conn:
            n = conn.execute("UPDATE restricted_domains SET is_active=0 WHERE domain=?", (domain.strip().lower(),)).rowcount
        return bool(n)

    def list_active_rows(self) -> List[Dict[str, object]]:
        with self._session() as conn:
            rows = conn.execute("SELECT * FROM restricted_domains WHERE is_active=1").fetchall()
        return [dict(r) for r in rows]


def domain_from_row(row: Dict[str, object]) -> RestrictedDomain:
    """
    Rows with an unrecognised enforcement level load as block_all.
    """
    raw = {k: row.get(k) for k in ("domain", "organization_name", "enforcement_level", "added_at", "added_by", "sso_endpoint", "sales_contact_url")}
    try:
        raw["enforcement_level"] = EnforcementLevel(str(raw.get("enforcement_level")))
    except ValueError:
        raw["enforcement_level"] = EnforcementLevel.block_all
    if raw.get("added_at") is None:
        raw["added_at"] = time.time()
    if not raw.get("added_by"):
        raw["added_by"] = "system"
    return RestrictedDomain.model_validate(raw)


def load_registry(store: Optional[RestrictedDomainStore] = None, *, previous: Optional[DomainRegistry] = None) -> DomainRegistry:
    """
    Seed list plus active store rows. If the store cannot be read, the result is
    the seed list merged with `previous` (the last known snapshot) and flagged
    failsafe, so a reload never forgets a domain it already restricted.
    """
    log = get_logger("tenancy")
    domains: Dict[str, RestrictedDomain] = {d.domain: d for d in SEED_DOMAINS}
    if store is None:
        return DomainRegistry(domains=domains)
    try:
        rows = store.list_active_rows()
    except StoreError as e:
        if previous is None:
            log.warning("Restricted-domain store unavailable (%s); using seed list only", e.context.get("error"))
            return DomainRegistry.seed_only(failsafe=True)
        log.warning("Restricted-domain store unavailable (%s); keeping last known domains", e.context.get("error"))
        return DomainRegistry(domains={**previous.domains, **domains}, failsafe=True)
    for row in rows:
        try:
            d = domain_from_row(row)
        except PydanticValidationError:
            name = str(row.get("domain") or "").strip().lower()
            if len(name) < 3:
                log.warning("Skipping restricted-domain row without a usable domain")
                continue
            # keep the domain restricted even if the rest of the row is unusable
            d = RestrictedDomain(domain=name, organization_name=name, enforcement_level=EnforcementLevel.block_all)
        domains[d.domain] = d
    return DomainRegistry(domains=domains)
