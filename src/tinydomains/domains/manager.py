"""Domain manager for tenant-facing custom domain operations.

This module provides the interface the dashboard and API use:
- Registration with uniqueness checks (creates a pending record)
- Listing with human-readable status and propagation estimates
- Deletion (the only way a record is ever removed)
- Manual re-verification
- DNS setup instructions

Usage:
    manager = DomainManager(config, store, scheduler)

    # Register a new domain
    record = await manager.register_domain("links.acme.test", owner_id="tenant-1")

    # Tell the user what to configure
    instruction = manager.dns_instructions("links.acme.test")

    # Check again now (re-triggers failed domains)
    info = await manager.request_verification("links.acme.test", owner_id="tenant-1")
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import structlog

from tinydomains.core.config import DomainsConfig
from tinydomains.domains.errors import DomainConflictError, DomainNotFoundError, InvalidInputError
from tinydomains.domains.hostnames import HostClass, HostClassifier, normalize, validate_domain
from tinydomains.domains.scheduler import VerificationScheduler
from tinydomains.domains.states import STATUS_LABELS, DomainStatus
from tinydomains.domains.storage import DomainRecord, RecordStore

logger = structlog.get_logger()

# Most DNS changes propagate within 5-30 minutes.
PROPAGATION_MIN_MINUTES = 5
PROPAGATION_MAX_MINUTES = 30


@dataclass(frozen=True)
class DnsInstruction:
    """A DNS record the tenant must create at their provider."""

    type: str
    name: str
    value: str

    @property
    def is_root(self) -> bool:
        return self.name == "@"

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type, "name": self.name, "value": self.value}


@dataclass(frozen=True)
class PropagationEstimate:
    """Expected DNS propagation window and what is left of it."""

    min_minutes: int
    max_minutes: int
    remaining_minutes: int

    def to_dict(self) -> dict[str, int]:
        return {
            "min": self.min_minutes,
            "max": self.max_minutes,
            "remaining": self.remaining_minutes,
        }


@dataclass
class DomainInfo:
    """Domain status as shown to its owner."""

    domain: str
    owner_id: str
    status: DomainStatus
    status_label: str
    created_at: datetime
    last_attempt_at: datetime | None
    last_result: str | None
    dns: DnsInstruction
    estimate: PropagationEstimate | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "domain": self.domain,
            "owner_id": self.owner_id,
            "status": self.status.value,
            "status_label": self.status_label,
            "created_at": self.created_at.isoformat(),
            "last_attempt_at": self.last_attempt_at.isoformat() if self.last_attempt_at else None,
            "last_result": self.last_result,
            "dns": self.dns.to_dict(),
            "estimate": self.estimate.to_dict() if self.estimate else None,
        }


def dns_instructions(domain: str, platform_root: str) -> DnsInstruction:
    """Derive the DNS record a tenant must configure for a domain.

    Two-label domains are configured at the zone root ("@"); deeper names
    use their leading labels as the record name.

    Examples:
        >>> dns_instructions("acme.test", "tiny.pm")
        DnsInstruction(type='CNAME', name='@', value='tiny.pm')
        >>> dns_instructions("links.acme.test", "tiny.pm").name
        'links'
    """
    labels = normalize(domain).split(".")
    name = "@" if len(labels) <= 2 else ".".join(labels[:-2])
    return DnsInstruction(type="CNAME", name=name, value=platform_root)


def render_dns_instructions(domain: str, platform_root: str) -> str:
    """Render setup instructions as text for the CLI."""
    instruction = dns_instructions(domain, platform_root)
    kind = "Root domain" if instruction.is_root else "Subdomain"
    return f"""Add the following DNS record at your DNS provider ({kind}):

   Type:  {instruction.type}
   Name:  {instruction.name}
   Value: {instruction.value}

DNS changes typically take {PROPAGATION_MIN_MINUTES}-{PROPAGATION_MAX_MINUTES} minutes to propagate.

Note: If you're using Cloudflare, set the proxy status to "DNS only" (grey cloud)
rather than "Proxied" (orange cloud)."""


def estimate_propagation(record: DomainRecord, now: datetime | None = None) -> PropagationEstimate | None:
    """Estimate remaining propagation time from the last verification attempt.

    Returns None for active domains.
    """
    if record.status == DomainStatus.ACTIVE:
        return None

    now = now or datetime.now(UTC)
    elapsed_minutes = 0
    if record.last_attempt_at:
        elapsed_minutes = int((now - record.last_attempt_at).total_seconds() // 60)

    return PropagationEstimate(
        min_minutes=PROPAGATION_MIN_MINUTES,
        max_minutes=PROPAGATION_MAX_MINUTES,
        remaining_minutes=max(0, PROPAGATION_MAX_MINUTES - elapsed_minutes),
    )


class DomainManager:
    """Manages tenant-owned custom domains.

    Records are only created here (pending) and deleted here. Status changes
    belong to the verification engine, reached through the scheduler.
    """

    def __init__(
        self,
        config: DomainsConfig,
        store: RecordStore,
        scheduler: VerificationScheduler,
    ) -> None:
        """Initialize domain manager.

        Args:
            config: Immutable domain configuration.
            store: Storage backend for domain records.
            scheduler: Scheduler used for manual and watched verification.
        """
        self.config = config
        self.store = store
        self.scheduler = scheduler
        self.classifier = HostClassifier(config)

    async def register_domain(self, domain: str, owner_id: str) -> DomainRecord:
        """Register a new custom domain for a tenant.

        Registering a domain the tenant already owns returns the existing
        record.

        Raises:
            InvalidInputError: If the domain is malformed or belongs to the platform.
            DomainConflictError: If another tenant owns the domain.
        """
        if not owner_id:
            raise InvalidInputError("Missing tenant id")

        domain = validate_domain(domain)
        if self.classifier.classify(domain) != HostClass.CANDIDATE:
            raise InvalidInputError(f"{domain} cannot be used as a custom domain")

        stored = await self.store.add(DomainRecord(domain=domain, owner_id=owner_id))
        if stored.owner_id != owner_id:
            raise DomainConflictError(domain)

        logger.info("Domain registered", domain=domain, owner_id=owner_id, status=stored.status.value)
        return stored

    async def get_domain(self, domain: str, owner_id: str | None = None) -> DomainRecord:
        """Get a record, optionally restricted to one owner.

        Raises:
            DomainNotFoundError: If missing or owned by someone else.
        """
        domain = normalize(domain)
        record = await self.store.get(domain)
        if record is None or (owner_id is not None and record.owner_id != owner_id):
            raise DomainNotFoundError(domain)
        return record

    def describe(self, record: DomainRecord, now: datetime | None = None) -> DomainInfo:
        return DomainInfo(
            domain=record.domain,
            owner_id=record.owner_id,
            status=record.status,
            status_label=STATUS_LABELS[record.status],
            created_at=record.created_at,
            last_attempt_at=record.last_attempt_at,
            last_result=record.last_result,
            dns=self.dns_instructions(record.domain),
            estimate=estimate_propagation(record, now),
        )

    async def get_domain_info(self, domain: str, owner_id: str | None = None) -> DomainInfo:
        return self.describe(await self.get_domain(domain, owner_id))

    async def list_domains(self, owner_id: str | None = None) -> list[DomainInfo]:
        """List domains with their current status.

        Args:
            owner_id: If provided, only this tenant's domains.
        """
        if owner_id:
            records = await self.store.list_by_owner(owner_id)
        else:
            records = await self.store.list_all()
        now = datetime.now(UTC)
        return [self.describe(r, now) for r in sorted(records, key=lambda r: r.created_at)]

    async def delete_domain(self, domain: str, owner_id: str | None = None) -> bool:
        """Delete a domain record.

        Returns:
            True if deleted, False if not found (or not owned by owner_id).
        """
        try:
            record = await self.get_domain(domain, owner_id)
        except DomainNotFoundError:
            return False

        self.scheduler.unwatch(record.domain)
        deleted = await self.store.delete(record.domain)
        if deleted:
            logger.info("Domain deleted", domain=record.domain, owner_id=record.owner_id)
        return deleted

    async def request_verification(self, domain: str, owner_id: str | None = None) -> DomainInfo:
        """Verify a domain now and keep polling it while unresolved.

        Failed domains restart their attempt budget. If a check is already
        running, the current state is returned without starting another.
        """
        record = await self.get_domain(domain, owner_id)
        if record.status != DomainStatus.ACTIVE:
            self.scheduler.watch(record.domain)

        report = await self.scheduler.trigger(record.domain, retrigger=True)
        if report is None:
            return self.describe(await self.get_domain(record.domain))
        return self.describe(report.record)

    def dns_instructions(self, domain: str) -> DnsInstruction:
        return dns_instructions(domain, self.config.platform_root)

    def render_dns_instructions(self, domain: str) -> str:
        return render_dns_instructions(domain, self.config.platform_root)
