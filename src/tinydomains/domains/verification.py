"""Verification of custom domains.

A domain is verified when traffic for it reaches the platform. The default
HttpProbe asks the candidate hostname itself for the platform's
verification endpoint, so the check exercises the same path live traffic
takes. If DNS is not configured the request never reaches us; if it
reaches someone else, the platform's routing signature is missing.

Example DNS setup required by user:
    # CNAME record (routes traffic)
    links.mycompany.com  CNAME  tiny.pm

The DnsProbe alternative checks the CNAME (or, for apex domains, the A
records) directly with aiodns.

Outcomes:
    success            -> the platform answered / DNS points at the platform
    not_configured     -> no record yet, or it points elsewhere
    transient_error    -> timeouts, resolver and network failures
    malformed_response -> the platform answered with an unexpected payload
Transient and malformed outcomes never count against the attempt budget.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum

import aiodns
import httpx
import structlog

from tinydomains.core.config import DomainsConfig, VerificationMethod
from tinydomains.domains.errors import (
    DomainNotFoundError,
    InfrastructureError,
    NotConfiguredError,
    TerminalVerificationError,
    TransientVerificationError,
)
from tinydomains.domains.hostnames import is_same_or_subdomain, normalize
from tinydomains.domains.states import WINDOW_OPENING_EVENTS, DomainEvent, DomainStatus, transition
from tinydomains.domains.storage import DomainRecord, RecordStore, TenantDirectory
from tinydomains.observability.metrics import STATUS_TRANSITIONS, VERIFICATION_CHECKS

logger = structlog.get_logger()

ROUTER_SIGNATURE_HEADER = "X-Tinydomains-Router"
VERIFY_PATH = "/api/domains/verify"


class CheckOutcome(Enum):
    """Classified result of a single verification probe."""

    SUCCESS = "success"
    NOT_CONFIGURED = "not_configured"
    TRANSIENT_ERROR = "transient_error"
    MALFORMED_RESPONSE = "malformed_response"

    @property
    def is_transient(self) -> bool:
        return self in (CheckOutcome.TRANSIENT_ERROR, CheckOutcome.MALFORMED_RESPONSE)


@dataclass
class ProbeResult:
    """Outcome of a probe plus the raw observation behind it."""

    outcome: CheckOutcome
    raw: str


class Probe(ABC):
    """Checks whether a domain currently reaches the platform."""

    @abstractmethod
    async def probe(self, domain: str) -> ProbeResult:
        """Probe a normalized domain."""

    async def close(self) -> None:
        """Release any resources held by the probe."""


class HttpProbe(Probe):
    """Probe a domain through the platform's own routing path.

    Sends ``GET {scheme}://{domain}/api/domains/verify?domain={domain}``. Any
    answer carrying the routing signature for our platform root means the
    domain's DNS points at us, whether or not the record is active yet.
    """

    def __init__(self, config: DomainsConfig, client: httpx.AsyncClient | None = None) -> None:
        self.platform_root = config.platform_root
        self.scheme = config.probe_scheme
        self._client = client
        self._owns_client = client is None
        self._timeout = config.attempt_timeout

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=False)
        return self._client

    async def probe(self, domain: str) -> ProbeResult:
        url = f"{self.scheme}://{domain}{VERIFY_PATH}"
        client = self._get_client()

        try:
            response = await client.get(url, params={"domain": domain})
        except httpx.ConnectError as e:
            return ProbeResult(CheckOutcome.NOT_CONFIGURED, f"connection failed: {e}")
        except httpx.TimeoutException as e:
            return ProbeResult(CheckOutcome.TRANSIENT_ERROR, f"timeout: {e!r}")
        except httpx.HTTPError as e:
            return ProbeResult(CheckOutcome.TRANSIENT_ERROR, f"network error: {e!r}")

        signature = response.headers.get(ROUTER_SIGNATURE_HEADER)
        if signature is None:
            return ProbeResult(
                CheckOutcome.NOT_CONFIGURED,
                f"foreign origin answered ({response.status_code})",
            )
        if signature.strip().lower() != self.platform_root:
            return ProbeResult(
                CheckOutcome.NOT_CONFIGURED,
                f"routed to another platform ({signature})",
            )

        if response.status_code >= 500:
            return ProbeResult(
                CheckOutcome.TRANSIENT_ERROR,
                f"platform router error ({response.status_code})",
            )

        try:
            payload = response.json()
        except ValueError:
            return ProbeResult(
                CheckOutcome.MALFORMED_RESPONSE,
                f"non-JSON body ({response.status_code})",
            )

        if not isinstance(payload, dict) or not ("username" in payload or "error" in payload):
            return ProbeResult(
                CheckOutcome.MALFORMED_RESPONSE,
                f"unexpected payload ({response.status_code}): {str(payload)[:80]}",
            )

        return ProbeResult(
            CheckOutcome.SUCCESS,
            f"platform router answered ({response.status_code})",
        )

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


# c-ares codes meaning "the name or record does not exist (yet)".
_MISSING_RECORD_CODES = frozenset({aiodns.error.ARES_ENOTFOUND, aiodns.error.ARES_ENODATA})


class DnsProbe(Probe):
    """Probe a domain via DNS.

    Subdomains must CNAME to the platform root (or one of its subdomains).
    Apex domains cannot carry a CNAME, so they pass when their A records
    overlap the platform root's A records.
    """

    def __init__(self, config: DomainsConfig) -> None:
        self.platform_root = config.platform_root
        self._resolver: aiodns.DNSResolver | None = None

    def _get_resolver(self) -> aiodns.DNSResolver:
        """Get or create the DNS resolver."""
        if self._resolver is None:
            self._resolver = aiodns.DNSResolver()
        return self._resolver

    async def _lookup(self, name: str, qtype: str) -> tuple[object | None, ProbeResult | None]:
        resolver = self._get_resolver()
        try:
            return await resolver.query(name, qtype), None
        except aiodns.error.DNSError as e:
            code = e.args[0] if e.args else None
            if code in _MISSING_RECORD_CODES:
                return None, None
            return None, ProbeResult(CheckOutcome.TRANSIENT_ERROR, f"{qtype} lookup failed: {e}")

    async def probe(self, domain: str) -> ProbeResult:
        result, error = await self._lookup(domain, "CNAME")
        if error:
            return error

        if result is not None:
            target = str(getattr(result, "cname", "")).rstrip(".").lower()
            if not target:
                return ProbeResult(CheckOutcome.MALFORMED_RESPONSE, "empty CNAME answer")
            if is_same_or_subdomain(target, self.platform_root):
                return ProbeResult(CheckOutcome.SUCCESS, f"CNAME -> {target}")
            return ProbeResult(
                CheckOutcome.NOT_CONFIGURED,
                f"CNAME -> {target}, expected {self.platform_root}",
            )

        records, error = await self._lookup(domain, "A")
        if error:
            return error
        if not records:
            return ProbeResult(CheckOutcome.NOT_CONFIGURED, "no CNAME or A record")

        expected, error = await self._lookup(self.platform_root, "A")
        if error:
            return error

        found = {r.host for r in records}
        wanted = {r.host for r in expected or []}
        if found & wanted:
            return ProbeResult(CheckOutcome.SUCCESS, f"A -> {sorted(found & wanted)}")
        return ProbeResult(
            CheckOutcome.NOT_CONFIGURED,
            f"A -> {sorted(found)}, expected one of {sorted(wanted)}",
        )


def create_probe(config: DomainsConfig) -> Probe:
    """Create the probe selected by config.verification_method."""
    if config.verification_method == VerificationMethod.DNS:
        return DnsProbe(config)
    return HttpProbe(config)


@dataclass
class VerificationReport:
    """Result of one verification run for a domain."""

    domain: str
    outcome: CheckOutcome | None
    previous_status: DomainStatus
    status: DomainStatus
    detail: str
    record: DomainRecord

    @property
    def transitioned(self) -> bool:
        return self.previous_status != self.status

    @property
    def is_active(self) -> bool:
        return self.status == DomainStatus.ACTIVE

    def raise_for_status(self) -> None:
        """Raise the error matching this report, if any.

        Raises:
            TerminalVerificationError: The domain is failed.
            TransientVerificationError: The check hit a transient error.
            NotConfiguredError: DNS does not reach the platform yet.
        """
        if self.status == DomainStatus.FAILED:
            raise TerminalVerificationError(
                f"Verification failed for {self.domain}. Check your DNS records and retry."
            )
        if self.outcome is not None and self.outcome.is_transient:
            raise TransientVerificationError(f"{self.domain}: {self.detail}")
        if self.outcome == CheckOutcome.NOT_CONFIGURED:
            raise NotConfiguredError(f"{self.domain}: {self.detail}")


def _utc_now() -> datetime:
    return datetime.now(UTC)


class VerificationEngine:
    """Advances domain records through the status state machine.

    Also owns the read path used by request routing (resolve()), so the
    router and the verification endpoint answer from one place.
    """

    def __init__(
        self,
        config: DomainsConfig,
        store: RecordStore,
        tenants: TenantDirectory,
        probe: Probe | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Immutable domain configuration.
            store: Domain record store.
            tenants: Tenant id -> username lookup.
            probe: Probe to use. Defaults to the one selected by config.
            clock: Returns the current UTC time.
        """
        self.config = config
        self.store = store
        self.tenants = tenants
        self.probe = probe or create_probe(config)
        self.clock = clock
        self._budget = timedelta(seconds=config.attempt_budget)

    async def resolve(self, host: str) -> str | None:
        """Return the username an active domain routes to, or None.

        Raises:
            InfrastructureError: If the store or tenant directory cannot answer.
        """
        domain = normalize(host)
        try:
            record = await self.store.get(domain)
            if record is None or not record.is_active:
                return None
            username = await self.tenants.get_username(record.owner_id)
        except InfrastructureError:
            raise
        except Exception as e:
            raise InfrastructureError(f"Domain lookup failed: {e}") from e

        if not username:
            logger.warning(
                "Active domain has no tenant username",
                domain=domain,
                owner_id=record.owner_id,
            )
            return None
        return username

    async def check(self, domain: str) -> ProbeResult:
        """Probe a domain, retrying transient errors without penalty."""
        attempts = 1 + self.config.transient_retry_limit
        result = ProbeResult(CheckOutcome.TRANSIENT_ERROR, "not attempted")
        for attempt in range(attempts):
            if attempt:
                await asyncio.sleep(self.config.transient_retry_delay)
            result = await self._probe_once(domain)
            VERIFICATION_CHECKS.labels(outcome=result.outcome.value).inc()
            if not result.outcome.is_transient:
                return result
            logger.debug(
                "Transient verification error",
                domain=domain,
                attempt=attempt + 1,
                outcome=result.outcome.value,
                raw=result.raw,
            )
        return result

    async def _probe_once(self, domain: str) -> ProbeResult:
        try:
            return await asyncio.wait_for(
                self.probe.probe(domain), timeout=self.config.attempt_timeout
            )
        except TimeoutError:
            return ProbeResult(
                CheckOutcome.TRANSIENT_ERROR,
                f"attempt exceeded {self.config.attempt_timeout}s",
            )
        except Exception as e:
            logger.error("Verification probe crashed", domain=domain, error=str(e))
            return ProbeResult(CheckOutcome.TRANSIENT_ERROR, f"probe error: {e!r}")

    def _apply(
        self, record: DomainRecord, event: DomainEvent, now: datetime, raw: str
    ) -> None:
        previous = record.status
        record.status = transition(previous, event)
        if event in WINDOW_OPENING_EVENTS:
            record.verification_started_at = now
            record.attempts = 0
        if record.status != previous:
            STATUS_TRANSITIONS.labels(
                from_status=previous.value, to_status=record.status.value
            ).inc()
            logger.info(
                "Domain status transition",
                domain=record.domain,
                from_status=previous.value,
                to_status=record.status.value,
                trigger=event.value,
                raw=raw,
            )

    def _budget_exhausted(self, record: DomainRecord, now: datetime) -> bool:
        started = record.verification_started_at or now
        return now - started >= self._budget

    async def verify(self, domain: str, retrigger: bool = False) -> VerificationReport:
        """Run one verification for a domain and persist the result.

        Args:
            domain: The domain to verify.
            retrigger: Restart verification of a failed domain.

        Returns:
            VerificationReport describing the check and any transition.

        Raises:
            DomainNotFoundError: If the domain is not registered.
            InfrastructureError: If the store is unavailable.
        """
        domain = normalize(domain)
        record = await self.store.get(domain)
        if record is None:
            raise DomainNotFoundError(domain)

        previous = record.status
        now = self.clock()

        if record.status == DomainStatus.PENDING:
            self._apply(record, DomainEvent.BEGIN, now, "first verification attempt")
        elif record.status == DomainStatus.FAILED:
            if not retrigger:
                return VerificationReport(
                    domain=domain,
                    outcome=None,
                    previous_status=previous,
                    status=record.status,
                    detail="verification failed; re-trigger required",
                    record=record,
                )
            self._apply(record, DomainEvent.RETRIGGER, now, "verification re-triggered")
        elif record.status == DomainStatus.VERIFYING and record.verification_started_at is None:
            record.verification_started_at = now

        result = await self.check(domain)
        now = self.clock()

        record.last_attempt_at = now
        record.attempts += 1
        record.last_result = f"{result.outcome.value}: {result.raw}"

        if result.outcome == CheckOutcome.SUCCESS:
            self._apply(record, DomainEvent.CONFIRMED, now, result.raw)
        elif result.outcome == CheckOutcome.NOT_CONFIGURED:
            if record.status == DomainStatus.ACTIVE:
                self._apply(record, DomainEvent.DEGRADED, now, result.raw)
            elif self._budget_exhausted(record, now):
                self._apply(record, DomainEvent.BUDGET_EXHAUSTED, now, result.raw)

        if not await self.store.update(record):
            logger.info("Domain deleted or re-registered during verification", domain=domain)

        logger.debug(
            "Verification check complete",
            domain=domain,
            outcome=result.outcome.value,
            status=record.status.value,
            raw=result.raw,
        )

        return VerificationReport(
            domain=domain,
            outcome=result.outcome,
            previous_status=previous,
            status=record.status,
            detail=result.raw,
            record=record,
        )

    async def close(self) -> None:
        await self.probe.close()
