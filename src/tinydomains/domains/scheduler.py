"""Scheduled verification of custom domains.

Domains that are not active yet are re-checked until they become active or
fail. Two cadences:

- watched domains (a tenant has the domain page open) are polled every
  watch_interval seconds (10s by default);
- everything else is covered by a background sweep every sweep_interval.

At most one verification per domain runs at a time. A trigger arriving
while a check for the same domain is in flight is a no-op, so concurrent
triggers cannot double-count attempts.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from datetime import timedelta

import structlog

from tinydomains.core.config import DomainsConfig
from tinydomains.domains.errors import DomainNotFoundError
from tinydomains.domains.hostnames import normalize
from tinydomains.domains.states import DomainStatus
from tinydomains.domains.storage import DomainRecord
from tinydomains.domains.verification import VerificationEngine, VerificationReport
from tinydomains.observability.metrics import CHECKS_IN_FLIGHT

logger = structlog.get_logger()


class VerificationScheduler:
    """Drives repeated verification attempts for unresolved domains."""

    def __init__(self, config: DomainsConfig, engine: VerificationEngine) -> None:
        self.config = config
        self.engine = engine
        self._in_flight: set[str] = set()
        self._watched: dict[str, float] = {}
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()
        self._last_sweep: float | None = None

    @property
    def in_flight(self) -> frozenset[str]:
        return frozenset(self._in_flight)

    @property
    def watched(self) -> frozenset[str]:
        return frozenset(self._watched)

    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def trigger(self, domain: str, retrigger: bool = False) -> VerificationReport | None:
        """Verify a domain now unless a check for it is already running.

        Args:
            domain: The domain to verify.
            retrigger: Restart verification of a failed domain.

        Returns:
            The report, or None if a check was already in flight.
        """
        domain = normalize(domain)
        if domain in self._in_flight:
            logger.debug("Verification already in flight", domain=domain)
            return None

        self._in_flight.add(domain)
        CHECKS_IN_FLIGHT.inc()
        try:
            report = await self.engine.verify(domain, retrigger=retrigger)
        finally:
            self._in_flight.discard(domain)
            CHECKS_IN_FLIGHT.dec()

        if report.status in (DomainStatus.ACTIVE, DomainStatus.FAILED):
            self.unwatch(domain)
        return report

    def watch(self, domain: str) -> None:
        """Poll a domain on the short interval while a tenant is watching."""
        domain = normalize(domain)
        self._watched.setdefault(domain, float("-inf"))

    def unwatch(self, domain: str) -> None:
        self._watched.pop(normalize(domain), None)

    def _is_due(self, record: DomainRecord) -> bool:
        if record.status in (DomainStatus.PENDING, DomainStatus.VERIFYING):
            return True
        if record.status == DomainStatus.ACTIVE:
            return self.config.health_check_enabled
        # FAILED: retried only after the cooldown
        cooldown = self.config.failed_retry_cooldown
        if cooldown <= 0:
            return False
        if record.last_attempt_at is None:
            return True
        return self.engine.clock() - record.last_attempt_at >= timedelta(seconds=cooldown)

    async def _run_guarded(
        self, domain: str, retrigger: bool, semaphore: asyncio.Semaphore
    ) -> VerificationReport | None:
        async with semaphore:
            try:
                return await self.trigger(domain, retrigger=retrigger)
            except DomainNotFoundError:
                self.unwatch(domain)
                return None
            except Exception as e:
                logger.error("Scheduled verification error", domain=domain, error=str(e))
                return None

    async def sweep(self) -> list[VerificationReport]:
        """Verify every record that is due, bounded by max_concurrent_checks.

        Returns:
            Reports for checks that actually ran.
        """
        records = await self.engine.store.list_all()
        due = [r for r in records if self._is_due(r)]
        if not due:
            return []

        semaphore = asyncio.Semaphore(self.config.max_concurrent_checks)
        results = await asyncio.gather(
            *(
                self._run_guarded(r.domain, r.status == DomainStatus.FAILED, semaphore)
                for r in due
            )
        )
        reports = [r for r in results if r is not None]
        logger.info(
            "Verification sweep complete",
            due=len(due),
            checked=len(reports),
            activated=sum(1 for r in reports if r.transitioned and r.is_active),
            failed=sum(1 for r in reports if r.transitioned and r.status == DomainStatus.FAILED),
        )
        return reports

    async def poll_watched(self) -> list[VerificationReport]:
        """Verify watched domains whose watch interval has elapsed."""
        now_ts = time.monotonic()
        due = [
            domain
            for domain, last in self._watched.items()
            if now_ts - last >= self.config.watch_interval
        ]
        if not due:
            return []

        for domain in due:
            self._watched[domain] = now_ts

        semaphore = asyncio.Semaphore(self.config.max_concurrent_checks)
        results = await asyncio.gather(
            *(self._run_guarded(domain, False, semaphore) for domain in due)
        )
        return [r for r in results if r is not None]

    async def _loop(self) -> None:
        """Run sweeps and watched polls until stopped."""
        logger.info(
            "Verification scheduler started",
            watch_interval=self.config.watch_interval,
            sweep_interval=self.config.sweep_interval,
        )
        tick = min(self.config.watch_interval, self.config.sweep_interval, 1.0)

        while not self._stopping.is_set():
            try:
                now_ts = time.monotonic()
                since_sweep = None if self._last_sweep is None else now_ts - self._last_sweep
                if since_sweep is None or since_sweep >= self.config.sweep_interval:
                    self._last_sweep = now_ts
                    await self.sweep()
                await self.poll_watched()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Verification scheduler error", error=str(e))

            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stopping.wait(), timeout=tick)

        logger.info("Verification scheduler stopped")

    def start(self) -> asyncio.Task[None]:
        """Start the scheduler loop in the background.

        Returns:
            asyncio Task running the loop.
        """
        if self.is_running():
            return self._task  # type: ignore[return-value]
        self._stopping.clear()
        self._last_sweep = None
        self._task = asyncio.create_task(self._loop())
        return self._task

    async def stop(self) -> None:
        """Stop the loop and wait for it to finish."""
        self._stopping.set()
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
