"""Shared fixtures and fakes for the tinydomains tests."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta

import pytest

from tinydomains.core.config import DomainsConfig, clear_config
from tinydomains.domains.storage import DomainRecord, MemoryDomainStore, StaticTenantDirectory
from tinydomains.domains.verification import CheckOutcome, Probe, ProbeResult


class ScriptedProbe(Probe):
    """Probe returning queued outcomes; the last one repeats."""

    def __init__(self, *outcomes: CheckOutcome, delay: float = 0.0) -> None:
        self.outcomes = list(outcomes) or [CheckOutcome.NOT_CONFIGURED]
        self.delay = delay
        self.calls: list[str] = []
        self.gate: asyncio.Event | None = None
        self.hook: Callable[[str], Awaitable[None]] | None = None

    async def probe(self, domain: str) -> ProbeResult:
        self.calls.append(domain)
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.hook is not None:
            await self.hook(domain)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        return ProbeResult(outcome, f"scripted {outcome.value}")


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 15, 10, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture(autouse=True)
def _reset_config():
    clear_config()
    yield
    clear_config()


@pytest.fixture
def config() -> DomainsConfig:
    return DomainsConfig(
        platform_root="tiny.pm",
        environment="production",
        transient_retry_delay=0,
        _env_file=None,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tenants() -> StaticTenantDirectory:
    return StaticTenantDirectory({"tenant-1": "acme", "tenant-2": "globex"})


@pytest.fixture
def store() -> MemoryDomainStore:
    return MemoryDomainStore()


def make_record(domain: str, owner_id: str = "tenant-1", **kwargs) -> DomainRecord:
    return DomainRecord(domain=domain, owner_id=owner_id, **kwargs)
