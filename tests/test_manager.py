"""Tests for the tenant-facing domain manager."""

from __future__ import annotations

from datetime import timedelta

import pytest
from conftest import ScriptedProbe, make_record

from tinydomains.domains.errors import DomainConflictError, DomainNotFoundError, InvalidInputError
from tinydomains.domains.manager import (
    PROPAGATION_MAX_MINUTES,
    DnsInstruction,
    DomainManager,
    dns_instructions,
    estimate_propagation,
    render_dns_instructions,
)
from tinydomains.domains.scheduler import VerificationScheduler
from tinydomains.domains.states import DomainStatus
from tinydomains.domains.verification import CheckOutcome, VerificationEngine


@pytest.fixture
def probe():
    return ScriptedProbe(CheckOutcome.SUCCESS)


@pytest.fixture
def scheduler(config, store, tenants, probe, clock):
    return VerificationScheduler(
        config, VerificationEngine(config, store, tenants, probe=probe, clock=clock)
    )


@pytest.fixture
def manager(config, store, scheduler):
    return DomainManager(config, store, scheduler)


class TestRegisterDomain:
    """Tests for DomainManager.register_domain()."""

    @pytest.mark.asyncio
    async def test_register_creates_pending(self, manager, store):
        """Test registration creates a pending record with the canonical name."""
        record = await manager.register_domain("Links.Acme.Test.", owner_id="tenant-1")

        assert record.domain == "links.acme.test"
        assert record.status == DomainStatus.PENDING
        assert record.owner_id == "tenant-1"
        assert await store.exists("links.acme.test")

    @pytest.mark.asyncio
    async def test_register_same_owner_is_idempotent(self, manager):
        """Test re-registering your own domain returns the existing record."""
        first = await manager.register_domain("links.acme.test", owner_id="tenant-1")
        second = await manager.register_domain("links.acme.test", owner_id="tenant-1")

        assert second.created_at == first.created_at

    @pytest.mark.asyncio
    async def test_register_conflict(self, manager, store):
        """Test a domain owned by another tenant is rejected."""
        await manager.register_domain("links.acme.test", owner_id="tenant-1")

        with pytest.raises(DomainConflictError, match="already registered"):
            await manager.register_domain("LINKS.acme.test", owner_id="tenant-2")

        assert (await store.get("links.acme.test")).owner_id == "tenant-1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("domain", ["tiny.pm", "shop.tiny.pm"])
    async def test_register_platform_domain(self, manager, domain):
        """Test the platform's own domains cannot be claimed."""
        with pytest.raises(InvalidInputError):
            await manager.register_domain(domain, owner_id="tenant-1")

    @pytest.mark.asyncio
    async def test_register_invalid_domain(self, manager):
        """Test malformed domains are rejected."""
        with pytest.raises(InvalidInputError):
            await manager.register_domain("not a domain", owner_id="tenant-1")

    @pytest.mark.asyncio
    async def test_register_requires_owner(self, manager):
        """Test a tenant id is required."""
        with pytest.raises(InvalidInputError):
            await manager.register_domain("links.acme.test", owner_id="")


class TestListAndDelete:
    """Tests for listing, lookup and deletion."""

    @pytest.mark.asyncio
    async def test_list_domains_by_owner(self, manager, store):
        """Test tenants only see their own domains, with status details."""
        await store.add(make_record("links.acme.test"))
        await store.add(make_record("shop.acme.test", status=DomainStatus.ACTIVE))
        await store.add(make_record("globex.test", owner_id="tenant-2"))

        infos = await manager.list_domains("tenant-1")

        by_domain = {i.domain: i for i in infos}
        assert set(by_domain) == {"links.acme.test", "shop.acme.test"}
        assert by_domain["links.acme.test"].status_label == "Pending DNS Setup"
        assert by_domain["links.acme.test"].dns == DnsInstruction("CNAME", "links", "tiny.pm")
        assert by_domain["links.acme.test"].estimate.remaining_minutes == PROPAGATION_MAX_MINUTES
        assert by_domain["shop.acme.test"].status_label == "Active"
        assert by_domain["shop.acme.test"].estimate is None

    @pytest.mark.asyncio
    async def test_list_all_domains(self, manager, store):
        """Test listing without an owner returns everything."""
        await store.add(make_record("links.acme.test"))
        await store.add(make_record("globex.test", owner_id="tenant-2"))

        assert len(await manager.list_domains()) == 2

    @pytest.mark.asyncio
    async def test_info_to_dict(self, manager, store):
        """Test the serialized summary shape."""
        await store.add(make_record("links.acme.test"))

        data = (await manager.get_domain_info("links.acme.test", "tenant-1")).to_dict()

        assert data["status"] == "pending"
        assert data["status_label"] == "Pending DNS Setup"
        assert data["dns"] == {"type": "CNAME", "name": "links", "value": "tiny.pm"}
        assert data["estimate"]["max"] == PROPAGATION_MAX_MINUTES
        assert data["last_attempt_at"] is None

    @pytest.mark.asyncio
    async def test_get_domain_other_tenant(self, manager, store):
        """Test another tenant's domain looks like it does not exist."""
        await store.add(make_record("links.acme.test"))

        with pytest.raises(DomainNotFoundError):
            await manager.get_domain("links.acme.test", owner_id="tenant-2")

    @pytest.mark.asyncio
    async def test_delete_domain(self, manager, store, scheduler):
        """Test the owner can delete a domain."""
        await store.add(make_record("links.acme.test"))
        scheduler.watch("links.acme.test")

        assert await manager.delete_domain("links.acme.test", owner_id="tenant-1") is True
        assert await store.get("links.acme.test") is None
        assert "links.acme.test" not in scheduler.watched

    @pytest.mark.asyncio
    async def test_delete_other_tenant(self, manager, store):
        """Test tenants cannot delete each other's domains."""
        await store.add(make_record("links.acme.test"))

        assert await manager.delete_domain("links.acme.test", owner_id="tenant-2") is False
        assert await store.get("links.acme.test") is not None

    @pytest.mark.asyncio
    async def test_delete_missing(self, manager):
        """Test deleting an unknown domain."""
        assert await manager.delete_domain("missing.test") is False


class TestRequestVerification:
    """Tests for DomainManager.request_verification()."""

    @pytest.mark.asyncio
    async def test_verify_pending_domain(self, manager, store):
        """Test a manual check activates a correctly configured domain."""
        await store.add(make_record("links.acme.test"))

        info = await manager.request_verification("links.acme.test", owner_id="tenant-1")

        assert info.status == DomainStatus.ACTIVE
        assert info.status_label == "Active"

    @pytest.mark.asyncio
    async def test_verify_retriggers_failed(self, manager, store, clock):
        """Test a manual check restarts a failed domain."""
        await store.add(
            make_record(
                "links.acme.test",
                status=DomainStatus.FAILED,
                last_attempt_at=clock.now - timedelta(minutes=5),
            )
        )

        info = await manager.request_verification("links.acme.test", owner_id="tenant-1")

        assert info.status == DomainStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_verify_keeps_watching_unresolved(self, manager, store, probe, scheduler):
        """Test an unresolved domain stays on the fast polling list."""
        await store.add(make_record("links.acme.test"))
        probe.outcomes = [CheckOutcome.NOT_CONFIGURED]

        info = await manager.request_verification("links.acme.test", owner_id="tenant-1")

        assert info.status == DomainStatus.VERIFYING
        assert info.last_result.startswith("not_configured")
        assert "links.acme.test" in scheduler.watched

    @pytest.mark.asyncio
    async def test_verify_other_tenant(self, manager, store):
        """Test tenants cannot verify each other's domains."""
        await store.add(make_record("links.acme.test"))

        with pytest.raises(DomainNotFoundError):
            await manager.request_verification("links.acme.test", owner_id="tenant-2")


class TestDnsInstructions:
    """Tests for DNS instruction derivation."""

    @pytest.mark.parametrize(
        "domain,name",
        [
            ("acme.test", "@"),
            ("links.acme.test", "links"),
            ("a.b.acme.test", "a.b"),
            ("WWW.Acme.Test.", "www"),
        ],
    )
    def test_record_name(self, domain, name):
        """Test root domains use '@' and subdomains their leading labels."""
        instruction = dns_instructions(domain, "tiny.pm")

        assert instruction.type == "CNAME"
        assert instruction.name == name
        assert instruction.value == "tiny.pm"

    def test_render(self):
        """Test the rendered text form."""
        text = render_dns_instructions("acme.test", "tiny.pm")

        assert "Root domain" in text
        assert "CNAME" in text
        assert "5-30 minutes" in text

    def test_manager_uses_platform_root(self, manager):
        """Test the manager fills in the configured platform root."""
        assert manager.dns_instructions("links.acme.test").value == "tiny.pm"
        assert "Subdomain" in manager.render_dns_instructions("links.acme.test")


class TestPropagationEstimate:
    """Tests for estimate_propagation()."""

    def test_never_attempted(self, clock):
        """Test a fresh domain gets the full window."""
        estimate = estimate_propagation(make_record("links.acme.test"), clock.now)

        assert estimate.min_minutes == 5
        assert estimate.max_minutes == 30
        assert estimate.remaining_minutes == 30

    def test_partially_elapsed(self, clock):
        """Test remaining time counts down from the last attempt."""
        record = make_record(
            "links.acme.test",
            status=DomainStatus.VERIFYING,
            last_attempt_at=clock.now - timedelta(minutes=10, seconds=30),
        )

        assert estimate_propagation(record, clock.now).remaining_minutes == 20

    def test_never_negative(self, clock):
        """Test remaining time bottoms out at zero."""
        record = make_record(
            "links.acme.test",
            status=DomainStatus.FAILED,
            last_attempt_at=clock.now - timedelta(minutes=45),
        )

        assert estimate_propagation(record, clock.now).remaining_minutes == 0

    def test_active_has_no_estimate(self, clock):
        """Test active domains have no estimate."""
        record = make_record("links.acme.test", status=DomainStatus.ACTIVE)

        assert estimate_propagation(record, clock.now) is None
