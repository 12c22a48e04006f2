"""Tinydomains Custom Domain Management.

This module lets tenants serve their pages from their own domains
(e.g., links.mycompany.com) instead of tiny.pm/<username>.

Features:
- Hostname normalization and classification (platform, development, custom)
- Verification via the platform's own routing path or via DNS
- Status state machine: pending -> verifying -> active / failed
- Scheduled re-checks with a bounded attempt budget
- JSON file storage for domain records

Usage:
    from tinydomains.domains import (
        DomainManager,
        DomainStore,
        VerificationEngine,
        VerificationScheduler,
    )

    store = DomainStore("domains.json")
    engine = VerificationEngine(config, store, tenants=store)
    scheduler = VerificationScheduler(config, engine)
    manager = DomainManager(config, store, scheduler)

    record = await manager.register_domain("links.mycompany.com", owner_id="tenant-1")
    info = await manager.request_verification("links.mycompany.com", owner_id="tenant-1")
"""

from tinydomains.domains.errors import (
    DomainConflictError,
    DomainError,
    DomainNotFoundError,
    IllegalTransitionError,
    InfrastructureError,
    InvalidInputError,
    NotConfiguredError,
    StoreUnavailableError,
    TerminalVerificationError,
    TransientVerificationError,
)
from tinydomains.domains.hostnames import HostClass, HostClassifier, normalize, validate_domain
from tinydomains.domains.manager import (
    DnsInstruction,
    DomainInfo,
    DomainManager,
    PropagationEstimate,
    dns_instructions,
    estimate_propagation,
)
from tinydomains.domains.scheduler import VerificationScheduler
from tinydomains.domains.states import STATUS_LABELS, DomainEvent, DomainStatus, transition
from tinydomains.domains.storage import (
    DomainRecord,
    DomainStore,
    MemoryDomainStore,
    RecordStore,
    StaticTenantDirectory,
    TenantDirectory,
)
from tinydomains.domains.verification import (
    CheckOutcome,
    DnsProbe,
    HttpProbe,
    Probe,
    ProbeResult,
    VerificationEngine,
    VerificationReport,
    create_probe,
)

__all__ = [
    # Errors
    "DomainError",
    "InvalidInputError",
    "DomainConflictError",
    "DomainNotFoundError",
    "NotConfiguredError",
    "TransientVerificationError",
    "TerminalVerificationError",
    "InfrastructureError",
    "StoreUnavailableError",
    "IllegalTransitionError",
    # Hostnames
    "HostClass",
    "HostClassifier",
    "normalize",
    "validate_domain",
    # States
    "DomainStatus",
    "DomainEvent",
    "STATUS_LABELS",
    "transition",
    # Storage
    "DomainRecord",
    "RecordStore",
    "TenantDirectory",
    "DomainStore",
    "MemoryDomainStore",
    "StaticTenantDirectory",
    # Verification
    "CheckOutcome",
    "ProbeResult",
    "Probe",
    "HttpProbe",
    "DnsProbe",
    "create_probe",
    "VerificationEngine",
    "VerificationReport",
    "VerificationScheduler",
    # Management
    "DomainManager",
    "DomainInfo",
    "DnsInstruction",
    "PropagationEstimate",
    "dns_instructions",
    "estimate_propagation",
]
