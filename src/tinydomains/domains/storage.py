"""Storage for custom domain records.

Two record stores ship with the package:

- DomainStore: JSON file storage, suitable for self-hosted deployments.
- MemoryDomainStore: process-local storage for tests and embedding.

Storage file format (domains.json):
    {
        "domains": {
            "links.acme.test": {
                "domain": "links.acme.test",
                "owner_id": "tenant-1",
                "status": "active",
                "created_at": "2024-01-15T10:00:00+00:00",
                "last_attempt_at": "2024-01-15T10:12:00+00:00",
                "verification_started_at": "2024-01-15T10:00:10+00:00",
                "attempts": 3,
                "last_result": "success: platform router answered (404)"
            }
        },
        "tenants": {
            "tenant-1": "acme"
        }
    }

Stores hand out copies. Mutating a returned record has no effect until it
is written back with save() or update().
"""

from __future__ import annotations

import asyncio
import json
import os
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from tinydomains.domains.errors import StoreUnavailableError
from tinydomains.domains.states import DomainStatus


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass
class DomainRecord:
    """A custom domain owned by exactly one tenant."""

    domain: str
    owner_id: str
    status: DomainStatus = DomainStatus.PENDING
    created_at: datetime = field(default_factory=_utc_now)
    last_attempt_at: datetime | None = None
    verification_started_at: datetime | None = None
    attempts: int = 0
    last_result: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == DomainStatus.ACTIVE

    def same_claim(self, other: DomainRecord | None) -> bool:
        """True if other is the same registration (not a later re-registration)."""
        return (
            other is not None
            and other.domain == self.domain
            and other.owner_id == self.owner_id
            and other.created_at == self.created_at
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "domain": self.domain,
            "owner_id": self.owner_id,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "last_attempt_at": self.last_attempt_at.isoformat() if self.last_attempt_at else None,
            "verification_started_at": self.verification_started_at.isoformat()
            if self.verification_started_at
            else None,
            "attempts": self.attempts,
            "last_result": self.last_result,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DomainRecord:
        """Create from dictionary (JSON deserialization)."""
        return cls(
            domain=data["domain"],
            owner_id=data["owner_id"],
            status=DomainStatus(data.get("status", DomainStatus.PENDING.value)),
            created_at=_parse_dt(data.get("created_at")) or _utc_now(),
            last_attempt_at=_parse_dt(data.get("last_attempt_at")),
            verification_started_at=_parse_dt(data.get("verification_started_at")),
            attempts=data.get("attempts", 0),
            last_result=data.get("last_result"),
        )


class RecordStore(ABC):
    """Key-value + query interface over domain records."""

    @abstractmethod
    async def get(self, domain: str) -> DomainRecord | None:
        """Get a record by canonical domain, or None."""

    @abstractmethod
    async def add(self, record: DomainRecord) -> DomainRecord:
        """Insert a record unless the domain exists.

        Returns:
            The stored record: the new one, or the existing one untouched.
        """

    @abstractmethod
    async def save(self, record: DomainRecord) -> None:
        """Insert or replace a record."""

    @abstractmethod
    async def update(self, record: DomainRecord) -> bool:
        """Replace a record only if the same registration is still stored.

        Returns:
            False if the domain was deleted in the meantime, or deleted and
            registered again (a different owner or creation time).
        """

    @abstractmethod
    async def delete(self, domain: str) -> bool:
        """Delete a record. Returns False if not found."""

    @abstractmethod
    async def list_all(self) -> list[DomainRecord]:
        """Get all records."""

    async def list_by_owner(self, owner_id: str) -> list[DomainRecord]:
        return [r for r in await self.list_all() if r.owner_id == owner_id]

    async def list_by_status(self, *statuses: DomainStatus) -> list[DomainRecord]:
        return [r for r in await self.list_all() if r.status in statuses]

    async def exists(self, domain: str) -> bool:
        return await self.get(domain) is not None


class TenantDirectory(ABC):
    """Read-only view of tenants: id -> username."""

    @abstractmethod
    async def get_username(self, owner_id: str) -> str | None:
        """Return the tenant's username, or None if unknown."""


class StaticTenantDirectory(TenantDirectory):
    """Tenant directory backed by a mapping."""

    def __init__(self, tenants: Mapping[str, str] | None = None) -> None:
        self._tenants = dict(tenants or {})

    def set(self, owner_id: str, username: str) -> None:
        self._tenants[owner_id] = username

    async def get_username(self, owner_id: str) -> str | None:
        return self._tenants.get(owner_id)


class MemoryDomainStore(RecordStore):
    """In-memory record store."""

    def __init__(self, records: Iterable[DomainRecord] = ()) -> None:
        self._records: dict[str, DomainRecord] = {r.domain: replace(r) for r in records}
        self._lock = asyncio.Lock()

    async def get(self, domain: str) -> DomainRecord | None:
        record = self._records.get(domain)
        return replace(record) if record else None

    async def add(self, record: DomainRecord) -> DomainRecord:
        async with self._lock:
            existing = self._records.get(record.domain)
            if existing:
                return replace(existing)
            self._records[record.domain] = replace(record)
            return replace(record)

    async def save(self, record: DomainRecord) -> None:
        async with self._lock:
            self._records[record.domain] = replace(record)

    async def update(self, record: DomainRecord) -> bool:
        async with self._lock:
            if not record.same_claim(self._records.get(record.domain)):
                return False
            self._records[record.domain] = replace(record)
            return True

    async def delete(self, domain: str) -> bool:
        async with self._lock:
            return self._records.pop(domain, None) is not None

    async def list_all(self) -> list[DomainRecord]:
        return [replace(r) for r in self._records.values()]


class DomainStore(RecordStore, TenantDirectory):
    """JSON file-based storage for domain records and tenant usernames.

    Writes are serialized via an asyncio lock and land atomically through a
    temporary file. Reads are served from the in-memory cache without
    locking. Suitable for self-hosted deployments with moderate domain
    counts (<1000).
    """

    def __init__(self, storage_path: str | Path = "domains.json") -> None:
        """Initialize domain store.

        Args:
            storage_path: Path to the JSON storage file.
        """
        self.storage_path = Path(storage_path)
        self._lock = asyncio.Lock()
        self._cache: dict[str, DomainRecord] | None = None
        self._signature: tuple[int, int, int] | None = None
        self._tenants: dict[str, str] = {}

    def _stat_signature(self) -> tuple[int, int, int] | None:
        try:
            st = self.storage_path.stat()
            return st.st_ino, st.st_mtime_ns, st.st_size
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StoreUnavailableError(f"Cannot stat {self.storage_path}: {e}") from e

    async def _load(self) -> dict[str, DomainRecord]:
        """Load records from the storage file.

        The cache is reused until the file changes on disk, so edits made by
        another process (e.g. the CLI) reach a running server.
        """
        signature = self._stat_signature()
        if self._cache is not None and signature == self._signature:
            return self._cache

        if signature is None:
            self._cache = {}
            self._tenants = {}
            self._signature = None
            return self._cache

        try:
            content = await asyncio.to_thread(self.storage_path.read_text, encoding="utf-8")
            data = json.loads(content) if content.strip() else {}
            domains = {
                domain: DomainRecord.from_dict(record)
                for domain, record in data.get("domains", {}).items()
            }
        except (OSError, AttributeError, KeyError, TypeError, ValueError) as e:
            raise StoreUnavailableError(f"Cannot read {self.storage_path}: {e}") from e

        self._tenants = dict(data.get("tenants", {}))
        self._cache = domains
        self._signature = signature
        return self._cache

    async def _save(
        self, domains: dict[str, DomainRecord], tenants: dict[str, str] | None = None
    ) -> None:
        """Save records and tenants to the storage file."""
        if tenants is None:
            tenants = self._tenants
        data = {
            "domains": {domain: record.to_dict() for domain, record in domains.items()},
            "tenants": tenants,
        }
        content = json.dumps(data, indent=2)
        tmp_path = self.storage_path.with_suffix(self.storage_path.suffix + ".tmp")

        def _write() -> None:
            tmp_path.write_text(content, encoding="utf-8")
            os.replace(tmp_path, self.storage_path)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise StoreUnavailableError(f"Cannot write {self.storage_path}: {e}") from e
        self._cache = domains
        self._tenants = tenants
        self._signature = self._stat_signature()

    async def get(self, domain: str) -> DomainRecord | None:
        domains = await self._load()
        record = domains.get(domain)
        return replace(record) if record else None

    async def add(self, record: DomainRecord) -> DomainRecord:
        async with self._lock:
            domains = await self._load()
            existing = domains.get(record.domain)
            if existing:
                return replace(existing)
            await self._save({**domains, record.domain: replace(record)})
            return replace(record)

    async def save(self, record: DomainRecord) -> None:
        async with self._lock:
            domains = await self._load()
            await self._save({**domains, record.domain: replace(record)})

    async def update(self, record: DomainRecord) -> bool:
        async with self._lock:
            domains = await self._load()
            if not record.same_claim(domains.get(record.domain)):
                return False
            await self._save({**domains, record.domain: replace(record)})
            return True

    async def delete(self, domain: str) -> bool:
        async with self._lock:
            domains = await self._load()
            if domain not in domains:
                return False
            remaining = dict(domains)
            del remaining[domain]
            await self._save(remaining)
            return True

    async def list_all(self) -> list[DomainRecord]:
        domains = await self._load()
        return [replace(r) for r in domains.values()]

    async def get_username(self, owner_id: str) -> str | None:
        await self._load()
        return self._tenants.get(owner_id)

    async def save_tenant(self, owner_id: str, username: str) -> None:
        """Record a tenant's username for routing."""
        async with self._lock:
            domains = await self._load()
            await self._save(domains, {**self._tenants, owner_id: username})

    def invalidate_cache(self) -> None:
        """Invalidate the in-memory cache.

        Call this after external modifications to the storage file.
        """
        self._cache = None
        self._signature = None
