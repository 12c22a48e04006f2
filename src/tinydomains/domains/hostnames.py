"""Hostname normalization and classification.

Every component that compares hostnames (the request router, the
verification engine, the domain manager and the verification query
endpoint) goes through normalize() so a domain stored at registration
time is byte-identical to what the router sees on live traffic.

Classification decides whether a host belongs to the platform itself, is a
development alias, or is a candidate custom domain that must be looked up:

    - tiny.pm, www.tiny.pm, a.b.tiny.pm      -> PLATFORM
    - 10.0.0.1, [::1]:8080                    -> PLATFORM (no tenant owns a bare IP)
    - localhost, app.localhost (non-prod)     -> DEVELOPMENT
    - links.example.com                       -> CANDIDATE
"""

from __future__ import annotations

import re
from enum import Enum
from ipaddress import ip_address
from typing import TYPE_CHECKING

from tinydomains.domains.errors import InvalidInputError

if TYPE_CHECKING:
    from tinydomains.core.config import DomainsConfig

MAX_HOSTNAME_LENGTH = 253

_LABEL_RE = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")


class HostClass(Enum):
    """Routing class of a normalized hostname."""

    PLATFORM = "platform"
    DEVELOPMENT = "development"
    CANDIDATE = "candidate"


def normalize(raw_host: str) -> str:
    """Reduce a raw Host header value to its canonical comparable form.

    Lower-cases, then strips surrounding whitespace, trailing dots, a
    trailing ``:port`` and IPv6 brackets until nothing more comes off.
    Never raises; malformed input comes back lower-cased. Idempotent.

    Examples:
        >>> normalize("Links.Example.COM:443")
        'links.example.com'
        >>> normalize("[::1]:8080")
        '::1'
        >>> normalize("tiny.pm.")
        'tiny.pm'
    """
    host = (raw_host or "").lower()
    # dropping a port can expose more dots or whitespace
    while True:
        reduced = _strip_host(host)
        if reduced == host:
            return host
        host = reduced


def _strip_host(host: str) -> str:
    host = host.strip().rstrip(".")
    if host.startswith("["):
        end = host.find("]")
        if end != -1:
            host = host[1:end]
    elif host.count(":") == 1:
        name, _, port = host.partition(":")
        if port == "" or port.isdigit():
            host = name
    return host


def is_ip_literal(host: str) -> bool:
    """Check if a normalized host is an IPv4 or IPv6 address."""
    try:
        ip_address(host)
    except ValueError:
        return False
    return True


def is_same_or_subdomain(host: str, root: str) -> bool:
    """Check if host equals root or is any subdomain of it."""
    return host == root or host.endswith(f".{root}")


def validate_domain(raw_domain: str) -> str:
    """Normalize and validate a domain submitted by a tenant.

    Internationalized names are converted to their IDNA (punycode) form.

    Returns:
        The canonical domain.

    Raises:
        InvalidInputError: If the domain is missing or not a valid hostname.
    """
    if raw_domain is None or not raw_domain.strip():
        raise InvalidInputError("No domain provided")

    domain = normalize(raw_domain)

    if not domain.isascii():
        try:
            domain = domain.encode("idna").decode("ascii")
        except UnicodeError as e:
            raise InvalidInputError(f"Invalid domain: {raw_domain}") from e

    if is_ip_literal(domain):
        raise InvalidInputError("IP addresses cannot be used as custom domains")

    if len(domain) > MAX_HOSTNAME_LENGTH:
        raise InvalidInputError("Domain name is too long")

    labels = domain.split(".")
    if len(labels) < 2:
        raise InvalidInputError(f"Domain must include a top-level domain: {domain}")

    for label in labels:
        if not _LABEL_RE.match(label):
            raise InvalidInputError(f"Invalid domain: {domain}")

    if labels[-1].isdigit():
        raise InvalidInputError(f"Invalid top-level domain: {domain}")

    return domain


class HostClassifier:
    """Classifies normalized hostnames for routing.

    Development aliases only apply when the deployment is not in production,
    so a crafted Host header can never skip the domain lookup in production.
    """

    def __init__(self, config: DomainsConfig) -> None:
        self.platform_root = config.platform_root
        self.allow_development = not config.is_production
        self._dev_aliases = frozenset(config.dev_aliases)
        self._dev_suffixes = tuple(config.dev_suffixes)

    def is_platform(self, host: str) -> bool:
        return is_same_or_subdomain(host, self.platform_root)

    def is_development(self, host: str) -> bool:
        if not self.allow_development:
            return False
        if host in self._dev_aliases:
            return True
        return any(host.endswith(suffix) for suffix in self._dev_suffixes)

    def classify(self, host: str) -> HostClass:
        """Classify a normalized hostname.

        Args:
            host: Output of normalize().

        Returns:
            PLATFORM, DEVELOPMENT or CANDIDATE.
        """
        if not host or self.is_platform(host):
            return HostClass.PLATFORM
        if self.is_development(host):
            return HostClass.DEVELOPMENT
        if is_ip_literal(host):
            return HostClass.PLATFORM
        return HostClass.CANDIDATE
