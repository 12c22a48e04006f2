"""Request-time routing for custom domains.

For every incoming request the router decides, from the Host header and the
path alone, how the edge should serve it:

    PassThrough  -> platform/development host or reserved path; serve as-is
    Rewrite      -> active custom domain; serve /{username}{path} instead
    NotFound     -> custom domain without an active record
    ServerError  -> the domain lookup failed or timed out

Usage:
    router = RequestRouter(config, engine)
    decision = await router.route("links.acme.test", "/about")
    if isinstance(decision, Rewrite):
        print(decision.target_path)  # /acme/about
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import MutableMapping
from dataclasses import dataclass, field

import structlog

from tinydomains.core.config import DomainsConfig
from tinydomains.domains.errors import InfrastructureError
from tinydomains.domains.hostnames import HostClass, HostClassifier, normalize
from tinydomains.domains.verification import VerificationEngine
from tinydomains.observability.metrics import LOOKUP_DURATION, ROUTE_DECISIONS

logger = structlog.get_logger()


@dataclass(frozen=True)
class PassThrough:
    """Serve the request unchanged."""

    kind: str = field(default="pass_through", init=False)


@dataclass(frozen=True)
class Rewrite:
    """Serve the tenant's page for an active custom domain."""

    username: str
    path: str
    strip_headers: tuple[str, ...] = ()
    kind: str = field(default="rewrite", init=False)

    @property
    def target_path(self) -> str:
        path = self.path if self.path.startswith("/") else f"/{self.path}"
        return f"/{self.username}{path}"


@dataclass(frozen=True)
class NotFound:
    """The host is a custom domain with no active record."""

    kind: str = field(default="not_found", init=False)


@dataclass(frozen=True)
class ServerError:
    """The routing decision could not be made."""

    reason: str
    kind: str = field(default="server_error", init=False)


RouteDecision = PassThrough | Rewrite | NotFound | ServerError


def strip_headers(headers: MutableMapping[str, str], names: tuple[str, ...] | list[str]) -> None:
    """Remove the named headers (case-insensitive) in place."""
    wanted = {name.lower() for name in names}
    for key in {k for k in headers if k.lower() in wanted}:
        if key in headers:
            del headers[key]


class RequestRouter:
    """Decides how to serve a request based on its Host header."""

    def __init__(self, config: DomainsConfig, engine: VerificationEngine) -> None:
        self.config = config
        self.engine = engine
        self.classifier = HostClassifier(config)
        self._passthrough = tuple(config.passthrough_prefixes)
        self._strip = tuple(config.stripped_headers)

    def is_passthrough_path(self, path: str) -> bool:
        """Match reserved prefixes on whole path segments.

        A prefix ending in "/" matches anything below it; any other prefix
        matches itself or a sub-path, so "/404" does not cover "/4040".
        """
        for prefix in self._passthrough:
            if prefix.endswith("/"):
                if path.startswith(prefix):
                    return True
            elif path == prefix or path.startswith(prefix + "/"):
                return True
        return False

    async def route(self, raw_host: str | None, path: str) -> RouteDecision:
        """Route a request.

        Args:
            raw_host: Host header as received (may include a port).
            path: Request path.

        Returns:
            The routing decision. Never raises for lookup failures.
        """
        path = path.strip() or "/"
        decision = await self._decide(raw_host or "", path)
        ROUTE_DECISIONS.labels(decision=decision.kind).inc()
        return decision

    async def _decide(self, raw_host: str, path: str) -> RouteDecision:
        if self.is_passthrough_path(path):
            return PassThrough()

        host = normalize(raw_host)
        if self.classifier.classify(host) != HostClass.CANDIDATE:
            return PassThrough()

        start = time.perf_counter()
        try:
            username = await asyncio.wait_for(
                self.engine.resolve(host), timeout=self.config.lookup_timeout
            )
        except TimeoutError:
            logger.warning("Domain lookup timed out", domain=host, timeout=self.config.lookup_timeout)
            return ServerError("lookup timed out")
        except InfrastructureError as e:
            logger.error("Domain lookup failed", domain=host, error=str(e))
            return ServerError("lookup failed")
        finally:
            LOOKUP_DURATION.observe(time.perf_counter() - start)

        if username is None:
            return NotFound()
        return Rewrite(username=username, path=path, strip_headers=self._strip)
