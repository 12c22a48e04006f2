"""Tinydomains Routing Module.

Maps an incoming request's Host header to a routing decision: pass the
request through, rewrite it to a tenant's page, or answer 404/502.

Usage:
    from tinydomains.routing import RequestRouter, Rewrite

    router = RequestRouter(config, engine)
    decision = await router.route("links.acme.test", "/")
"""

from tinydomains.routing.router import (
    NotFound,
    PassThrough,
    RequestRouter,
    Rewrite,
    RouteDecision,
    ServerError,
    strip_headers,
)

__all__ = [
    "RequestRouter",
    "RouteDecision",
    "PassThrough",
    "Rewrite",
    "NotFound",
    "ServerError",
    "strip_headers",
]
