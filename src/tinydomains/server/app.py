"""Tinydomains edge server.

aiohttp application that sits in front of the page renderer:

- routing middleware: maps custom domains to tenant pages, answers 404/502
  for unknown or unreachable domains, passes platform traffic through
- GET /api/domains/verify: verification query surface (also what the HTTP
  probe reaches through a tenant's DNS)
- /api/domains: tenant domain management (tenant id in X-Tenant-Id)
- /health and /metrics

Usage:
    server = EdgeServer(config, store, tenants=store)
    await server.start()
    ...
    await server.stop()
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

import aiohttp
import structlog
from aiohttp import web

from tinydomains.core.config import DomainsConfig
from tinydomains.domains.errors import (
    DomainConflictError,
    DomainError,
    DomainNotFoundError,
    InfrastructureError,
    InvalidInputError,
)
from tinydomains.domains.hostnames import HostClass, HostClassifier, normalize
from tinydomains.domains.manager import DomainManager
from tinydomains.domains.scheduler import VerificationScheduler
from tinydomains.domains.storage import RecordStore, TenantDirectory
from tinydomains.domains.verification import (
    ROUTER_SIGNATURE_HEADER,
    VERIFY_PATH,
    VerificationEngine,
)
from tinydomains.observability.metrics import HTTP_REQUESTS, generate_metrics, get_content_type
from tinydomains.routing.router import NotFound, PassThrough, RequestRouter, Rewrite, strip_headers

logger = structlog.get_logger()

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]

TENANT_HEADER = "X-Tenant-Id"

# Connection-level headers never forwarded between client and upstream.
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
        "host",
        "content-length",
    }
)


def _plain(text: str, status: int) -> web.Response:
    return web.Response(text=text, status=status, content_type="text/plain")


def _error(message: str, status: int) -> web.Response:
    return web.json_response({"error": message}, status=status)


class EdgeServer:
    """HTTP edge for custom domains."""

    def __init__(
        self,
        config: DomainsConfig,
        store: RecordStore,
        tenants: TenantDirectory,
        engine: VerificationEngine | None = None,
        scheduler: VerificationScheduler | None = None,
        upstream: Handler | None = None,
        run_scheduler: bool = True,
    ) -> None:
        """Initialize the edge.

        Args:
            config: Immutable domain configuration.
            store: Domain record store.
            tenants: Tenant id -> username lookup.
            engine: Verification engine. Built from config if omitted.
            scheduler: Verification scheduler. Built from config if omitted.
            upstream: Handler serving pages. Defaults to proxying to
                config.upstream_url.
            run_scheduler: Run the background verification loop while serving.
        """
        self.config = config
        self.store = store
        self.engine = engine or VerificationEngine(config, store, tenants)
        self.scheduler = scheduler or VerificationScheduler(config, self.engine)
        self.manager = DomainManager(config, store, self.scheduler)
        self.router = RequestRouter(config, self.engine)
        self.classifier = HostClassifier(config)
        self.run_scheduler = run_scheduler
        self._upstream = upstream or self._proxy_upstream
        self._session: aiohttp.ClientSession | None = None
        self._runner: web.AppRunner | None = None

    def build_app(self) -> web.Application:
        """Create the aiohttp application."""
        app = web.Application(middlewares=[self._routing_middleware])
        app.router.add_get("/health", self._handle_health_check)
        app.router.add_get("/metrics", self._handle_metrics)
        app.router.add_get(VERIFY_PATH, self._handle_verify)
        app.router.add_post("/api/domains", self._handle_add_domain)
        app.router.add_get("/api/domains", self._handle_list_domains)
        app.router.add_get("/api/domains/{domain}", self._handle_get_domain)
        app.router.add_delete("/api/domains/{domain}", self._handle_delete_domain)
        app.router.add_post("/api/domains/{domain}/verify", self._handle_request_verification)
        app.router.add_route("*", "/{path:.*}", self._handle_page)
        app.on_startup.append(self._on_startup)
        app.on_cleanup.append(self._on_cleanup)
        return app

    async def _on_startup(self, app: web.Application) -> None:
        if self.run_scheduler:
            self.scheduler.start()

    async def _on_cleanup(self, app: web.Application) -> None:
        await self.scheduler.stop()
        await self.engine.close()
        if self._session is not None:
            await self._session.close()
            self._session = None

    @web.middleware
    async def _routing_middleware(self, request: web.Request, handler: Handler) -> web.StreamResponse:
        request_start = time.time()
        decision = await self.router.route(request.host, request.path)

        try:
            if isinstance(decision, PassThrough):
                response = await handler(request)
            elif isinstance(decision, Rewrite):
                rel_url = request.rel_url.with_path(decision.target_path).with_query(
                    request.rel_url.query
                )
                response = await self._upstream(request.clone(rel_url=rel_url))
                strip_headers(response.headers, decision.strip_headers)
            elif isinstance(decision, NotFound):
                response = _plain("Not Found", 404)
            else:
                response = _plain("Bad Gateway", 502)
        except web.HTTPException as e:
            HTTP_REQUESTS.labels(method=request.method, status=str(e.status)).inc()
            raise

        HTTP_REQUESTS.labels(method=request.method, status=str(response.status)).inc()
        logger.debug(
            "Request routed",
            host=request.host,
            path=request.path,
            decision=decision.kind,
            status=response.status,
            duration_ms=round((time.time() - request_start) * 1000, 2),
        )
        return response

    async def _handle_health_check(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "healthy"})

    async def _handle_metrics(self, request: web.Request) -> web.Response:
        """Prometheus metrics endpoint."""
        return web.Response(body=generate_metrics(), headers={"Content-Type": get_content_type()})

    async def _handle_verify(self, request: web.Request) -> web.Response:
        """Answer which username a domain routes to.

        Platform and development hosts answer "root" and "dev". Every response
        carries the router signature so probes can tell it came from us.
        """
        response = await self._verify_response(request.query.get("domain", ""))
        response.headers[ROUTER_SIGNATURE_HEADER] = self.config.platform_root
        return response

    async def _verify_response(self, raw_domain: str) -> web.Response:
        domain = normalize(raw_domain)
        if not domain:
            return _error("No domain provided", 400)

        host_class = self.classifier.classify(domain)
        if host_class == HostClass.DEVELOPMENT:
            return web.json_response({"username": "dev"})
        if host_class == HostClass.PLATFORM:
            return web.json_response({"username": "root"})

        try:
            username = await self.engine.resolve(domain)
        except InfrastructureError as e:
            logger.error("Domain verification lookup failed", domain=domain, error=str(e))
            return _error("Verification failed", 500)

        if username is None:
            return _error("Domain not found", 404)
        return web.json_response({"username": username})

    def _tenant_id(self, request: web.Request) -> str:
        tenant_id = request.headers.get(TENANT_HEADER, "").strip()
        if not tenant_id:
            raise web.HTTPUnauthorized(
                text='{"error": "Missing X-Tenant-Id header"}',
                content_type="application/json",
            )
        return tenant_id

    def _domain_error_response(self, error: DomainError) -> web.Response:
        if isinstance(error, DomainConflictError):
            return _error(str(error), 409)
        if isinstance(error, InvalidInputError):
            return _error(str(error), 400)
        if isinstance(error, DomainNotFoundError):
            return _error(str(error), 404)
        if isinstance(error, InfrastructureError):
            logger.error("Domain storage unavailable", error=str(error))
            return _error("Storage unavailable", 503)
        return _error(str(error), 400)

    async def _handle_add_domain(self, request: web.Request) -> web.Response:
        tenant_id = self._tenant_id(request)
        try:
            body: Any = await request.json()
        except ValueError:
            return _error("Invalid JSON body", 400)
        if not isinstance(body, dict) or not isinstance(body.get("domain"), str):
            return _error("No domain provided", 400)

        try:
            record = await self.manager.register_domain(body["domain"], owner_id=tenant_id)
        except DomainError as e:
            return self._domain_error_response(e)

        self.scheduler.watch(record.domain)
        return web.json_response(self.manager.describe(record).to_dict(), status=201)

    async def _handle_list_domains(self, request: web.Request) -> web.Response:
        tenant_id = self._tenant_id(request)
        try:
            infos = await self.manager.list_domains(owner_id=tenant_id)
        except DomainError as e:
            return self._domain_error_response(e)
        return web.json_response({"domains": [info.to_dict() for info in infos]})

    async def _handle_get_domain(self, request: web.Request) -> web.Response:
        tenant_id = self._tenant_id(request)
        try:
            info = await self.manager.get_domain_info(request.match_info["domain"], tenant_id)
        except DomainError as e:
            return self._domain_error_response(e)
        # The dashboard polls this while the domain page is open.
        if info.estimate is not None:
            self.scheduler.watch(info.domain)
        return web.json_response(info.to_dict())

    async def _handle_delete_domain(self, request: web.Request) -> web.Response:
        tenant_id = self._tenant_id(request)
        try:
            deleted = await self.manager.delete_domain(request.match_info["domain"], tenant_id)
        except DomainError as e:
            return self._domain_error_response(e)
        if not deleted:
            return _error("Domain not found", 404)
        return web.Response(status=204)

    async def _handle_request_verification(self, request: web.Request) -> web.Response:
        tenant_id = self._tenant_id(request)
        try:
            info = await self.manager.request_verification(request.match_info["domain"], tenant_id)
        except DomainError as e:
            return self._domain_error_response(e)
        return web.json_response(info.to_dict())

    async def _handle_page(self, request: web.Request) -> web.StreamResponse:
        return await self._upstream(request)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.attempt_timeout * 3)
            )
        return self._session

    async def _proxy_upstream(self, request: web.Request) -> web.StreamResponse:
        """Forward a request to the page renderer."""
        if not self.config.upstream_url:
            return _plain("Not Found", 404)

        url = self.config.upstream_url.rstrip("/") + str(request.rel_url)
        headers = {k: v for k, v in request.headers.items() if k.lower() not in HOP_BY_HOP_HEADERS}
        headers["X-Forwarded-Host"] = request.host
        headers["X-Forwarded-Proto"] = request.scheme
        body = await request.read()

        try:
            async with self._get_session().request(
                request.method,
                url,
                headers=headers,
                data=body or None,
                allow_redirects=False,
            ) as upstream:
                payload = await upstream.read()
                response_headers = upstream.headers.copy()
        except (aiohttp.ClientError, TimeoutError) as e:
            logger.error("Upstream request failed", url=url, error=str(e))
            return _plain("Bad Gateway", 502)

        for name in HOP_BY_HOP_HEADERS | {"content-encoding"}:
            response_headers.popall(name, None)
        return web.Response(status=upstream.status, body=payload, headers=response_headers)

    def _parse_bind(self, bind: str) -> tuple[str, int]:
        """Parse bind address into host and port."""
        if ":" in bind:
            host, port = bind.rsplit(":", 1)
            return host, int(port)
        return bind, 8080

    async def start(self) -> None:
        """Start serving on config.bind."""
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()

        host, port = self._parse_bind(self.config.bind)
        site = web.TCPSite(self._runner, host, port)
        await site.start()
        logger.info(
            "Edge server started",
            host=host,
            port=port,
            platform_root=self.config.platform_root,
            upstream=self.config.upstream_url,
        )

    async def stop(self) -> None:
        """Stop serving and release resources."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        logger.info("Edge server stopped")

    async def serve_forever(self) -> None:
        """Start and block until cancelled."""
        await self.start()
        try:
            await asyncio.Event().wait()
        finally:
            await self.stop()


def create_server(
    config: DomainsConfig,
    store: RecordStore,
    tenants: TenantDirectory,
    **kwargs: Any,
) -> EdgeServer:
    """Factory function to create an edge server."""
    return EdgeServer(config, store, tenants, **kwargs)
