"""HTTP entrypoint for the client portal metrics API."""

from __future__ import annotations

import argparse
import asyncio
import logging
import time
from asyncio import Lock
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from starlette.applications import Starlette
from starlette.exceptions import HTTPException
from starlette.middleware import Middleware
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Match, Route

from .bootstrap import build_cache_store, build_database, build_rate_limiter, build_sources, shutdown_sources
from .clock import Clock, utcnow
from .config import Settings, get_settings
from .db import Database
from .health import SourceHealthMonitor
from .metrics import metrics_payload, record_http_request
from .models import RefreshQuota, RefreshRejected
from .orchestrator import MetricsOrchestrator
from .sources import SourceRegistry
from .websites import NotAuthorized, ResourceNotFound, WebsiteDirectory

logger = logging.getLogger(__name__)

CLIENT_HEADER = "X-Client-Id"
REFRESHED_MESSAGE = "Metrics refreshed successfully"


class PortalRuntime:
    """Shared runtime objects for the HTTP API and the CLI."""

    def __init__(
        self,
        *,
        settings: Settings,
        database: Database,
        websites: WebsiteDirectory,
        orchestrator: MetricsOrchestrator,
        sources: SourceRegistry,
        health_monitor: SourceHealthMonitor,
    ) -> None:
        self.settings = settings
        self.database = database
        self.websites = websites
        self.orchestrator = orchestrator
        self.sources = sources
        self.health_monitor = health_monitor
        self._shutdown_lock = Lock()
        self._is_shutdown = False

    @classmethod
    async def create(cls, settings: Settings, *, clock: Clock = utcnow) -> "PortalRuntime":
        database = await asyncio.to_thread(build_database, settings)
        health_monitor = SourceHealthMonitor()
        sources = build_sources(settings, health_monitor, clock=clock)
        orchestrator = MetricsOrchestrator(
            build_cache_store(settings, database, clock=clock),
            build_rate_limiter(settings, database, clock=clock),
            sources,
            clock=clock,
        )
        return cls(
            settings=settings,
            database=database,
            websites=WebsiteDirectory(database, clock=clock),
            orchestrator=orchestrator,
            sources=sources,
            health_monitor=health_monitor,
        )

    async def shutdown(self) -> None:
        async with self._shutdown_lock:
            if self._is_shutdown:
                return
            self._is_shutdown = True
            await shutdown_sources(self.sources)
            self.database.dispose()


def _client_id(request: Request) -> int:
    raw = request.headers.get(CLIENT_HEADER, "").strip()
    try:
        client_id = int(raw)
    except ValueError:
        raise HTTPException(status_code=401, detail="Unauthorized. Please log in.") from None
    if client_id < 1:
        raise HTTPException(status_code=401, detail="Unauthorized. Please log in.")
    return client_id


def _quota_payload(quota: RefreshQuota) -> dict[str, Any]:
    return {
        "allowed": quota.allowed,
        "remaining": quota.remaining,
        "next_available": quota.next_available_at.isoformat() if quota.next_available_at else None,
    }


def _rejection_response(rejection: RefreshRejected) -> JSONResponse:
    status_code = 429 if rejection.reason == "quota_exceeded" else 503
    next_available = rejection.next_available_at.isoformat() if rejection.next_available_at else None
    return JSONResponse(
        {
            "error": rejection.message,
            "reason": rejection.reason,
            "remaining": rejection.remaining,
            "retry_after": rejection.retry_after_seconds,
            "next_available": next_available,
        },
        status_code=status_code,
        headers={"Retry-After": str(rejection.retry_after_seconds)},
    )


def _route_template(request: Request) -> str:
    for route in request.app.routes:
        match, _ = route.matches(request.scope)
        if match is Match.FULL:
            return getattr(route, "path", request.url.path)
    return "unmatched"


class HTTPMetricsMiddleware(BaseHTTPMiddleware):
    """Records request counts and latency per route template."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            record_http_request(
                request.method,
                _route_template(request),
                status_code,
                time.perf_counter() - start,
            )


def create_app(runtime: PortalRuntime) -> Starlette:
    """Build the Starlette application around a runtime."""

    @asynccontextmanager
    async def lifespan(_app):
        try:
            yield
        finally:
            await runtime.shutdown()

    async def health_endpoint(_request: Request) -> JSONResponse:
        database_ok = await asyncio.to_thread(runtime.database.ping)
        return JSONResponse(
            {
                "status": "ok" if database_ok else "degraded",
                "database": database_ok,
                "sources": runtime.health_monitor.summary(),
            },
            status_code=200 if database_ok else 503,
        )

    async def metrics_endpoint(_request: Request) -> Response:
        payload, content_type = metrics_payload()
        return Response(payload, media_type=content_type)

    async def list_websites(request: Request) -> JSONResponse:
        client_id = _client_id(request)
        websites = await asyncio.to_thread(runtime.websites.list_for_client, client_id)
        return JSONResponse(
            {
                "success": True,
                "websites": [website.model_dump(mode="json") for website in websites],
                "count": len(websites),
            }
        )

    async def website_metrics(request: Request) -> JSONResponse:
        client_id = _client_id(request)
        website_id = request.path_params["website_id"]
        website = await asyncio.to_thread(runtime.websites.get_for_client, website_id, client_id)
        dashboard = await runtime.orchestrator.read_metrics(website)
        return JSONResponse(
            {
                "success": True,
                "website_id": dashboard.website_id,
                "metrics": dashboard.metrics.model_dump(mode="json"),
                "refresh": _quota_payload(dashboard.refresh),
            }
        )

    async def refresh_website(request: Request) -> JSONResponse:
        client_id = _client_id(request)
        website_id = request.path_params["website_id"]
        website = await asyncio.to_thread(runtime.websites.get_for_client, website_id, client_id)
        result = await runtime.orchestrator.refresh(website, client_id)
        if isinstance(result, RefreshRejected):
            return _rejection_response(result)
        return JSONResponse(
            {
                "success": True,
                "message": REFRESHED_MESSAGE,
                "refreshed": [kind.value for kind in result.refreshed],
                "metrics": result.metrics.model_dump(mode="json"),
                "refresh": _quota_payload(result.refresh),
            }
        )

    async def http_error(_request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=exc.headers)

    async def not_found(_request: Request, exc: ResourceNotFound) -> JSONResponse:
        return JSONResponse({"error": "Website not found"}, status_code=404)

    async def not_authorized(_request: Request, exc: NotAuthorized) -> JSONResponse:
        return JSONResponse({"error": "Website not found or access denied"}, status_code=403)

    async def server_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_error path=%s", request.url.path, exc_info=exc)
        return JSONResponse({"error": "Internal server error"}, status_code=500)

    routes = [
        Route("/healthz", endpoint=health_endpoint, methods=["GET"]),
        Route("/metrics", endpoint=metrics_endpoint, methods=["GET"]),
        Route("/api/websites", endpoint=list_websites, methods=["GET"]),
        Route("/api/websites/{website_id:int}/metrics", endpoint=website_metrics, methods=["GET"]),
        Route("/api/websites/{website_id:int}/refresh", endpoint=refresh_website, methods=["POST"]),
    ]

    return Starlette(
        routes=routes,
        middleware=[Middleware(HTTPMetricsMiddleware)],
        exception_handlers={
            HTTPException: http_error,
            NotAuthorized: not_authorized,
            ResourceNotFound: not_found,
            Exception: server_error,
        },
        lifespan=lifespan,
    )


async def serve_http(
    settings: Settings,
    *,
    host: str,
    port: int,
    log_level: str,
) -> None:
    runtime = await PortalRuntime.create(settings)
    app = create_app(runtime)

    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level=log_level.lower(),
        loop="asyncio",
    )
    server = uvicorn.Server(config)

    try:
        logger.info("Starting portal metrics API on %s:%s", host, port)
        await server.serve()
    finally:
        await runtime.shutdown()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Run the client portal metrics API")
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host/IP to bind.",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (DEBUG, INFO, WARNING, ERROR).",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))
    asyncio.run(
        serve_http(
            get_settings(),
            host=args.host,
            port=args.port,
            log_level=args.log_level,
        )
    )


if __name__ == "__main__":  # pragma: no cover
    main()
