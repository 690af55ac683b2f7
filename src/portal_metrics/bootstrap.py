"""Bootstrap helpers for the database, stores and metric sources."""

from __future__ import annotations

import asyncio
import logging

import httpx

from .cache_store import MetricCacheStore
from .clock import Clock, utcnow
from .config import Settings
from .db import Database
from .health import SourceHealthMonitor
from .live_fetch import LiveFetchClient
from .models import MetricKind
from .rate_limiter import RefreshRateLimiter
from .sources import PageSpeedSource, SourceRegistry, UptimeRobotSource

logger = logging.getLogger(__name__)


def build_database(settings: Settings, *, create_schema: bool = True) -> Database:
    database = Database(settings.database_url)
    if create_schema:
        database.create_all()
    return database


def build_cache_store(settings: Settings, database: Database, *, clock: Clock = utcnow) -> MetricCacheStore:
    return MetricCacheStore(
        database,
        {kind: settings.ttl_for(kind) for kind in MetricKind},
        clock=clock,
    )


def build_rate_limiter(settings: Settings, database: Database, *, clock: Clock = utcnow) -> RefreshRateLimiter:
    return RefreshRateLimiter(
        database,
        limit=settings.refresh_rate_limit,
        window=settings.refresh_window,
        clock=clock,
    )


def build_sources(
    settings: Settings,
    health_monitor: SourceHealthMonitor | None = None,
    *,
    clock: Clock = utcnow,
    transport: httpx.AsyncBaseTransport | None = None,
) -> SourceRegistry:
    """Create one source per metric kind, each with its own HTTP client."""

    uptime_client = LiveFetchClient(
        settings,
        source_id=UptimeRobotSource.source_id,
        timeout=settings.uptime_timeout_seconds,
        monitor=health_monitor,
        transport=transport,
    )
    performance_client = LiveFetchClient(
        settings,
        source_id=PageSpeedSource.source_id,
        timeout=settings.performance_timeout_seconds,
        monitor=health_monitor,
        transport=transport,
    )
    return SourceRegistry(
        [
            UptimeRobotSource(settings, uptime_client, clock=clock),
            PageSpeedSource(settings, performance_client, clock=clock),
        ]
    )


async def shutdown_sources(registry: SourceRegistry) -> None:
    tasks = [source.shutdown() for source in registry.all()]
    if not tasks:
        return
    results = await asyncio.gather(*tasks, return_exceptions=True)
    for result in results:
        if isinstance(result, asyncio.CancelledError):
            logger.debug("Source shutdown cancelled; ignoring.")
            continue
        if isinstance(result, Exception):
            logger.warning("Source shutdown raised an exception: %s", result, exc_info=result)
