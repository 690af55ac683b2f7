"""Coordinates the metric cache, the refresh limiter and the live sources."""

from __future__ import annotations

import asyncio
import logging
import math
import weakref
from datetime import datetime

from .cache_store import MetricCacheStore
from .clock import Clock, utcnow
from .db import StorageFailure
from .metrics import record_cache_lookup, record_refresh
from .models import (
    CachedMetric,
    DashboardMetrics,
    MetricKind,
    MetricsBundle,
    MetricView,
    RefreshQuota,
    RefreshRejected,
    RefreshResult,
    Website,
)
from .rate_limiter import RefreshRateLimiter
from .sources.base import BaseSource, SnapshotT, SourceRegistry

logger = logging.getLogger(__name__)

QUOTA_EXCEEDED_MESSAGE = "Rate limit exceeded. Please wait before refreshing again."
QUOTA_UNAVAILABLE_MESSAGE = "Refresh is temporarily unavailable. Please try again later."
QUOTA_UNAVAILABLE_RETRY_SECONDS = 60


class MetricsOrchestrator:
    """Serves dashboard reads lazily and explicit refreshes eagerly.

    Reads follow a per-kind state machine: a fresh cache row is served as is;
    a stale or missing row triggers a live fetch whose success is written
    through, while a failure falls back to the stale row when there is one.
    Refreshes are quota-checked and logged before any fetch, always go to the
    sources, and never fall back to cached values.
    """

    def __init__(
        self,
        cache_store: MetricCacheStore,
        rate_limiter: RefreshRateLimiter,
        sources: SourceRegistry,
        *,
        clock: Clock = utcnow,
    ) -> None:
        self._cache = cache_store
        self._limiter = rate_limiter
        self._sources = sources
        self._clock = clock
        # entries disappear once no refresh holds or awaits the lock
        self._locks: weakref.WeakValueDictionary[int, asyncio.Lock] = weakref.WeakValueDictionary()

    async def read_metrics(self, website: Website) -> DashboardMetrics:
        sources = self._sources.all()
        views = await asyncio.gather(*(self._read_kind(website, source) for source in sources))
        bundle = MetricsBundle(**{source.kind.value: view for source, view in zip(sources, views)})
        return DashboardMetrics(
            website_id=website.id,
            metrics=bundle,
            refresh=await self.quota(website.id),
        )

    async def refresh(self, website: Website, actor_id: str | int) -> RefreshResult | RefreshRejected:
        lock = self._locks.setdefault(website.id, asyncio.Lock())
        async with lock:
            try:
                quota = await asyncio.to_thread(self._limiter.can_refresh, website.id)
                if not quota.allowed:
                    return self._reject(website, quota)
                await asyncio.to_thread(self._limiter.log_refresh, website.id, actor_id)
            except StorageFailure as exc:
                logger.warning("refresh_quota_unavailable website=%s error=%s", website.id, exc)
                record_refresh("unavailable")
                return RefreshRejected(
                    website_id=website.id,
                    reason="quota_unavailable",
                    message=QUOTA_UNAVAILABLE_MESSAGE,
                    retry_after_seconds=QUOTA_UNAVAILABLE_RETRY_SECONDS,
                )

        record_refresh("accepted")
        logger.info("refresh_accepted website=%s actor=%s", website.id, actor_id)
        sources = self._sources.all()
        views = await asyncio.gather(*(self._refresh_kind(website, source) for source in sources))
        refreshed = [source.kind for source, view in zip(sources, views) if view.snapshot.available]
        return RefreshResult(
            website_id=website.id,
            refreshed=refreshed,
            metrics=MetricsBundle(**{source.kind.value: view for source, view in zip(sources, views)}),
            refresh=await self.quota(website.id),
        )

    async def quota(self, website_id: int) -> RefreshQuota:
        """Return the current refresh allowance, denying it if the log is unreachable."""

        try:
            return await asyncio.to_thread(self._limiter.can_refresh, website_id)
        except StorageFailure as exc:
            logger.warning("refresh_quota_lookup_failed website=%s error=%s", website_id, exc)
            return RefreshQuota(allowed=False, remaining=0)

    async def _read_kind(self, website: Website, source: BaseSource) -> MetricView:
        kind = source.kind
        cached = await self._cached(website.id, kind)
        if cached is not None and not cached.is_stale(self._clock()):
            record_cache_lookup(kind.value, "fresh")
            return MetricView(snapshot=cached.payload, cached_at=cached.fetched_at, is_stale=False)
        if cached is not None:
            record_cache_lookup(kind.value, "stale")

        snapshot = await source.fetch_for(website)
        if snapshot.available:
            cached_at = await self._write_through(website.id, kind, snapshot)
            return MetricView(snapshot=snapshot, cached_at=cached_at, is_stale=False)
        if cached is not None:
            logger.info("serving_stale website=%s kind=%s", website.id, kind.value)
            return MetricView(snapshot=cached.payload, cached_at=cached.fetched_at, is_stale=True)
        return MetricView(snapshot=snapshot, cached_at=None, is_stale=False)

    async def _refresh_kind(self, website: Website, source: BaseSource) -> MetricView:
        snapshot = await source.fetch_for(website)
        if not snapshot.available:
            return MetricView(snapshot=snapshot, cached_at=None, is_stale=False)
        cached_at = await self._write_through(website.id, source.kind, snapshot)
        return MetricView(snapshot=snapshot, cached_at=cached_at, is_stale=False)

    async def _cached(self, website_id: int, kind: MetricKind) -> CachedMetric | None:
        try:
            cached = await asyncio.to_thread(self._cache.get, website_id, kind)
        except StorageFailure as exc:
            logger.warning("cache_read_failed website=%s kind=%s error=%s", website_id, kind.value, exc)
            record_cache_lookup(kind.value, "error")
            return None
        if cached is None:
            record_cache_lookup(kind.value, "absent")
        return cached

    async def _write_through(self, website_id: int, kind: MetricKind, snapshot: SnapshotT) -> datetime:
        try:
            entry = await asyncio.to_thread(self._cache.set, website_id, kind, snapshot)
        except StorageFailure as exc:
            logger.warning("cache_write_failed website=%s kind=%s error=%s", website_id, kind.value, exc)
            return self._clock()
        return entry.fetched_at

    def _reject(self, website: Website, quota: RefreshQuota) -> RefreshRejected:
        now = self._clock()
        if quota.next_available_at is not None:
            retry_after = max(1, math.ceil((quota.next_available_at - now).total_seconds()))
        else:
            retry_after = int(self._limiter.window.total_seconds())
        record_refresh("rejected")
        logger.info(
            "refresh_rejected website=%s next_available=%s",
            website.id,
            quota.next_available_at.isoformat() if quota.next_available_at else "-",
        )
        return RefreshRejected(
            website_id=website.id,
            reason="quota_exceeded",
            message=QUOTA_EXCEEDED_MESSAGE,
            remaining=0,
            next_available_at=quota.next_available_at,
            retry_after_seconds=retry_after,
        )
