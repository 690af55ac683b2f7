"""Persistent per-website metric cache."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import timedelta

from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.dialects import postgresql, sqlite

from .clock import Clock, from_storage, to_storage, utcnow
from .db import Database, MetricCacheRow, StorageFailure
from .models import SNAPSHOT_ADAPTER, CachedMetric, MetricKind, PerformanceSnapshot, UptimeSnapshot

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


class MetricCacheStore:
    """Key-value store of the last good snapshot per (website, kind).

    Staleness is never stored; callers derive it from ``expires_at``.
    """

    def __init__(
        self,
        database: Database,
        ttls: Mapping[MetricKind, timedelta],
        *,
        clock: Clock = utcnow,
    ) -> None:
        missing = [kind.value for kind in MetricKind if kind not in ttls]
        if missing:
            raise ValueError(f"Missing cache TTL for: {', '.join(missing)}")
        try:
            self._insert = _UPSERT_DIALECTS[database.dialect]
        except KeyError as exc:
            raise ValueError(f"Unsupported database dialect '{database.dialect}' for cache upserts") from exc
        self._database = database
        self._ttls = dict(ttls)
        self._clock = clock

    def ttl_for(self, kind: MetricKind) -> timedelta:
        return self._ttls[kind]

    def get(self, website_id: int, kind: MetricKind) -> CachedMetric | None:
        with self._database.session_scope() as session:
            row = session.get(MetricCacheRow, (website_id, kind.value))
            if row is None:
                return None
            return self._to_cached(row)

    def set(
        self,
        website_id: int,
        kind: MetricKind,
        snapshot: UptimeSnapshot | PerformanceSnapshot,
    ) -> CachedMetric:
        if snapshot.kind != kind.value:
            raise ValueError(f"Snapshot of kind '{snapshot.kind}' cannot be cached as '{kind.value}'")
        fetched_at = self._clock()
        expires_at = fetched_at + self._ttls[kind]
        values = {
            "website_id": website_id,
            "metric_kind": kind.value,
            "payload": snapshot.model_dump(mode="json"),
            "fetched_at": to_storage(fetched_at),
            "expires_at": to_storage(expires_at),
        }
        statement = self._insert(MetricCacheRow).values(**values)
        statement = statement.on_conflict_do_update(
            index_elements=[MetricCacheRow.website_id, MetricCacheRow.metric_kind],
            set_={
                "payload": statement.excluded.payload,
                "fetched_at": statement.excluded.fetched_at,
                "expires_at": statement.excluded.expires_at,
            },
        )
        with self._database.session_scope() as session:
            session.execute(statement)
        logger.debug(
            "cache_set website=%s kind=%s expires_at=%s", website_id, kind.value, expires_at.isoformat()
        )
        return CachedMetric(
            website_id=website_id,
            kind=kind,
            payload=snapshot,
            fetched_at=fetched_at,
            expires_at=expires_at,
        )

    def delete(self, website_id: int, kind: MetricKind | None = None) -> int:
        """Remove cached rows for a website, for one kind or all of them."""

        statement = delete(MetricCacheRow).where(MetricCacheRow.website_id == website_id)
        if kind is not None:
            statement = statement.where(MetricCacheRow.metric_kind == kind.value)
        with self._database.session_scope() as session:
            result = session.execute(statement)
            removed = result.rowcount or 0
        logger.info(
            "cache_cleared website=%s kind=%s rows=%s",
            website_id,
            kind.value if kind else "all",
            removed,
        )
        return removed

    def entries(self, website_id: int) -> list[CachedMetric]:
        statement = (
            select(MetricCacheRow)
            .where(MetricCacheRow.website_id == website_id)
            .order_by(MetricCacheRow.metric_kind)
        )
        with self._database.session_scope() as session:
            return [self._to_cached(row) for row in session.scalars(statement)]

    def _to_cached(self, row: MetricCacheRow) -> CachedMetric:
        try:
            payload = SNAPSHOT_ADAPTER.validate_python(row.payload)
            kind = MetricKind(row.metric_kind)
        except (ValidationError, ValueError) as exc:
            raise StorageFailure(
                f"Corrupt cache row website={row.website_id} kind={row.metric_kind}: {exc}"
            ) from exc
        return CachedMetric(
            website_id=row.website_id,
            kind=kind,
            payload=payload,
            fetched_at=from_storage(row.fetched_at),
            expires_at=from_storage(row.expires_at),
        )
