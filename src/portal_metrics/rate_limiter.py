"""Sliding-window limiter for explicit metric refreshes."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import delete, func, select

from .clock import Clock, from_storage, to_storage, utcnow
from .db import Database, RefreshLogRow
from .models import RefreshQuota

logger = logging.getLogger(__name__)


class RefreshRateLimiter:
    """Counts logged refreshes per website over a trailing window.

    Each accepted refresh occupies the window for exactly ``window`` from the
    moment it was logged; there are no fixed buckets. Checking and logging are
    two separate calls, so callers that need strict enforcement must serialise
    them per website.
    """

    def __init__(
        self,
        database: Database,
        *,
        limit: int,
        window: timedelta,
        clock: Clock = utcnow,
    ) -> None:
        if limit < 1:
            raise ValueError("Refresh limit must be at least 1")
        if window <= timedelta(0):
            raise ValueError("Refresh window must be positive")
        self._database = database
        self.limit = limit
        self.window = window
        self._clock = clock

    def can_refresh(self, website_id: int) -> RefreshQuota:
        cutoff = self._clock() - self.window
        statement = select(func.count(RefreshLogRow.id), func.min(RefreshLogRow.created_at)).where(
            RefreshLogRow.website_id == website_id,
            RefreshLogRow.created_at > to_storage(cutoff),
        )
        with self._database.session_scope() as session:
            count, oldest = session.execute(statement).one()

        allowed = count < self.limit
        next_available_at = None
        if not allowed and oldest is not None:
            next_available_at = from_storage(oldest) + self.window
        return RefreshQuota(
            allowed=allowed,
            remaining=max(0, self.limit - count),
            next_available_at=next_available_at,
        )

    def log_refresh(self, website_id: int, actor_id: str | int) -> None:
        entry = RefreshLogRow(
            website_id=website_id,
            triggered_by=str(actor_id),
            created_at=to_storage(self._clock()),
        )
        with self._database.session_scope() as session:
            session.add(entry)
        logger.debug("refresh_logged website=%s actor=%s", website_id, actor_id)

    def prune(self, before: datetime | None = None) -> int:
        """Delete log entries that can no longer affect any quota decision."""

        threshold = before if before is not None else self._clock() - self.window
        statement = delete(RefreshLogRow).where(RefreshLogRow.created_at <= to_storage(threshold))
        with self._database.session_scope() as session:
            removed = session.execute(statement).rowcount or 0
        logger.info("refresh_log_pruned before=%s rows=%s", threshold.isoformat(), removed)
        return removed
