from datetime import timedelta

import pytest

from portal_metrics.db import RefreshLogRow
from portal_metrics.rate_limiter import RefreshRateLimiter


@pytest.fixture
def limiter(database, clock):
    return RefreshRateLimiter(database, limit=5, window=timedelta(hours=1), clock=clock)


def test_limit_refreshes_allowed_then_denied(limiter, clock):
    first_logged_at = clock.now
    remaining = []
    for _ in range(5):
        quota = limiter.can_refresh(1)
        assert quota.allowed is True
        assert quota.next_available_at is None
        limiter.log_refresh(1, actor_id=7)
        remaining.append(limiter.can_refresh(1).remaining)
        clock.advance(minutes=1)

    assert remaining == [4, 3, 2, 1, 0]

    denied = limiter.can_refresh(1)
    assert denied.allowed is False
    assert denied.remaining == 0
    assert denied.next_available_at == first_logged_at + timedelta(hours=1)


def test_window_slides_without_reset(limiter, clock):
    for _ in range(5):
        limiter.log_refresh(1, actor_id=7)
        clock.advance(minutes=10)
    assert limiter.can_refresh(1).allowed is False

    # oldest entry was logged 50 minutes ago
    clock.advance(minutes=10)
    quota = limiter.can_refresh(1)
    assert quota.allowed is True
    assert quota.remaining == 1


def test_quota_is_per_website(limiter):
    for _ in range(5):
        limiter.log_refresh(1, actor_id=7)

    assert limiter.can_refresh(1).allowed is False
    assert limiter.can_refresh(2).remaining == 5


def test_log_refresh_records_actor(limiter, database):
    limiter.log_refresh(3, actor_id=12)

    with database.session_scope() as session:
        rows = session.query(RefreshLogRow).all()
        assert [(row.website_id, row.triggered_by) for row in rows] == [(3, "12")]


def test_prune_removes_entries_outside_window(limiter, database, clock):
    limiter.log_refresh(1, actor_id=1)
    clock.advance(hours=2)
    limiter.log_refresh(1, actor_id=1)

    assert limiter.prune() == 1
    assert limiter.can_refresh(1).remaining == 4
    with database.session_scope() as session:
        assert session.query(RefreshLogRow).count() == 1


@pytest.mark.parametrize("limit, window", [(0, timedelta(hours=1)), (5, timedelta(0))])
def test_invalid_configuration_rejected(database, limit, window):
    with pytest.raises(ValueError):
        RefreshRateLimiter(database, limit=limit, window=window)
