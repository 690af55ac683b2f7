from datetime import datetime, timedelta, timezone

import pytest

from portal_metrics.db import Database
from portal_metrics.models import CoreWebVitals, PerformanceSnapshot, UptimeSnapshot

START = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock so TTL and window expiry need no sleeping."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def database():
    db = Database("sqlite:///:memory:")
    db.create_all()
    yield db
    db.dispose()


def uptime_snapshot(**overrides) -> UptimeSnapshot:
    values = dict(
        status="up",
        uptime_1d=100.0,
        uptime_7d=99.95,
        uptime_30d=99.9,
        uptime_90d=99.87,
        response_time_avg=245,
        last_check=START,
        available=True,
    )
    values.update(overrides)
    return UptimeSnapshot(**values)


def performance_snapshot(**overrides) -> PerformanceSnapshot:
    values = dict(
        score=92,
        metrics=CoreWebVitals(fcp=1.2, lcp=2.1, cls=0.05, tbt=0.15, si=1.8),
        strategy="mobile",
        available=True,
    )
    values.update(overrides)
    return PerformanceSnapshot(**values)
