from datetime import timedelta

import pytest
from pydantic import ValidationError

from portal_metrics import config
from portal_metrics.config import Settings
from portal_metrics.models import MetricKind


def test_defaults():
    settings = Settings()

    assert settings.ttl_for(MetricKind.UPTIME) == timedelta(minutes=5)
    assert settings.ttl_for(MetricKind.PERFORMANCE) == timedelta(hours=1)
    assert settings.refresh_rate_limit == 5
    assert settings.refresh_window == timedelta(hours=1)
    assert settings.uptime_timeout_seconds == 30
    assert settings.performance_timeout_seconds == 60


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("PORTAL_REFRESH_RATE_LIMIT", "2")
    monkeypatch.setenv("PORTAL_UPTIME_CACHE_TTL_SECONDS", "60")
    monkeypatch.setenv("PORTAL_PERFORMANCE_STRATEGY", "desktop")

    settings = Settings()

    assert settings.refresh_rate_limit == 2
    assert settings.ttl_for(MetricKind.UPTIME) == timedelta(seconds=60)
    assert settings.performance_strategy == "desktop"


@pytest.mark.parametrize(
    "overrides",
    [{"refresh_rate_limit": 0}, {"performance_strategy": "tablet"}, {"uptime_cache_ttl_seconds": 0}],
)
def test_invalid_values_rejected(overrides):
    with pytest.raises(ValidationError):
        Settings(**overrides)


def test_get_settings_is_cached():
    config.get_settings.cache_clear()
    try:
        assert config.get_settings() is config.get_settings()
    finally:
        config.get_settings.cache_clear()
