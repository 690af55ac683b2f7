"""Application configuration utilities."""

from __future__ import annotations

from datetime import timedelta
from functools import lru_cache
from typing import Literal

from pydantic import AnyHttpUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import MetricKind


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables."""

    database_url: str = Field(
        default="sqlite:///portal_metrics.db",
        description="SQLAlchemy URL for the metrics cache, refresh log and website tables.",
    )
    uptime_api_url: AnyHttpUrl = Field(
        default="https://api.uptimerobot.com/v2/getMonitors",
        description="UptimeRobot getMonitors endpoint.",
    )
    uptime_api_key: str = Field(
        default="",
        description="UptimeRobot API key.",
    )
    pagespeed_api_url: AnyHttpUrl = Field(
        default="https://www.googleapis.com/pagespeedonline/v5/runPagespeed",
        description="PageSpeed Insights runPagespeed endpoint.",
    )
    pagespeed_api_key: str | None = Field(
        default=None,
        description="Optional PageSpeed Insights API key.",
    )
    performance_strategy: Literal["mobile", "desktop"] = Field(
        default="mobile",
        description="Device strategy requested from PageSpeed Insights.",
    )
    uptime_cache_ttl_seconds: int = Field(
        default=300,
        ge=1,
        description="Cache TTL (seconds) for uptime snapshots.",
    )
    performance_cache_ttl_seconds: int = Field(
        default=3600,
        ge=1,
        description="Cache TTL (seconds) for performance snapshots.",
    )
    refresh_rate_limit: int = Field(
        default=5,
        ge=1,
        description="Explicit refreshes accepted per website within the sliding window.",
    )
    refresh_window_seconds: int = Field(
        default=3600,
        ge=1,
        description="Length of the refresh rate-limit sliding window.",
    )
    uptime_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="HTTP timeout in seconds for uptime calls.",
    )
    performance_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="HTTP timeout in seconds for performance calls (PageSpeed is slow).",
    )
    fetch_attempts: int = Field(
        default=2,
        ge=1,
        description="Total attempts for a source call when the connection cannot be established.",
    )
    retry_backoff_seconds: float = Field(
        default=0.5,
        ge=0,
        description="Exponential backoff multiplier between connection retries.",
    )
    source_concurrency: int = Field(
        default=4,
        ge=1,
        description="Maximum number of concurrent in-flight calls per source.",
    )
    response_times_limit: int = Field(
        default=24,
        ge=1,
        description="Response-time samples requested from the uptime source.",
    )
    incident_logs_limit: int = Field(
        default=10,
        ge=1,
        description="Incident log entries requested from the uptime source.",
    )
    user_agent: str = Field(
        default="portal-metrics/0.1",
        description="User-Agent header presented to remote servers.",
    )

    model_config = SettingsConfigDict(
        env_prefix="PORTAL_",
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    def ttl_for(self, kind: MetricKind) -> timedelta:
        """Return the cache TTL for a metric kind."""

        if kind is MetricKind.UPTIME:
            return timedelta(seconds=self.uptime_cache_ttl_seconds)
        return timedelta(seconds=self.performance_cache_ttl_seconds)

    @property
    def refresh_window(self) -> timedelta:
        return timedelta(seconds=self.refresh_window_seconds)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached instance of application settings."""

    return Settings()
