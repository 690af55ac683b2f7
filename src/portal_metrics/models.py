"""Data models for metric snapshots, cache entries and dashboard responses."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_serializer


class MetricKind(str, Enum):
    """Independently cached and independently fetched metric families."""

    UPTIME = "uptime"
    PERFORMANCE = "performance"


UptimeStatus = Literal["up", "down", "paused", "pending", "unknown"]
SslStatus = Literal["valid", "warning", "critical", "expired", "unknown"]
Strategy = Literal["mobile", "desktop"]


class ResponseTimeSample(BaseModel):
    """A single response-time measurement reported by the uptime monitor."""

    timestamp: datetime
    time: str
    value: int


class SslCertificate(BaseModel):
    """TLS certificate descriptor with a derived expiry bucket."""

    issuer: str = "Unknown"
    expires: datetime | None = None
    days_until_expiry: int | None = None
    status: SslStatus = "unknown"


class Incident(BaseModel):
    """An up/down transition from the monitor's event log."""

    type: Literal["up", "down"]
    occurred_at: datetime
    occurred_at_formatted: str
    duration: str | None = None
    reason: str | None = None


class UptimeSnapshot(BaseModel):
    """Normalised uptime monitor state."""

    model_config = ConfigDict(allow_inf_nan=False)

    kind: Literal["uptime"] = "uptime"
    status: UptimeStatus = "unknown"
    uptime_1d: float = Field(default=0.0, ge=0, le=100)
    uptime_7d: float = Field(default=0.0, ge=0, le=100)
    uptime_30d: float = Field(default=0.0, ge=0, le=100)
    uptime_90d: float = Field(default=0.0, ge=0, le=100)
    response_time_avg: int = 0
    response_time_history: list[ResponseTimeSample] = Field(default_factory=list)
    ssl: SslCertificate | None = None
    incidents: list[Incident] = Field(default_factory=list)
    last_check: datetime | None = None
    available: bool = False
    message: str | None = None


class CoreWebVitals(BaseModel):
    """Lighthouse audit values; times in seconds, CLS unitless."""

    model_config = ConfigDict(allow_inf_nan=False)

    fcp: float = 0
    lcp: float = 0
    cls: float = 0
    tbt: float = 0
    si: float = 0


class PerformanceSnapshot(BaseModel):
    """Normalised page performance analysis."""

    kind: Literal["performance"] = "performance"
    score: int = Field(default=0, ge=0, le=100)
    metrics: CoreWebVitals = Field(default_factory=CoreWebVitals)
    strategy: Strategy = "mobile"
    available: bool = False
    message: str | None = None


Snapshot = Annotated[Union[UptimeSnapshot, PerformanceSnapshot], Field(discriminator="kind")]

SNAPSHOT_ADAPTER: TypeAdapter[UptimeSnapshot | PerformanceSnapshot] = TypeAdapter(Snapshot)


class CachedMetric(BaseModel):
    """The last successful snapshot stored for a (website, kind) pair."""

    website_id: int
    kind: MetricKind
    payload: Snapshot
    fetched_at: datetime
    expires_at: datetime

    def is_stale(self, now: datetime) -> bool:
        return now > self.expires_at


class MetricView(BaseModel):
    """A snapshot as served to the dashboard, annotated with cache state."""

    snapshot: Snapshot
    cached_at: datetime | None = None
    is_stale: bool = False

    @model_serializer(mode="wrap")
    def _flatten(self, handler: Any) -> dict[str, Any]:
        data = handler(self)
        snapshot = data.pop("snapshot")
        return {**snapshot, **data}


class RefreshQuota(BaseModel):
    """Sliding-window refresh allowance for a website."""

    allowed: bool
    remaining: int = Field(ge=0)
    next_available_at: datetime | None = None


class MetricsBundle(BaseModel):
    uptime: MetricView | None = None
    performance: MetricView | None = None


class DashboardMetrics(BaseModel):
    """Response of a dashboard read."""

    website_id: int
    metrics: MetricsBundle
    refresh: RefreshQuota


class RefreshResult(BaseModel):
    """Response of an accepted explicit refresh."""

    website_id: int
    refreshed: list[MetricKind] = Field(default_factory=list)
    metrics: MetricsBundle
    refresh: RefreshQuota


class RefreshRejected(BaseModel):
    """Response of a refresh that was not attempted."""

    website_id: int
    reason: Literal["quota_exceeded", "quota_unavailable"]
    message: str
    remaining: int = 0
    next_available_at: datetime | None = None
    retry_after_seconds: int


class Website(BaseModel):
    """A client-owned monitored website."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    client_id: int
    name: str
    url: str
    uptime_monitor_id: str | None = None
    is_active: bool = True
    created_at: datetime | None = None

    @property
    def has_uptime_monitor(self) -> bool:
        return bool(self.uptime_monitor_id)
