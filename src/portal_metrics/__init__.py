"""Core package for the client portal metrics service."""

from .cache_store import MetricCacheStore
from .config import Settings, get_settings
from .db import Database, StorageFailure
from .health import SourceHealthMonitor
from .live_fetch import LiveFetchClient
from .orchestrator import MetricsOrchestrator
from .rate_limiter import RefreshRateLimiter
from .websites import NotAuthorized, ResourceNotFound, WebsiteDirectory

__all__ = [
    "Database",
    "LiveFetchClient",
    "MetricCacheStore",
    "MetricsOrchestrator",
    "NotAuthorized",
    "RefreshRateLimiter",
    "ResourceNotFound",
    "Settings",
    "SourceHealthMonitor",
    "StorageFailure",
    "WebsiteDirectory",
    "get_settings",
]
