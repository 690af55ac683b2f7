"""External metric sources."""

from .base import BaseSource, SourceError, SourceRegistry, SourceUnavailable
from .performance import PageSpeedSource
from .uptime import UptimeRobotSource

__all__ = [
    "BaseSource",
    "PageSpeedSource",
    "SourceError",
    "SourceRegistry",
    "SourceUnavailable",
    "UptimeRobotSource",
]
