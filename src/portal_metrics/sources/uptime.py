"""Uptime source backed by the UptimeRobot v2 ``getMonitors`` API."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any

import httpx
from pydantic import TypeAdapter, ValidationError

from ..models import (
    Incident,
    MetricKind,
    ResponseTimeSample,
    SslCertificate,
    SslStatus,
    UptimeSnapshot,
    UptimeStatus,
    Website,
)
from .base import BaseSource, SourceUnavailable, format_number, round_half_up

logger = logging.getLogger(__name__)

NO_MONITOR = "No monitor configured"
FETCH_FAILED = "Failed to fetch uptime data"
INVALID_RESPONSE = "Invalid response from UptimeRobot"

STATUS_MAP: dict[int, UptimeStatus] = {
    0: "paused",
    1: "pending",
    2: "up",
    8: "down",
    9: "down",
}

# Log types 98 (started) and 99 (paused) are not incidents.
INCIDENT_TYPES = {1: "down", 2: "up"}

_DATETIME = TypeAdapter(datetime)


def ssl_status(days: int | None) -> SslStatus:
    if days is None:
        return "unknown"
    if days <= 0:
        return "expired"
    if days <= 7:
        return "critical"
    if days <= 30:
        return "warning"
    return "valid"


def format_duration(seconds: int) -> str:
    """Render an incident duration as ``45s``, ``12m``, ``1.5h`` or ``2d``."""

    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{int(round_half_up(seconds / 60))}m"
    if seconds < 86400:
        return f"{format_number(round_half_up(seconds / 3600, 1))}h"
    return f"{format_number(round_half_up(seconds / 86400, 1))}d"


def format_timestamp(value: datetime) -> str:
    """Format as e.g. ``Mar 4, 2025 9:05 PM``."""

    hour = value.hour % 12 or 12
    meridiem = "AM" if value.hour < 12 else "PM"
    return f"{value:%b} {value.day}, {value.year} {hour}:{value:%M} {meridiem}"


def _from_epoch(value: Any) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _code(value: Any) -> int | None:
    """Coerce a status or log type code that may arrive as a string."""

    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_ratio(raw: str | None) -> list[float]:
    parts = (raw or "").split("-")
    ratios: list[float] = []
    for index in range(4):
        try:
            ratio = float(parts[index])
        except (IndexError, ValueError):
            ratio = 0.0
        ratios.append(ratio if math.isfinite(ratio) else 0.0)
    return ratios


def _parse_expiry(raw: Any) -> datetime | None:
    if raw in (None, "", 0):
        return None
    try:
        parsed = _DATETIME.validate_python(raw)
    except ValidationError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class UptimeRobotSource(BaseSource):
    """Normalises a single UptimeRobot monitor into an :class:`UptimeSnapshot`."""

    source_id = "uptime"
    kind = MetricKind.UPTIME

    def identifier_for(self, website: Website) -> str:
        return website.uptime_monitor_id or ""

    def unavailable(self, message: str) -> UptimeSnapshot:
        return UptimeSnapshot(available=False, message=message)

    async def _fetch(self, identifier: str) -> UptimeSnapshot:
        if not identifier:
            raise SourceUnavailable(NO_MONITOR)

        form = {
            "api_key": self.settings.uptime_api_key,
            "monitors": identifier,
            "custom_uptime_ratios": "1-7-30-90",
            "response_times": 1,
            "response_times_limit": self.settings.response_times_limit,
            "logs": 1,
            "logs_limit": self.settings.incident_logs_limit,
            "ssl": 1,
            "format": "json",
        }
        try:
            data = await self._client.post_form(str(self.settings.uptime_api_url), form)
        except httpx.HTTPError as exc:
            logger.debug("uptime_transport_error monitor=%s error=%s", identifier, exc)
            raise SourceUnavailable(FETCH_FAILED) from exc
        except ValueError as exc:
            raise SourceUnavailable(INVALID_RESPONSE) from exc

        if not isinstance(data, dict) or data.get("stat") != "ok":
            raise SourceUnavailable(INVALID_RESPONSE)
        monitors = data.get("monitors")
        if not isinstance(monitors, list) or not monitors or not isinstance(monitors[0], dict):
            raise SourceUnavailable(INVALID_RESPONSE)

        try:
            return self.normalise(monitors[0])
        except (ArithmeticError, AttributeError, KeyError, OSError, TypeError, ValueError, ValidationError) as exc:
            logger.debug("uptime_parse_error monitor=%s error=%s", identifier, exc)
            raise SourceUnavailable(INVALID_RESPONSE) from exc

    def normalise(self, monitor: dict[str, Any]) -> UptimeSnapshot:
        now = self._clock()
        uptime_1d, uptime_7d, uptime_30d, uptime_90d = _parse_ratio(monitor.get("custom_uptime_ratio"))

        samples = monitor.get("response_times") or []
        history: list[ResponseTimeSample] = []
        average = 0
        if samples:
            values = [int(sample["value"]) for sample in samples]
            average = int(round_half_up(sum(values) / len(values)))
            for sample in reversed(samples):
                stamp = _from_epoch(sample["datetime"])
                history.append(
                    ResponseTimeSample(timestamp=stamp, time=f"{stamp:%H:%M}", value=int(sample["value"]))
                )

        return UptimeSnapshot(
            status=STATUS_MAP.get(_code(monitor.get("status")), "unknown"),
            uptime_1d=uptime_1d,
            uptime_7d=uptime_7d,
            uptime_30d=uptime_30d,
            uptime_90d=uptime_90d,
            response_time_avg=average,
            response_time_history=history,
            ssl=self._ssl(monitor.get("ssl"), now),
            incidents=self._incidents(monitor.get("logs") or []),
            last_check=now,
            available=True,
        )

    @staticmethod
    def _ssl(raw: Any, now: datetime) -> SslCertificate | None:
        if not raw or not isinstance(raw, dict):
            return None
        expires = _parse_expiry(raw.get("expires"))
        days = None
        if expires is not None:
            days = math.ceil((expires - now).total_seconds() / 86400)
        return SslCertificate(
            issuer=raw.get("brand") or "Unknown",
            expires=expires,
            days_until_expiry=days,
            status=ssl_status(days),
        )

    @staticmethod
    def _incidents(logs: list[dict[str, Any]]) -> list[Incident]:
        incidents: list[Incident] = []
        for log in logs:
            incident_type = INCIDENT_TYPES.get(_code(log.get("type")))
            if incident_type is None:
                continue
            occurred_at = _from_epoch(log["datetime"])
            duration = log.get("duration")
            reason = log.get("reason")
            incidents.append(
                Incident(
                    type=incident_type,
                    occurred_at=occurred_at,
                    occurred_at_formatted=format_timestamp(occurred_at),
                    duration=format_duration(int(duration)) if duration is not None else None,
                    reason=reason.get("detail") if isinstance(reason, dict) else None,
                )
            )
        return incidents
