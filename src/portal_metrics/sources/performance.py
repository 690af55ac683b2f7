"""Performance source backed by Google PageSpeed Insights."""

from __future__ import annotations

import logging
import math
from typing import Any

import httpx
from pydantic import ValidationError

from ..models import CoreWebVitals, MetricKind, PerformanceSnapshot, Website
from .base import BaseSource, SourceUnavailable, round_half_up

logger = logging.getLogger(__name__)

NO_URL = "No URL provided"
FETCH_FAILED = "Failed to fetch performance data"
INVALID_RESPONSE = "Invalid response from PageSpeed API"

# field -> (lighthouse audit id, unitless)
AUDITS: dict[str, tuple[str, bool]] = {
    "fcp": ("first-contentful-paint", False),
    "lcp": ("largest-contentful-paint", False),
    "cls": ("cumulative-layout-shift", True),
    "tbt": ("total-blocking-time", False),
    "si": ("speed-index", False),
}


def extract_audit(audits: dict[str, Any], audit_id: str, *, unitless: bool = False) -> float:
    """Return an audit's numeric value, in seconds for time-based audits above 100 ms."""

    audit = audits.get(audit_id)
    if not isinstance(audit, dict) or audit.get("numericValue") is None:
        return 0
    value = float(audit["numericValue"])
    if not math.isfinite(value):
        raise ValueError(f"non-finite value for audit {audit_id}")
    if not unitless and value > 100:
        return round_half_up(value / 1000, 2)
    return round_half_up(value, 3)


class PageSpeedSource(BaseSource):
    """Normalises a Lighthouse run into a :class:`PerformanceSnapshot`."""

    source_id = "performance"
    kind = MetricKind.PERFORMANCE

    @property
    def strategy(self) -> str:
        return self.settings.performance_strategy

    def identifier_for(self, website: Website) -> str:
        return website.url or ""

    def unavailable(self, message: str) -> PerformanceSnapshot:
        return PerformanceSnapshot(strategy=self.strategy, available=False, message=message)

    async def _fetch(self, identifier: str) -> PerformanceSnapshot:
        if not identifier:
            raise SourceUnavailable(NO_URL)

        params = {"url": identifier, "strategy": self.strategy, "category": "performance"}
        if self.settings.pagespeed_api_key:
            params["key"] = self.settings.pagespeed_api_key
        try:
            data = await self._client.get_json(str(self.settings.pagespeed_api_url), params=params)
        except httpx.HTTPError as exc:
            logger.debug("pagespeed_transport_error url=%s error=%s", identifier, exc)
            raise SourceUnavailable(FETCH_FAILED) from exc
        except ValueError as exc:
            raise SourceUnavailable(INVALID_RESPONSE) from exc

        if not isinstance(data, dict) or not isinstance(data.get("lighthouseResult"), dict):
            raise SourceUnavailable(INVALID_RESPONSE)

        try:
            return self.normalise(data["lighthouseResult"])
        except (ArithmeticError, AttributeError, OSError, TypeError, ValueError, ValidationError) as exc:
            logger.debug("pagespeed_parse_error url=%s error=%s", identifier, exc)
            raise SourceUnavailable(INVALID_RESPONSE) from exc

    def normalise(self, lighthouse: dict[str, Any]) -> PerformanceSnapshot:
        audits = lighthouse.get("audits") or {}
        category = (lighthouse.get("categories") or {}).get("performance") or {}
        score = int(round_half_up(float(category.get("score") or 0) * 100))
        metrics = CoreWebVitals(
            **{
                field: extract_audit(audits, audit_id, unitless=unitless)
                for field, (audit_id, unitless) in AUDITS.items()
            }
        )
        return PerformanceSnapshot(
            score=score,
            metrics=metrics,
            strategy=self.strategy,
            available=True,
        )
