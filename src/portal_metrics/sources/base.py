"""Source abstraction for the external metric services."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from ..clock import Clock, utcnow
from ..config import Settings
from ..live_fetch import LiveFetchClient
from ..models import MetricKind, PerformanceSnapshot, UptimeSnapshot, Website

logger = logging.getLogger(__name__)

SnapshotT = UptimeSnapshot | PerformanceSnapshot


class SourceError(Exception):
    """Base exception raised for source configuration failures."""


class SourceUnavailable(SourceError):
    """Raised inside an adapter when no usable snapshot can be produced.

    The message is what the dashboard shows, so it must stay user-facing.
    """


def round_half_up(value: float, digits: int = 0) -> float:
    """Round like PHP's ``round``: halves go away from zero."""

    quantum = Decimal(1).scaleb(-digits)
    return float(Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def format_number(value: float) -> str:
    """Render a number without a redundant ``.0`` suffix."""

    text = repr(float(value))
    return text[:-2] if text.endswith(".0") else text


class BaseSource(ABC):
    """Fetches one metric kind for a website and never raises from ``fetch``."""

    source_id: str
    kind: MetricKind

    def __init__(
        self,
        settings: Settings,
        client: LiveFetchClient,
        *,
        clock: Clock = utcnow,
    ) -> None:
        self._settings = settings
        self._client = client
        self._clock = clock

    @property
    def settings(self) -> Settings:
        return self._settings

    @abstractmethod
    def identifier_for(self, website: Website) -> str:
        """Return the source-specific identifier for a website."""

    @abstractmethod
    def unavailable(self, message: str) -> SnapshotT:
        """Return the placeholder snapshot used when no data could be fetched."""

    @abstractmethod
    async def _fetch(self, identifier: str) -> SnapshotT:
        """Fetch and normalise a snapshot, raising ``SourceUnavailable`` on failure."""

    async def fetch(self, identifier: str) -> SnapshotT:
        try:
            return await self._fetch(identifier)
        except SourceUnavailable as exc:
            logger.warning(
                "source_fetch_failed source=%s identifier=%s reason=%s",
                self.source_id,
                identifier or "-",
                exc,
            )
            return self.unavailable(str(exc))

    async def fetch_for(self, website: Website) -> SnapshotT:
        return await self.fetch(self.identifier_for(website))

    async def get_status(self) -> dict[str, Any]:
        return {"source_id": self.source_id, "kind": self.kind.value}

    async def shutdown(self) -> None:
        """Release the HTTP client."""

        await self._client.close()


class SourceRegistry:
    """Sources keyed by the metric kind they produce."""

    def __init__(self, sources: Iterable[BaseSource] = ()) -> None:
        self._sources: dict[MetricKind, BaseSource] = {}
        for source in sources:
            self.register(source)

    def register(self, source: BaseSource) -> None:
        if source.kind in self._sources:
            raise SourceError(f"Source for '{source.kind.value}' already registered.")
        self._sources[source.kind] = source

    def get(self, kind: MetricKind) -> BaseSource:
        try:
            return self._sources[kind]
        except KeyError as exc:
            raise SourceError(f"No source registered for '{kind}'.") from exc

    def kinds(self) -> list[MetricKind]:
        return [kind for kind in MetricKind if kind in self._sources]

    def all(self) -> list[BaseSource]:
        return [self._sources[kind] for kind in self.kinds()]

    def __contains__(self, kind: object) -> bool:
        return kind in self._sources

    def __len__(self) -> int:
        return len(self._sources)
