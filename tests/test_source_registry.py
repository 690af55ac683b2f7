import pytest

from portal_metrics.bootstrap import build_sources, shutdown_sources
from portal_metrics.config import Settings
from portal_metrics.models import MetricKind
from portal_metrics.sources import PageSpeedSource, SourceError, SourceRegistry, UptimeRobotSource
from portal_metrics.sources.base import format_number, round_half_up


def test_build_sources_registers_one_source_per_kind():
    registry = build_sources(Settings())

    assert registry.kinds() == [MetricKind.UPTIME, MetricKind.PERFORMANCE]
    assert isinstance(registry.get(MetricKind.UPTIME), UptimeRobotSource)
    assert isinstance(registry.get(MetricKind.PERFORMANCE), PageSpeedSource)


@pytest.mark.asyncio
async def test_shutdown_sources_closes_clients():
    registry = build_sources(Settings())
    await shutdown_sources(registry)

    assert all(source._client._client.is_closed for source in registry.all())


def test_duplicate_and_unknown_kinds_rejected():
    registry = build_sources(Settings())

    with pytest.raises(SourceError):
        registry.register(registry.get(MetricKind.UPTIME))
    with pytest.raises(SourceError):
        SourceRegistry().get(MetricKind.UPTIME)


@pytest.mark.parametrize(
    "value, digits, expected",
    [(274.5, 0, 275), (2.5, 0, 3), (1.005, 2, 1.01), (85.2345, 3, 85.235), (-0.5, 0, -1)],
)
def test_round_half_up(value, digits, expected):
    assert round_half_up(value, digits) == expected


def test_format_number_drops_trailing_zero():
    assert format_number(2.0) == "2"
    assert format_number(1.5) == "1.5"
