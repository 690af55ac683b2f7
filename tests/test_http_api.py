from datetime import timedelta

import pytest
from starlette.testclient import TestClient

from conftest import performance_snapshot, uptime_snapshot
from portal_metrics.cache_store import MetricCacheStore
from portal_metrics.config import Settings
from portal_metrics.db import StorageFailure, WebsiteRow
from portal_metrics.health import SourceHealthMonitor
from portal_metrics.main import PortalRuntime, create_app
from portal_metrics.metrics import reset_metrics_for_tests
from portal_metrics.models import MetricKind, UptimeSnapshot
from portal_metrics.orchestrator import MetricsOrchestrator
from portal_metrics.rate_limiter import RefreshRateLimiter
from portal_metrics.sources import SourceRegistry
from portal_metrics.websites import WebsiteDirectory


class StubSource:
    def __init__(self, kind, result=None, error=None):
        self.kind = kind
        self.source_id = kind.value
        self.result = result
        self.error = error

    async def fetch_for(self, website):
        if self.error is not None:
            raise self.error
        return self.result

    async def shutdown(self):
        return None


class BrokenLimiter:
    window = timedelta(hours=1)

    def can_refresh(self, website_id):
        raise StorageFailure("database is locked")

    def log_refresh(self, website_id, actor_id):
        raise StorageFailure("database is locked")


def default_sources():
    return [
        StubSource(MetricKind.UPTIME, uptime_snapshot()),
        StubSource(MetricKind.PERFORMANCE, performance_snapshot()),
    ]


def make_client(database, clock, sources=None, *, limit=5, limiter=None, raise_server_exceptions=True):
    registry = SourceRegistry(sources or default_sources())
    cache = MetricCacheStore(
        database,
        {MetricKind.UPTIME: timedelta(minutes=5), MetricKind.PERFORMANCE: timedelta(hours=1)},
        clock=clock,
    )
    limiter = limiter or RefreshRateLimiter(database, limit=limit, window=timedelta(hours=1), clock=clock)
    runtime = PortalRuntime(
        settings=Settings(database_url="sqlite:///:memory:"),
        database=database,
        websites=WebsiteDirectory(database, clock=clock),
        orchestrator=MetricsOrchestrator(cache, limiter, registry, clock=clock),
        sources=registry,
        health_monitor=SourceHealthMonitor(),
    )
    return TestClient(create_app(runtime), raise_server_exceptions=raise_server_exceptions)


@pytest.fixture
def websites(database, clock):
    directory = WebsiteDirectory(database, clock=clock)
    mine = directory.add(client_id=10, name="Zeta Shop", url="https://zeta.test", uptime_monitor_id="1")
    other = directory.add(client_id=10, name="Alpha Blog", url="https://alpha.test")
    foreign = directory.add(client_id=99, name="Foreign", url="https://foreign.test")
    return {"mine": mine, "other": other, "foreign": foreign}


HEADERS = {"X-Client-Id": "10"}


def test_missing_client_header_is_unauthorized(database, clock, websites):
    client = make_client(database, clock)

    assert client.get("/api/websites").status_code == 401
    response = client.get("/api/websites", headers={"X-Client-Id": "abc"})
    assert response.status_code == 401
    assert "error" in response.json()


def test_list_websites_returns_own_sites_by_name(database, clock, websites):
    client = make_client(database, clock)

    response = client.get("/api/websites", headers=HEADERS)

    body = response.json()
    assert response.status_code == 200
    assert body["success"] is True
    assert body["count"] == 2
    assert [site["name"] for site in body["websites"]] == ["Alpha Blog", "Zeta Shop"]


def test_metrics_endpoint_returns_flattened_views(database, clock, websites):
    client = make_client(database, clock)
    website_id = websites["mine"].id

    response = client.get(f"/api/websites/{website_id}/metrics", headers=HEADERS)

    body = response.json()
    assert response.status_code == 200
    assert body["success"] is True
    assert body["website_id"] == website_id
    uptime = body["metrics"]["uptime"]
    assert uptime["available"] is True
    assert uptime["status"] == "up"
    assert uptime["is_stale"] is False
    assert uptime["cached_at"].startswith("2025-01-01T12:00:00")
    assert body["metrics"]["performance"]["score"] == 92
    assert body["refresh"] == {"allowed": True, "remaining": 5, "next_available": None}


def test_foreign_website_is_forbidden(database, clock, websites):
    client = make_client(database, clock)

    response = client.get(f"/api/websites/{websites['foreign'].id}/metrics", headers=HEADERS)

    assert response.status_code == 403
    assert response.json() == {"error": "Website not found or access denied"}


def test_missing_or_inactive_website_is_not_found(database, clock, websites):
    with database.session_scope() as session:
        session.get(WebsiteRow, websites["other"].id).is_active = False
    client = make_client(database, clock)

    assert client.get("/api/websites/999/metrics", headers=HEADERS).status_code == 404
    assert client.get(f"/api/websites/{websites['other'].id}/metrics", headers=HEADERS).status_code == 404


def test_refresh_endpoint_reports_refreshed_kinds(database, clock, websites):
    sources = [
        StubSource(MetricKind.UPTIME, UptimeSnapshot(available=False, message="Failed to fetch uptime data")),
        StubSource(MetricKind.PERFORMANCE, performance_snapshot(score=81)),
    ]
    client = make_client(database, clock, sources)

    response = client.post(f"/api/websites/{websites['mine'].id}/refresh", headers=HEADERS)

    body = response.json()
    assert response.status_code == 200
    assert body["success"] is True
    assert body["message"] == "Metrics refreshed successfully"
    assert body["refreshed"] == ["performance"]
    assert body["metrics"]["uptime"]["available"] is False
    assert body["metrics"]["uptime"]["cached_at"] is None
    assert body["metrics"]["performance"]["score"] == 81
    assert body["refresh"]["remaining"] == 4


def test_refresh_over_quota_returns_429(database, clock, websites):
    client = make_client(database, clock, limit=1)
    url = f"/api/websites/{websites['mine'].id}/refresh"

    assert client.post(url, headers=HEADERS).status_code == 200
    clock.advance(minutes=15)
    response = client.post(url, headers=HEADERS)

    body = response.json()
    assert response.status_code == 429
    assert response.headers["Retry-After"] == str(45 * 60)
    assert body["error"] == "Rate limit exceeded. Please wait before refreshing again."
    assert body["remaining"] == 0
    assert body["next_available"].startswith("2025-01-01T13:00:00")


def test_refresh_with_unreachable_log_returns_503(database, clock, websites):
    client = make_client(database, clock, limiter=BrokenLimiter())

    response = client.post(f"/api/websites/{websites['mine'].id}/refresh", headers=HEADERS)

    assert response.status_code == 503
    assert "Retry-After" in response.headers
    assert response.json()["reason"] == "quota_unavailable"


def test_unexpected_error_returns_generic_500(database, clock, websites):
    sources = [
        StubSource(MetricKind.UPTIME, error=RuntimeError("secret stack detail")),
        StubSource(MetricKind.PERFORMANCE, performance_snapshot()),
    ]
    client = make_client(database, clock, sources, raise_server_exceptions=False)

    response = client.get(f"/api/websites/{websites['mine'].id}/metrics", headers=HEADERS)

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}


def test_healthz_and_prometheus_metrics(database, clock, websites):
    reset_metrics_for_tests()
    client = make_client(database, clock)

    health = client.get("/healthz")
    assert health.status_code == 200
    assert health.json()["status"] == "ok"
    assert health.json()["database"] is True
    assert health.json()["sources"]["recent_fetches"] == 0

    client.get("/api/websites", headers=HEADERS)
    metrics = client.get("/metrics")

    assert metrics.status_code == 200
    body = metrics.text
    assert "portal_http_requests_total" in body
    assert 'path="/api/websites"' in body
