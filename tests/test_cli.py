import argparse

import pytest

from conftest import uptime_snapshot
from portal_metrics import cli
from portal_metrics.bootstrap import build_cache_store, build_database, build_rate_limiter
from portal_metrics.config import Settings
from portal_metrics.models import MetricKind


@pytest.fixture
def parser():
    return cli.build_parser()


@pytest.fixture
def settings(tmp_path, monkeypatch):
    settings = Settings(database_url=f"sqlite:///{tmp_path / 'portal.db'}")
    monkeypatch.setattr(cli, "get_settings", lambda: settings)
    return settings


def test_build_parser_has_commands(parser: argparse.ArgumentParser):
    assert parser.parse_args(["serve"]).command == "serve"
    assert parser.parse_args(["init-db"]).command == "init-db"
    add_args = parser.parse_args(["add-website", "--client-id", "3", "--name", "Acme", "--url", "https://acme.test"])
    assert add_args.client_id == 3
    assert add_args.monitor_id is None
    assert parser.parse_args(["status", "--website-id", "1"]).website_id == 1
    assert parser.parse_args(["clear-cache", "--website-id", "1", "--kind", "uptime"]).kind == "uptime"
    assert parser.parse_args(["prune-refresh-log"]).older_than_hours is None


def test_clear_cache_rejects_unknown_kind(parser):
    with pytest.raises(SystemExit):
        parser.parse_args(["clear-cache", "--website-id", "1", "--kind", "seo"])


def test_main_serve_dispatch(monkeypatch):
    called = {}

    async def fake_serve(settings, *, host, port, log_level):
        called["args"] = {
            "settings": settings,
            "host": host,
            "port": port,
            "log_level": log_level,
        }

    monkeypatch.setattr(cli, "get_settings", lambda: "settings")
    monkeypatch.setattr(cli, "serve_http", fake_serve)

    exit_code = cli.main(["serve", "--host", "0.0.0.0", "--port", "9000", "--log-level", "DEBUG"])
    assert exit_code == 0
    assert called["args"] == {
        "settings": "settings",
        "host": "0.0.0.0",
        "port": 9000,
        "log_level": "DEBUG",
    }


def test_add_website_and_status(settings, capsys):
    assert cli.main(["init-db"]) == 0
    assert cli.main(["add-website", "--client-id", "4", "--name", "Acme", "--url", "https://acme.test", "--monitor-id", "777"]) == 0
    out = capsys.readouterr().out
    assert "Website 1 created for client 4" in out

    database = build_database(settings)
    build_cache_store(settings, database).set(1, MetricKind.UPTIME, uptime_snapshot())
    build_rate_limiter(settings, database).log_refresh(1, actor_id=4)
    database.dispose()

    assert cli.main(["status", "--website-id", "1"]) == 0
    out = capsys.readouterr().out
    assert "Acme" in out
    assert "uptime: fresh" in out
    assert "performance: not cached" in out
    assert "remaining=4" in out


def test_status_for_unknown_website(settings, capsys):
    assert cli.main(["status", "--website-id", "42"]) == 1
    assert "42" in capsys.readouterr().err


def test_clear_cache_and_prune(settings, capsys):
    database = build_database(settings)
    store = build_cache_store(settings, database)
    store.set(1, MetricKind.UPTIME, uptime_snapshot())
    build_rate_limiter(settings, database).log_refresh(1, actor_id=4)
    database.dispose()

    assert cli.main(["clear-cache", "--website-id", "1", "--kind", "uptime"]) == 0
    assert "Removed 1 cached row(s)" in capsys.readouterr().out

    assert cli.main(["prune-refresh-log", "--older-than-hours", "0"]) == 0
    assert "Pruned 1 refresh log entry" in capsys.readouterr().out
