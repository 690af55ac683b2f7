"""Command-line interface for the client portal metrics service."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import timedelta
from typing import Optional

from .bootstrap import build_cache_store, build_database, build_rate_limiter
from .clock import utcnow
from .config import Settings, get_settings
from .db import StorageFailure
from .main import serve_http
from .models import MetricKind
from .websites import ResourceNotFound, WebsiteDirectory


def _init_db(settings: Settings) -> int:
    database = build_database(settings)
    database.dispose()
    print(f"Schema ready at {settings.database_url}")
    return 0


def _add_website(
    settings: Settings,
    *,
    client_id: int,
    name: str,
    url: str,
    monitor_id: str | None,
) -> int:
    database = build_database(settings)
    try:
        website = WebsiteDirectory(database).add(
            client_id=client_id,
            name=name,
            url=url,
            uptime_monitor_id=monitor_id,
        )
    finally:
        database.dispose()
    print(f"→ Website {website.id} created for client {website.client_id}: {website.name} ({website.url})")
    return 0


def _status(settings: Settings, *, website_id: int) -> int:
    database = build_database(settings)
    try:
        try:
            website = WebsiteDirectory(database).get(website_id)
        except ResourceNotFound as exc:
            print(str(exc), file=sys.stderr)
            return 1

        now = utcnow()
        entries = {entry.kind: entry for entry in build_cache_store(settings, database).entries(website_id)}
        quota = build_rate_limiter(settings, database).can_refresh(website_id)
    finally:
        database.dispose()

    print(f"→ Website: {website.id} {website.name} ({website.url})")
    for kind in MetricKind:
        entry = entries.get(kind)
        if entry is None:
            print(f"   {kind.value}: not cached")
            continue
        state = "stale" if entry.is_stale(now) else "fresh"
        print(
            f"   {kind.value}: {state} fetched={entry.fetched_at.isoformat()} "
            f"expires={entry.expires_at.isoformat()} available={entry.payload.available}"
        )
    next_available = quota.next_available_at.isoformat() if quota.next_available_at else "-"
    print(f"   Refresh: allowed={quota.allowed} remaining={quota.remaining} next_available={next_available}")
    return 0


def _clear_cache(settings: Settings, *, website_id: int, kind: str | None) -> int:
    database = build_database(settings)
    try:
        removed = build_cache_store(settings, database).delete(
            website_id,
            MetricKind(kind) if kind else None,
        )
    finally:
        database.dispose()
    print(f"Removed {removed} cached row(s) for website {website_id}")
    return 0


def _prune_refresh_log(settings: Settings, *, older_than_hours: float | None) -> int:
    database = build_database(settings)
    try:
        limiter = build_rate_limiter(settings, database)
        before = None
        if older_than_hours is not None:
            before = utcnow() - timedelta(hours=older_than_hours)
        removed = limiter.prune(before)
    finally:
        database.dispose()
    print(f"Pruned {removed} refresh log entr{'y' if removed == 1 else 'ies'}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="CLI helpers for the client portal metrics service",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host/IP to bind")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port to bind")
    serve_parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )

    subparsers.add_parser("init-db", help="Create the database schema")

    add_parser = subparsers.add_parser("add-website", help="Register a monitored website")
    add_parser.add_argument("--client-id", type=int, required=True, help="Owning client id")
    add_parser.add_argument("--name", required=True, help="Display name")
    add_parser.add_argument("--url", required=True, help="Public URL analysed for performance")
    add_parser.add_argument("--monitor-id", help="UptimeRobot monitor id")

    status_parser = subparsers.add_parser(
        "status", help="Display cache state and refresh quota for a website"
    )
    status_parser.add_argument("--website-id", type=int, required=True)

    clear_parser = subparsers.add_parser("clear-cache", help="Delete cached metrics for a website")
    clear_parser.add_argument("--website-id", type=int, required=True)
    clear_parser.add_argument(
        "--kind",
        choices=[kind.value for kind in MetricKind],
        help="Only clear one metric kind (default: all)",
    )

    prune_parser = subparsers.add_parser(
        "prune-refresh-log", help="Delete refresh log entries outside the rate-limit window"
    )
    prune_parser.add_argument(
        "--older-than-hours",
        type=float,
        help="Delete entries older than this many hours (default: the rate-limit window)",
    )

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = get_settings()

    if args.command == "serve":
        logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))
        asyncio.run(
            serve_http(
                settings,
                host=args.host,
                port=args.port,
                log_level=args.log_level,
            )
        )
        return 0

    try:
        if args.command == "init-db":
            return _init_db(settings)
        if args.command == "add-website":
            return _add_website(
                settings,
                client_id=args.client_id,
                name=args.name,
                url=args.url,
                monitor_id=args.monitor_id,
            )
        if args.command == "status":
            return _status(settings, website_id=args.website_id)
        if args.command == "clear-cache":
            return _clear_cache(settings, website_id=args.website_id, kind=args.kind)
        if args.command == "prune-refresh-log":
            return _prune_refresh_log(settings, older_than_hours=args.older_than_hours)
    except StorageFailure as exc:
        print(f"Database error: {exc}", file=sys.stderr)
        return 2

    parser.print_help()
    return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
