"""Lookup of client-owned websites."""

from __future__ import annotations

from sqlalchemy import select

from .clock import Clock, to_storage, utcnow
from .db import Database, WebsiteRow
from .models import Website


class ResourceNotFound(Exception):
    """Raised when a website does not exist or is no longer active."""


class NotAuthorized(ResourceNotFound):
    """Raised when a website exists but belongs to another client."""


class WebsiteDirectory:
    """Resolves websites for a client before any cache or source work."""

    def __init__(self, database: Database, *, clock: Clock = utcnow) -> None:
        self._database = database
        self._clock = clock

    def get(self, website_id: int) -> Website:
        with self._database.session_scope() as session:
            row = session.get(WebsiteRow, website_id)
            if row is None or not row.is_active:
                raise ResourceNotFound(f"Website {website_id} not found")
            return Website.model_validate(row)

    def get_for_client(self, website_id: int, client_id: int) -> Website:
        website = self.get(website_id)
        if website.client_id != client_id:
            raise NotAuthorized(f"Website {website_id} does not belong to client {client_id}")
        return website

    def list_for_client(self, client_id: int) -> list[Website]:
        statement = (
            select(WebsiteRow)
            .where(WebsiteRow.client_id == client_id, WebsiteRow.is_active.is_(True))
            .order_by(WebsiteRow.name)
        )
        with self._database.session_scope() as session:
            return [Website.model_validate(row) for row in session.scalars(statement)]

    def add(
        self,
        *,
        client_id: int,
        name: str,
        url: str,
        uptime_monitor_id: str | None = None,
    ) -> Website:
        row = WebsiteRow(
            client_id=client_id,
            name=name,
            url=url,
            uptime_monitor_id=uptime_monitor_id or None,
            is_active=True,
            created_at=to_storage(self._clock()),
        )
        with self._database.session_scope() as session:
            session.add(row)
            session.flush()
            return Website.model_validate(row)
