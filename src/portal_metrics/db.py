"""SQLAlchemy schema and session management for the portal database."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager, nullcontext
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    create_engine,
    text,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


class StorageFailure(Exception):
    """Raised when the cache, refresh log or website tables cannot be used."""


class Base(DeclarativeBase):
    pass


class WebsiteRow(Base):
    __tablename__ = "websites"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    uptime_monitor_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class MetricCacheRow(Base):
    """Last successful snapshot per (website, metric kind)."""

    __tablename__ = "website_metrics_cache"

    website_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    metric_kind: Mapped[str] = mapped_column(String(20), primary_key=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    fetched_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class RefreshLogRow(Base):
    """Append-only record of accepted explicit refreshes."""

    __tablename__ = "metric_refresh_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    website_id: Mapped[int] = mapped_column(Integer, nullable=False)
    triggered_by: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_metric_refresh_log_website_created", "website_id", "created_at"),
    )


class Database:
    """Owns the engine and hands out transactional sessions.

    Every ``SQLAlchemyError`` raised inside :meth:`session_scope` is re-raised as
    :class:`StorageFailure` after the transaction is rolled back. SQLite sessions
    are serialised with a process-level lock because the stores are called from
    worker threads.
    """

    def __init__(self, url: str, *, echo: bool = False) -> None:
        self.url = url
        parsed = make_url(url)
        self.dialect = parsed.get_backend_name()
        engine_kwargs: dict[str, Any] = {"echo": echo}
        if self.dialect == "sqlite":
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if parsed.database in (None, "", ":memory:"):
                engine_kwargs["poolclass"] = StaticPool
        self._engine: Engine = create_engine(url, **engine_kwargs)
        self._sessions = sessionmaker(bind=self._engine, expire_on_commit=False)
        self._lock = threading.RLock() if self.dialect == "sqlite" else None

    @property
    def engine(self) -> Engine:
        return self._engine

    def create_all(self) -> None:
        try:
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as exc:
            raise StorageFailure(f"Could not create schema: {exc}") from exc

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        guard = self._lock if self._lock is not None else nullcontext()
        with guard:
            session = self._sessions()
            try:
                yield session
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                logger.warning("storage_error dialect=%s error=%s", self.dialect, exc)
                raise StorageFailure(str(exc)) from exc
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    def ping(self) -> bool:
        """Return True when a trivial query succeeds."""

        try:
            with self.session_scope() as session:
                session.execute(text("SELECT 1"))
        except StorageFailure:
            return False
        return True

    def dispose(self) -> None:
        self._engine.dispose()
