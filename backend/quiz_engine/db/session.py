"""Database plumbing: engine, session factory, declarative base, UTC column type.

The engine is built lazily from ``settings.DATABASE_URL``. SQLite URLs (used
by the test suite and local runs) get a connection shared across threads,
because the availability scheduler's poller opens sessions off the request
thread.
"""

import logging
from datetime import datetime, timezone
from typing import Iterator, Optional

from sqlalchemy import DateTime, TypeDecorator, create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from quiz_engine.config import settings

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None  # type: ignore[type-arg]


def build_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine with the pool settings the URL's backend needs."""
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return create_engine(url, echo=echo, pool_pre_ping=True)

    options: dict = {"connect_args": {"check_same_thread": False}}
    if parsed.database in (None, "", ":memory:"):
        # One connection, or every session would see its own empty database
        options["poolclass"] = StaticPool
    return create_engine(url, echo=echo, **options)


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = build_engine(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)
        logger.info("Database engine created for %s", _engine.url.render_as_string(hide_password=True))
    return _engine


def get_session_factory() -> sessionmaker:  # type: ignore[type-arg]
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(bind=get_engine(), autocommit=False, autoflush=False)
    return _SessionLocal


# ── ORM base & column types ──────────────────────────────────────────────────


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend.

    SQLite drops tzinfo on the way back; re-attach UTC so instants loaded
    from any database compare cleanly against ``datetime.now(timezone.utc)``.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """Shared declarative base; ``Mapped[datetime]`` columns default to UTC."""

    type_annotation_map = {datetime: UTCDateTime()}


def create_tables(engine: Optional[Engine] = None) -> None:
    """Create any missing tables on *engine* (default: the configured one)."""
    # Import models so they register on Base.metadata
    from quiz_engine.db import models  # noqa: F401

    target = engine or get_engine()
    Base.metadata.create_all(bind=target)
    logger.info("Ensured %d tables exist", len(Base.metadata.tables))


def get_db() -> Iterator[Session]:
    """FastAPI dependency — yields a DB session and closes it after the request."""
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()
