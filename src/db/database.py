from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from functools import lru_cache
from typing import Any

from loguru import logger
from sqlalchemy import Engine, create_engine, text
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config import get_settings
from src.db.models.base import Base

_MEMORY_URLS = {"sqlite://", "sqlite:///:memory:"}


def make_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine; SQLite connections are shareable across worker threads."""
    kwargs: dict[str, Any] = {"echo": echo, "pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in _MEMORY_URLS:
            # One shared connection, or each thread would see its own empty database
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, **kwargs)


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    """Get the engine for the configured database."""
    settings = get_settings()
    return make_engine(settings.database_url, echo=settings.log_level == "DEBUG")


def init_db(engine: Engine | None = None) -> None:
    """Initialize database tables."""
    engine = engine or get_engine()
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables initialized")


def make_session_factory(
    database_url: str | None = None,
    *,
    engine: Engine | None = None,
    create_tables: bool = True,
) -> sessionmaker[Session]:
    """
    Build a session factory.

    Args:
        database_url: Connection string (configured database if None)
        engine: Existing engine to bind instead of creating one
        create_tables: Create missing tables before returning
    """
    if engine is None:
        engine = make_engine(database_url) if database_url else get_engine()
    if create_tables:
        init_db(engine)
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def ping(engine: Engine | None = None) -> bool:
    """Check that the database answers a trivial query."""
    engine = engine or get_engine()
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return True


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Provide a transactional scope around a series of operations."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:  # Intentionally broad - rollback on any error before re-raising
        session.rollback()
        raise
    finally:
        session.close()
