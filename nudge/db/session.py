from __future__ import annotations

from loguru import logger
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from nudge.config.settings import settings

# Lazy initialization to avoid import-time database connections
_engine: Engine | None = None


def create_engine_for_url(database_url: str) -> Engine:
    """Create an engine with connection args suited to the backend."""
    url = database_url.lower()
    if "sqlite" in url:
        if ":memory:" in url or url.rstrip("/") == "sqlite:":
            # One shared connection so worker threads see the same in-memory database
            return create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        return create_engine(database_url, connect_args={"check_same_thread": False})

    return create_engine(
        database_url,
        connect_args={"connect_timeout": 10, "application_name": "nudge"},
        pool_pre_ping=True,
        pool_recycle=3600,
    )


def get_engine() -> Engine:
    """Get or create the database engine (lazy initialization)."""
    global _engine
    if _engine is None:
        logger.info(f"Initializing database engine: {settings.database_url}")
        _engine = create_engine_for_url(settings.database_url)
        logger.info("Database engine initialized")
    return _engine
