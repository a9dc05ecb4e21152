"""
Database configuration.

SQLAlchemy engine + session factory. SQLite by default; any SQLAlchemy URL
works through DATABASE_URL.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

# Base class for ORM models
Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def create_db_engine(database_url: str) -> Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        # Agents read from worker threads; SQLite waits on locks instead of failing.
        connect_args = {"check_same_thread": False, "timeout": 15}
    return create_engine(database_url, echo=False, connect_args=connect_args)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create all tables."""
    from . import db_models  # noqa: F401  registers the tables on Base

    Base.metadata.create_all(bind=engine)
