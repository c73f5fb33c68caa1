"""SQLAlchemy engine/session setup for the relational store (SQLite by default, DATABASE_URL to override)."""
import os
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import settings


class Base(DeclarativeBase):
    pass


def make_engine(url: Optional[str] = None) -> Engine:
    """Create an engine for url (defaults to settings.database_url).
    SQLite connections are shared across the request threads and the job worker thread; an in-memory
    database uses a single static connection so every session sees the same data."""
    url = url or settings.database_url
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)

    kwargs = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    else:
        path = url.split("sqlite:///", 1)[-1]
        if path:
            os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    return create_engine(url, **kwargs)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    from app.db import models  # noqa: F401  registers tables on Base.metadata

    Base.metadata.create_all(engine)
