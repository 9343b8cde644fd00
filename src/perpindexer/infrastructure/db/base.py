# src/perpindexer/infrastructure/db/base.py
"""
Database engine setup and session factory for the primary store.

`build_engine` is used directly by tests and tools that need their own
database; `engine` / `SessionLocal` are the process-wide defaults built from
settings.DATABASE_URL.
"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from perpindexer.config import settings


def build_engine(url: str, **kwargs) -> Engine:
    """Create an engine; SQLite connections are shared with worker threads."""
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+psycopg://", 1)
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    if not url.startswith("sqlite"):
        kwargs.setdefault("pool_pre_ping", True)
        kwargs.setdefault("pool_recycle", 3600)
    return create_engine(url, connect_args=connect_args, **kwargs)


def build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)


engine = build_engine(settings.DATABASE_URL)
SessionLocal = build_session_factory(engine)
