# File: src/perpindexer/infrastructure/db/uow.py
# Unit of Work for the primary store: one event, one transaction.

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .base import SessionLocal
from .models import Base

log = logging.getLogger(__name__)


def create_tables(bind: Engine) -> None:
    """Creates all tables defined in models/ if they do not exist."""
    log.info("Creating database tables if they do not exist...")
    try:
        Base.metadata.create_all(bind)
        log.info("Database tables checked/created successfully.")
    except Exception as e:
        log.critical(f"Failed to create database tables: {e}", exc_info=True)
        raise


@contextmanager
def session_scope(factory: Optional[sessionmaker] = None) -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.
    Commits on success; on any exception rolls back and re-raises, so no
    partial write is ever visible.
    """
    session = (factory or SessionLocal)()
    log.debug(f"Session {id(session)} opened.")
    try:
        yield session
        session.commit()
        log.debug(f"Session {id(session)} committed.")
    except Exception as e:
        log.error(f"Session {id(session)} rollback due to exception: {e}")
        session.rollback()
        raise
    finally:
        session.close()
