"""Database engine and session utilities."""

from __future__ import annotations

from contextlib import contextmanager
from functools import lru_cache
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from timelog_approvals.config import get_settings

Base = declarative_base()


@lru_cache()
def get_engine() -> Engine:
    """Create or return a cached SQLAlchemy engine."""

    settings = get_settings()
    connect_args = {}
    if settings.database_url.startswith("sqlite"):
        # Claims are written from the worker pool threads.
        connect_args["check_same_thread"] = False
    return create_engine(settings.database_url, future=True, echo=False, connect_args=connect_args)


@lru_cache()
def get_session_factory() -> sessionmaker[Session]:
    """Return a cached session factory bound to the engine."""

    return sessionmaker(bind=get_engine(), autoflush=False, autocommit=False, future=True, expire_on_commit=False)


def init_db() -> None:
    """Create missing tables; existing tables are left untouched."""

    from timelog_approvals import models  # noqa: F401  (registers mappers)

    Base.metadata.create_all(get_engine())


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Provide a transactional scope for DB operations."""

    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
