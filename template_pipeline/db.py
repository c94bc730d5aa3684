"""Engine and session helpers for the pipeline job store and template index.

Only ``TemplatePipelineJob`` and ``TemplateRecord`` live here. The tables are
owned by the wider platform, so they are created on startup only when
``RUN_MIGRATIONS`` is set. The retry sweep calls the store from worker
threads, which SQLite allows only with ``check_same_thread`` disabled.
"""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Iterator, Mapping, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)

_ENGINE: Engine | None = None
_SESSION_FACTORY: sessionmaker | None = None

_TRUE_VALUES = {"1", "true", "yes", "on"}


class DatabaseConfigError(RuntimeError):
    """Raised when the job store has no database to talk to."""


def get_database_url(env: Optional[Mapping[str, str]] = None) -> str:
    env = os.environ if env is None else env
    url = (env.get("DATABASE_URL") or "").strip()
    if not url:
        raise DatabaseConfigError(
            "DATABASE_URL is not set; the SQL job store and template index need it. "
            "Example: postgresql+psycopg://pipeline:secret@db:5432/templates or sqlite:///pipeline.db"
        )
    return url


def create_pipeline_engine(url: str) -> Engine:
    if make_url(url).get_backend_name() == "sqlite":
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


def get_engine() -> Engine:
    global _ENGINE
    if _ENGINE is None:
        _ENGINE = create_pipeline_engine(get_database_url())
        logger.info("db.engine.created backend=%s", _ENGINE.url.get_backend_name())
    return _ENGINE


def get_session_factory() -> sessionmaker:
    global _SESSION_FACTORY
    if _SESSION_FACTORY is None:
        _SESSION_FACTORY = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=get_engine()
        )
    return _SESSION_FACTORY


def reset_engine() -> None:
    """Dispose the cached engine so the next call re-reads ``DATABASE_URL``."""

    global _ENGINE, _SESSION_FACTORY
    if _ENGINE is not None:
        _ENGINE.dispose()
    _ENGINE = None
    _SESSION_FACTORY = None


@contextmanager
def db_session(factory: Optional[sessionmaker] = None) -> Iterator[Session]:
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def should_run_migrations(env: Optional[Mapping[str, str]] = None) -> bool:
    env = os.environ if env is None else env
    return (env.get("RUN_MIGRATIONS") or "").strip().lower() in _TRUE_VALUES
