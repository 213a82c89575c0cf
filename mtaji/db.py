from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine, inspect as sa_inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from mtaji.config import get_settings
from mtaji.errors import StoreError, diagnostics
from mtaji.models import Base

log = logging.getLogger(__name__)

_lock = threading.Lock()
_engine = None
_SessionLocal = None


def init_db(db_path: str | Path | None = None) -> None:
    global _engine, _SessionLocal
    with _lock:
        if _engine is not None:
            _engine.dispose()
        if db_path is None:
            db_path = get_settings().database_path
        db_path = Path(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        url = f"sqlite:///{db_path}"
        _engine = create_engine(url, connect_args={"check_same_thread": False})
        Base.metadata.create_all(_engine)
        _SessionLocal = sessionmaker(bind=_engine, autoflush=False, expire_on_commit=False)
        _migrate_existing_db(_engine)


def _migrate_existing_db(engine) -> None:
    """Add columns that may be missing in older databases."""
    inspector = sa_inspect(engine)
    if not inspector.has_table("initiatives"):
        return
    columns = {col["name"] for col in inspector.get_columns("initiatives")}
    if "opportunity_preferences_json" not in columns:
        log.info("Adding opportunity_preferences_json column to initiatives")
        with engine.begin() as conn:
            conn.execute(text(
                "ALTER TABLE initiatives ADD COLUMN opportunity_preferences_json TEXT"
            ))


def get_session() -> Session:
    with _lock:
        if _SessionLocal is None:
            raise RuntimeError("init_db() has not been called")
        factory = _SessionLocal
    return factory()  # type: ignore[misc]


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Context manager providing a session for scripts and background callers.

    Usage::

        with session_scope() as session:
            ...
    """
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def store_errors(session: Session, action: str) -> Generator[None, None, None]:
    """Translate store failures inside the block into a single ``StoreError``.

    The session is rolled back and the store's diagnostic payload is logged
    before re-raising, so callers only ever see one descriptive failure.
    """
    try:
        yield
    except SQLAlchemyError as exc:
        session.rollback()
        diag = diagnostics(exc)
        log.error(
            "Store error while trying to %s: code=%s message=%s details=%s hint=%s",
            action, diag["code"], diag["message"], diag["details"], diag["hint"],
        )
        raise StoreError(f"Failed to {action}: {diag['message']}", diag) from exc
