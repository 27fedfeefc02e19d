from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from contextlib import contextmanager
from typing import Iterator, Optional
import logging

from upgrades.core.config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()

engine: Optional[Engine] = None
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False)


def _build_engine(url: str) -> Engine:
    is_sqlite = url.startswith("sqlite")
    pool_kwargs = {"pool_pre_ping": True}
    connect_args = {"check_same_thread": False, "timeout": 15} if is_sqlite else {}
    eng = create_engine(url, connect_args=connect_args, **pool_kwargs)
    if is_sqlite:

        @event.listens_for(eng, "connect")
        def _set_sqlite_pragma(dbapi_connection, connection_record):  # type: ignore[no-redef]
            cursor = dbapi_connection.cursor()
            # Back off rather than instantly failing on transient locks (ms)
            cursor.execute("PRAGMA busy_timeout=15000;")
            cursor.close()

    return eng


def init_store(url: Optional[str] = None) -> bool:
    """Bind the session factory to the configured store and create tables.

    Returns False (and leaves the store disabled) when no URL is configured
    or the store cannot be reached.
    """
    global engine
    url = url if url is not None else settings.STORE_DATABASE_URL
    if not url:
        logger.info("STORE_DATABASE_URL not set; running without the document store")
        return False
    try:
        # Import models so every table is registered on Base.metadata
        from . import models  # noqa: F401

        eng = _build_engine(url)
        Base.metadata.create_all(bind=eng)
    except Exception as exc:
        logger.error("Document store initialisation failed: %s", exc, exc_info=True)
        return False
    engine = eng
    SessionLocal.configure(bind=eng)
    logger.info("Document store ready dialect=%s", eng.dialect.name)
    return True


# Dependency
def get_db():
    if engine is None:
        yield None
        return
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_session() -> Iterator:
    """Provide a short-lived session outside request scope (background retries)."""
    if engine is None:
        raise RuntimeError("document store is not initialised")
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
