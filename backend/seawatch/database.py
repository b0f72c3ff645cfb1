"""Run-ledger database: engine, session factory and table creation.

The ledger (``DedupRun``, ``MergeOperation``) is local bookkeeping for
dedup runs. The record store stays the source of truth for merge state.
"""
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from seawatch.config import settings


def _create_ledger_engine(url: str) -> Engine:
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)

    ledger_engine = create_engine(url, connect_args={"check_same_thread": False})

    @event.listens_for(ledger_engine, "connect")
    def _sqlite_on_connect(dbapi_conn, _connection_record):
        # WAL so `seawatch runs` can read while an API run is writing
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return ledger_engine


engine = _create_ledger_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False)


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: one ledger session per request."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def init_db() -> None:
    """Create the ledger tables if they do not exist yet."""
    from seawatch.models import Base  # registers DedupRun and MergeOperation

    Base.metadata.create_all(bind=engine)
