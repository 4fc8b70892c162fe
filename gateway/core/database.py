"""Database connection and session management."""

from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from gateway.core.config import settings


def engine_options(database_url: str) -> dict[str, Any]:
    """Keyword arguments for ``create_engine`` on *database_url*.

    A request's session is used from more than one worker thread (ledger
    calls go through the threadpool), so SQLite must not pin connections
    to the thread that opened them.
    """
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(settings.database_url, echo=False, **engine_options(settings.database_url))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    """Base class for all ledger and audit tables."""

    pass


def get_db():
    """Yield one session per request; the ledger commits its own writes."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
