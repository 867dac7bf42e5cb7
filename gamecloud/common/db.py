"""Database bootstrap helpers.

The engine and session factory are built once by the application factory and
handed to the ledger store; nothing here connects at import time.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool


class Base(DeclarativeBase):
    """Declarative base for SQLAlchemy models."""

    pass


def make_engine(dsn: str):
    """Create one engine per process for the given DSN."""

    if dsn.startswith("sqlite") and (":memory:" in dsn or dsn.endswith("://")):
        # In-memory SQLite lives on a single connection shared by all threads.
        return create_engine(dsn, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    return create_engine(dsn, pool_pre_ping=True)


def make_session_factory(engine):
    # `expire_on_commit=False` keeps ORM objects readable after commit in handlers.
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
