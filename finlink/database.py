"""
Database configuration and session management.

Provides the SQLAlchemy engine and session factory used by the SQL stores.
Nothing is created at import time; callers build a session factory from a
database URL and pass it into the stores.
"""
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

# Create declarative base for models
Base = declarative_base()


def create_db_engine(database_url: str) -> Engine:
    """
    Create a SQLAlchemy engine for a database URL.

    Args:
        database_url: SQLAlchemy URL (SQLite for local use, PostgreSQL otherwise).
    """
    # SQLite doesn't support pool_size/max_overflow
    if database_url.startswith("sqlite"):
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # one shared connection, or every session sees an empty database
            return create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
        )

    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    """Create a session factory bound to the given engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Initialize database tables."""
    # Import models to ensure they're registered with Base
    from finlink.models import document  # noqa: F401
    from finlink.models import result  # noqa: F401

    Base.metadata.create_all(bind=engine)
