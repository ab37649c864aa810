"""SQLAlchemy engine and session handling."""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from market_feed_collect.models import Base

logger = logging.getLogger(__name__)


def _engine_kwargs(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        # An in-memory database only lives as long as its single connection
        if database_url in ("sqlite://", "sqlite:///:memory:") or ":memory:" in database_url:
            kwargs["poolclass"] = StaticPool
        return kwargs
    return {
        "pool_size": 10,
        "max_overflow": 20,
        "pool_pre_ping": True,  # Verify connections before using
    }


class Database:
    """
    Holds the engine and session factory for one database.

    The connection URL is passed in explicitly; nothing here reads the
    environment. Can be used as a context manager, which disposes the engine
    on exit.
    """

    def __init__(self, database_url: str, echo: bool = False, engine: Optional[Engine] = None):
        self.database_url = database_url
        self.engine = engine or create_engine(database_url, echo=echo, **_engine_kwargs(database_url))
        # Create a configured "Session" class
        self.session_factory = sessionmaker(bind=self.engine, autocommit=False, autoflush=False,
                                            expire_on_commit=False)
        logger.info(f"Database engine created for dialect '{self.engine.dialect.name}'")

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def create_tables(self):
        """Creates all tables defined on the declarative base if they do not exist."""
        logger.info("Creating database tables...")
        Base.metadata.create_all(self.engine)
        logger.info("Database tables created")

    def drop_tables(self):
        """Drops all tables (USE WITH CAUTION!)."""
        logger.warning("Dropping all database tables...")
        Base.metadata.drop_all(self.engine)
        logger.info("Database tables dropped")

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """
        Provides a transactional session.

        Commits when the block exits normally, rolls back and re-raises on any
        exception, and always closes the session.
        """
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self):
        """Disposes the engine and its connection pool."""
        self.engine.dispose()
        logger.info("Database connections closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
