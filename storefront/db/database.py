"""
Database connection and session management.
Uses SQLAlchemy; Postgres in production, SQLite for local runs and tests.

The Database object is built once at process start (see api.server lifespan)
and stored on app.state. Nothing here connects on import.
"""

from typing import Iterator

from fastapi import Request
from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.utils.logger import get_logger

logger = get_logger("db")

# Base class for all our database models
Base = declarative_base()


class Database:
    """Owns the engine and session factory for one process."""

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        kwargs = {"echo": echo, "pool_pre_ping": True}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            # In-memory databases live inside one connection; share it.
            if url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
        self.engine = create_engine(url, **kwargs)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        logger.info("database: engine created dialect=%s", self.engine.dialect.name)

    def create_all(self) -> None:
        """Create any missing tables (idempotent)."""
        # Import models so they register on Base.metadata
        from storefront.db import models  # noqa: F401
        Base.metadata.create_all(bind=self.engine)

    def drop_all(self) -> None:
        from storefront.db import models  # noqa: F401
        Base.metadata.drop_all(bind=self.engine)

    def session(self) -> Session:
        return self.SessionLocal()

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def dispose(self) -> None:
        self.engine.dispose()


def get_db(request: Request) -> Iterator[Session]:
    """
    Dependency function that provides a database session bound to the
    application's Database.
    """
    db = request.app.state.db.session()
    try:
        yield db
    finally:
        db.close()
