from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import QueuePool
from .config import settings
import logging
from typing import Any

logger = logging.getLogger(__name__)


def build_engine(database_url: str) -> Engine:
    """Create the SQLAlchemy engine for ``database_url``.

    SQLite is used for local runs and tests and does not take the pool sizing
    options, so it gets a plain engine.
    """
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            echo=False,
        )

    # Optimized connection pooling for high-performance
    return create_engine(
        database_url,
        poolclass=QueuePool,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,  # Avoid stale connections
        echo=False,  # Disable SQL logging for performance
    )


try:
    engine = build_engine(settings.DATABASE_URL)
except Exception as e:
    logger.error(f"Failed to create database engine: {e}")
    # Re-raise the exception as this is critical
    raise
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base: Any = declarative_base()


def get_db():
    """Database dependency for FastAPI"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
