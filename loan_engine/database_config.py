# database_config.py
"""
Database configuration for the consistency engine.
Supports PostgreSQL (deployed) and SQLite (local development/testing).
"""

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional
from urllib.parse import quote_plus

from sqlalchemy import Engine, create_engine, event, inspect
from sqlmodel import Session, SQLModel

from .engine_logging import get_logger

logger = get_logger(__name__)


class DatabaseConfig:
    """Database configuration factory supporting PostgreSQL and SQLite"""

    @staticmethod
    def get_database_url() -> str:
        """
        Get database URL based on environment configuration

        DATABASE_URL wins, then POSTGRES_* settings, then the SQLite file at
        APP_DB_PATH.
        """
        explicit = os.getenv("DATABASE_URL")
        if explicit:
            return explicit

        postgres_host = os.getenv("POSTGRES_HOST")
        if postgres_host:
            postgres_user = os.getenv("POSTGRES_USER", "loan_engine")
            postgres_password = os.getenv("POSTGRES_PASSWORD", "loan_engine_dev")
            postgres_db = os.getenv("POSTGRES_DB", "loan_engine")
            postgres_port = os.getenv("POSTGRES_PORT", "5432")

            # URL encode password to handle special characters
            encoded_password = quote_plus(postgres_password)

            url = f"postgresql://{postgres_user}:{encoded_password}@{postgres_host}:{postgres_port}/{postgres_db}"
            logger.info(f"Using PostgreSQL database: {postgres_host}:{postgres_port}/{postgres_db}")
            return url

        database_path = os.getenv("APP_DB_PATH", "./data/loan_engine.db")
        Path(database_path).parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"Using SQLite database: {database_path}")
        return f"sqlite:///{database_path}"

    @staticmethod
    def get_engine_config(database_url: str) -> Dict[str, Any]:
        """Engine keyword arguments for the target database"""
        echo = os.getenv("SQLALCHEMY_ECHO", "false").lower() == "true"

        if database_url.startswith("postgresql"):
            return {
                "echo": echo,
                "pool_size": int(os.getenv("DB_POOL_SIZE", "10")),
                "max_overflow": int(os.getenv("DB_MAX_OVERFLOW", "20")),
                "pool_pre_ping": True,
                "pool_recycle": int(os.getenv("DB_POOL_RECYCLE", "3600")),
                "connect_args": {
                    "connect_timeout": int(os.getenv("DB_CONNECT_TIMEOUT", "10")),
                    "application_name": "loan_engine",
                }
            }

        return {
            "echo": echo,
            "connect_args": {
                "check_same_thread": False,  # Allow multi-threading
                "timeout": 20,
            },
            "pool_pre_ping": True,
        }


def create_db_engine(database_url: Optional[str] = None) -> Engine:
    """
    Create database engine with settings for PostgreSQL or SQLite

    Args:
        database_url: Explicit URL; resolved from the environment when omitted

    Returns:
        SQLAlchemy Engine configured for the target database
    """
    database_url = database_url or DatabaseConfig.get_database_url()
    engine = create_engine(database_url, **DatabaseConfig.get_engine_config(database_url))

    if engine.dialect.name == "sqlite":
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            """Configure SQLite pragmas for concurrency and FK cascades"""
            cursor = dbapi_connection.cursor()
            # WAL lets readers keep seeing the committed graph during a rebuild
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA busy_timeout=30000")
            cursor.close()

    logger.info(f"Database engine created: {engine.dialect.name}")
    return engine


def init_db(engine: Engine) -> None:
    """
    Initialize database by creating all tables

    Args:
        engine: SQLAlchemy engine
    """
    try:
        from . import models  # noqa: F401  registers all tables

        SQLModel.metadata.create_all(engine)
        tables = inspect(engine).get_table_names()
        logger.info(f"Database tables ready: {', '.join(sorted(tables))}")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def get_database_info(engine: Engine) -> Dict[str, Any]:
    """Database type and table count for status reporting"""
    try:
        tables = inspect(engine).get_table_names()
        return {
            "database_type": "PostgreSQL" if engine.dialect.name == "postgresql" else "SQLite",
            "table_count": len(tables),
        }
    except Exception as e:
        logger.error(f"Failed to get database info: {e}")
        return {"error": str(e)}


@contextmanager
def unit_of_work(session: Session) -> Iterator[Session]:
    """
    Commit everything done inside the block, or nothing.

    Any exception rolls the session back and is re-raised unchanged.
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise


# Global database components (initialized on first use)
_engine: Optional[Engine] = None


def get_engine() -> Engine:
    """Get or create the global database engine"""
    global _engine
    if _engine is None:
        _engine = create_db_engine()
        init_db(_engine)
    return _engine


def get_session() -> Session:
    """Get a new database session"""
    return Session(get_engine(), expire_on_commit=False)


def get_db_session() -> Iterator[Session]:
    """FastAPI dependency yielding one session per request"""
    session = get_session()
    try:
        yield session
    finally:
        session.close()


def close_db() -> None:
    """Close database connections (for testing/cleanup)"""
    global _engine
    if _engine:
        _engine.dispose()
        _engine = None
