"""
Database initialization and connection management utilities.

This module provides engine creation with per-backend pooling, schema
creation, and a transactional session helper that wraps database failures
into ``PersistenceError``.
"""

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine, event, pool
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from workspace_import.client.exceptions import ConfigurationError, PersistenceError
from workspace_import.config import StateConfig
from workspace_import.migration.models import Base
from workspace_import.utils.logging import get_logger

logger = get_logger(__name__)


def _enable_sqlite_foreign_keys(dbapi_conn, connection_record):
    """
    Enable foreign key constraints for SQLite connections.

    SQLite has foreign keys disabled by default. This event handler
    enables them for each new connection.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_database_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 5,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 3600,
) -> Engine:
    """
    Create a SQLAlchemy engine with appropriate settings.

    Args:
        database_url: Database connection URL (sqlite:/// or postgresql://)
        echo: Whether to log SQL statements (useful for debugging)
        pool_size: Number of connections to maintain in the pool
        max_overflow: Maximum number of connections that can be created beyond pool_size
        pool_timeout: Timeout for getting a connection from the pool (seconds)
        pool_recycle: Recycle connections after this many seconds (prevents stale connections)

    Returns:
        SQLAlchemy Engine instance

    Raises:
        ConfigurationError: If database URL is invalid
    """
    if not database_url:
        raise ConfigurationError("Database URL cannot be empty")

    is_sqlite = database_url.startswith("sqlite")

    try:
        if is_sqlite:
            # NullPool avoids sharing SQLite connections across threads
            engine = create_engine(
                database_url,
                echo=echo,
                poolclass=pool.NullPool,
                connect_args={"check_same_thread": False},
            )
            event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        else:
            engine = create_engine(
                database_url,
                echo=echo,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_timeout=pool_timeout,
                pool_pre_ping=True,
                pool_recycle=pool_recycle,
            )
    except (SQLAlchemyError, ValueError, ImportError) as e:
        logger.error("database_engine_failed", error=str(e))
        raise ConfigurationError(f"Failed to create database engine: {e}") from e

    logger.debug(
        "database_engine_created",
        database_type="sqlite" if is_sqlite else engine.dialect.name,
        pool_size=pool_size if not is_sqlite else "NullPool",
    )
    return engine


class Database:
    """Engine plus session factory for one database.

    Tables are created on initialization; this is idempotent.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, database_url: str, echo: bool = False, **pool_options) -> "Database":
        return cls(create_database_engine(database_url, echo=echo, **pool_options)).init()

    @classmethod
    def from_config(cls, config: StateConfig) -> "Database":
        return cls.from_url(
            config.database_url,
            pool_size=config.db_pool_size,
            max_overflow=config.db_max_overflow,
            pool_timeout=config.db_pool_timeout,
            pool_recycle=config.db_pool_recycle,
        )

    def init(self) -> "Database":
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            logger.error("database_init_failed", error=str(e))
            raise ConfigurationError(f"Failed to initialize database: {e}") from e

        logger.debug("database_initialized", tables=len(Base.metadata.tables))
        return self

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Context manager for a database transaction.

        Commits on success and rolls back on exception. SQLAlchemy errors
        are re-raised as ``PersistenceError``; other exceptions propagate
        unchanged after the rollback.

        Yields:
            SQLAlchemy Session instance

        Raises:
            PersistenceError: If a database operation fails
        """
        session = self._session_factory()

        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.warning("database_session_rolled_back", error=str(e))
            raise PersistenceError(f"Database operation failed: {e}") from e
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()
