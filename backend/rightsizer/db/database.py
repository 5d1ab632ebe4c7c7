"""
Database connection and session management.

Two declarative bases are kept apart:
    Base         bookkeeping tables created by init_db()
    CatalogBase  catalog row schemas; their tables are created per refresh
                 cycle under versioned names and read through a view
"""
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

# Base class for bookkeeping models
Base = declarative_base()

# Base class for catalog row models (never passed to create_all)
CatalogBase = declarative_base()


def _enable_sqlite_transactional_ddl(engine: Engine) -> None:
    """
    Let pysqlite run DDL inside the transaction SQLAlchemy opens.

    Without this the driver commits implicitly before DROP VIEW and
    CREATE VIEW, which would break the atomic view swap.
    """

    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_sync_engine(url: str, echo: bool = False) -> Engine:
    """
    Create the sync engine used by the refresh pipeline.

    Args:
        url: SQLAlchemy database URL
        echo: Log emitted SQL

    Returns:
        Configured engine
    """
    if url.startswith("sqlite"):
        engine = create_engine(url, echo=echo, connect_args={"check_same_thread": False})
        _enable_sqlite_transactional_ddl(engine)
        return engine

    return create_engine(url, echo=echo, pool_pre_ping=True, pool_size=10, max_overflow=20)


def build_async_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create the async engine used by the recommendation path."""
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=echo)
    return create_async_engine(url, echo=echo, pool_pre_ping=True, pool_size=10, max_overflow=20)


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(engine, autocommit=False, autoflush=False, expire_on_commit=False)


def build_async_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@contextmanager
def session_scope(factory: sessionmaker) -> Iterator[Session]:
    """
    Sync session for background jobs.

    Usage:
        with session_scope(factory) as db:
            ...
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(engine: Engine) -> None:
    """Create bookkeeping tables (catalog_versions, data_age)."""
    # Imported for table registration on Base.metadata
    from rightsizer.models import catalog  # noqa: F401

    Base.metadata.create_all(engine)
