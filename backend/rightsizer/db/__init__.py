from rightsizer.db.database import (
    Base,
    CatalogBase,
    build_async_engine,
    build_async_session_factory,
    build_session_factory,
    build_sync_engine,
    init_db,
    session_scope,
)

__all__ = [
    "Base",
    "CatalogBase",
    "build_async_engine",
    "build_async_session_factory",
    "build_session_factory",
    "build_sync_engine",
    "init_db",
    "session_scope",
]
