"""
Shared fixtures: one temp-file SQLite database reached through a sync
engine (refresh pipeline) and an aiosqlite engine (recommendations).
"""
import pytest

from rightsizer.catalog.definitions import build_definitions
from rightsizer.catalog.store import CatalogTableStore
from rightsizer.catalog.versioning import CatalogVersionManager
from rightsizer.config import Settings
from rightsizer.db.database import (
    build_async_engine,
    build_async_session_factory,
    build_session_factory,
    build_sync_engine,
    init_db,
    session_scope,
)
from rightsizer.pricing import TieredPricingCalculator, default_family_models

from factories import INSTANCE_ROWS, STORAGE_ROWS, VOLUME_ROWS


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        LOG_JSON=False,
        CATALOG_REFRESH_ENABLED=False,
        CATALOG_REFRESH_COOLDOWN_SECONDS=900,
    )


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "catalog.db"


@pytest.fixture
def sync_engine(db_path):
    engine = build_sync_engine(f"sqlite:///{db_path}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(sync_engine):
    return build_session_factory(sync_engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
async def async_session_factory(db_path, sync_engine):
    engine = build_async_engine(f"sqlite+aiosqlite:///{db_path}")
    yield build_async_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def definitions(settings):
    return {d.name: d for d in build_definitions(settings)}


@pytest.fixture
def calculator():
    return TieredPricingCalculator(default_family_models())


@pytest.fixture
def seed_catalog(sync_engine, session_factory, definitions):
    """Load records straight into a new versioned table and swap the view to it."""

    def seed(name, records):
        definition = definitions[name]
        store = CatalogTableStore(sync_engine)
        table = store.create_table(definition)
        store.insert_batch(table, records)
        with session_scope(session_factory) as db:
            manager = CatalogVersionManager(db)
            version = manager.start_build(name, table.name)
            manager.mark_populated(version.id, len(records), 0, 0)
            version_id = version.id
        store.swap_view(definition, table.name, version_id)
        return table.name

    return seed


@pytest.fixture
def seeded_catalogs(seed_catalog):
    seed_catalog("ec2_instance_types", INSTANCE_ROWS)
    seed_catalog("ebs_volume_types", VOLUME_ROWS)
    seed_catalog("rds_db_storage", STORAGE_ROWS)
