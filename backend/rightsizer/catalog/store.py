"""
Physical storage of versioned catalog tables and their canonical views.
"""
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import structlog
from sqlalchemy import MetaData, Table, insert, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rightsizer.catalog.definitions import CatalogDefinition
from rightsizer.catalog.ids import UniqueIdGenerator
from rightsizer.catalog.versioning import CatalogVersionManager, VersionTransitionError, utcnow
from rightsizer.exceptions import CatalogSwapFaultError

logger = structlog.get_logger()


class CatalogTableStore:
    """
    Creates, fills, swaps and drops versioned catalog tables.

    Table names follow <view>_<YYYY_MM_DD>_<uid>. Readers only ever see
    the view.
    """

    def __init__(self, engine: Engine, id_generator: Optional[UniqueIdGenerator] = None):
        self.engine = engine
        self.id_generator = id_generator or UniqueIdGenerator()
        self.logger = logger.bind(component="catalog_table_store")

    def _quote(self, name: str) -> str:
        return self.engine.dialect.identifier_preparer.quote(name)

    def create_table(self, definition: CatalogDefinition, now: Optional[datetime] = None) -> Table:
        """
        Create an empty table with the catalog's schema under a fresh name.

        An existing name is never reused.
        """
        now = now or utcnow()
        existing = set(inspect(self.engine).get_table_names())
        while True:
            name = f"{definition.view}_{now:%Y_%m_%d}_{self.id_generator.next_id()}"
            if name not in existing:
                break

        table = definition.model.__table__.to_metadata(MetaData(), name=name)
        table.create(self.engine)
        self.logger.info("table_created", catalog=definition.name, table=name)
        return table

    def insert_batch(self, table: Table, rows: Sequence[Dict[str, Any]]) -> int:
        if not rows:
            return 0
        with self.engine.begin() as conn:
            conn.execute(insert(table), list(rows))
        return len(rows)

    def swap_view(self, definition: CatalogDefinition, table_name: str, version_id: int) -> None:
        """
        Point the canonical view at table_name and activate its version.

        Dropping the view, recreating it and moving the active pointer
        happen in one transaction.

        Raises:
            CatalogSwapFaultError: If any step fails; nothing is changed
        """
        view = self._quote(definition.view)
        target = self._quote(table_name)
        try:
            with self.engine.begin() as conn:
                conn.exec_driver_sql(f"DROP VIEW IF EXISTS {view}")
                conn.exec_driver_sql(f"CREATE VIEW {view} AS SELECT * FROM {target}")
                with Session(bind=conn) as session:
                    CatalogVersionManager(session, autocommit=False).activate(version_id)
        except (SQLAlchemyError, VersionTransitionError) as e:
            raise CatalogSwapFaultError(definition.view, table_name, str(e)) from e

        self.logger.info("view_swapped", view=definition.view, table=table_name, version_id=version_id)

    def versioned_tables(self, definition: CatalogDefinition) -> List[str]:
        pattern = re.compile(rf"^{re.escape(definition.view)}_\d{{4}}_\d{{2}}_\d{{2}}_\d+$")
        return sorted(n for n in inspect(self.engine).get_table_names() if pattern.match(n))

    def drop_table(self, name: str) -> None:
        with self.engine.begin() as conn:
            conn.exec_driver_sql(f"DROP TABLE IF EXISTS {self._quote(name)}")
        self.logger.info("table_dropped", table=name)
