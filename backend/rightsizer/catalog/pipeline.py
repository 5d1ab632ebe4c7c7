"""
Catalog refresh pipeline.

Append-then-swap: every cycle loads a complete new versioned table, then
atomically points the canonical view at it. Readers see either the old
catalog or the new one, never a partial load.

State machine per catalog:

    IDLE -> BUILDING -> POPULATING -> SWAPPING -> PRUNING -> IDLE
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

import structlog
from sqlalchemy import Table
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from rightsizer.catalog.definitions import CatalogDefinition
from rightsizer.catalog.schema import load_row
from rightsizer.catalog.sources import RowSource
from rightsizer.catalog.store import CatalogTableStore
from rightsizer.catalog.versioning import CatalogVersionManager, DataAgeRepository, utcnow
from rightsizer.db.database import build_session_factory, session_scope
from rightsizer.exceptions import CatalogSwapFaultError, RowValidationError, UpstreamDataFaultError

logger = structlog.get_logger()


class RefreshState(str, Enum):
    IDLE = "IDLE"
    BUILDING = "BUILDING"
    POPULATING = "POPULATING"
    SWAPPING = "SWAPPING"
    PRUNING = "PRUNING"


@dataclass
class RefreshReport:
    """Outcome of one tick or cycle."""
    catalog: str
    succeeded: bool
    fresh: bool = False
    table_name: Optional[str] = None
    version_id: Optional[int] = None
    rows_loaded: int = 0
    rows_skipped: int = 0
    rows_filtered: int = 0
    pruned: List[str] = field(default_factory=list)
    error: Optional[str] = None


class CatalogRefreshPipeline:
    """
    Refreshes one catalog from one row source.

    Only one cycle per pipeline may run at a time; the scheduler ensures
    this with max_instances=1.
    """

    def __init__(
        self,
        definition: CatalogDefinition,
        source: RowSource,
        engine: Engine,
        batch_size: int = 1000,
        store: Optional[CatalogTableStore] = None,
        session_factory: Optional[sessionmaker] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.definition = definition
        self.source = source
        self.engine = engine
        self.batch_size = batch_size
        self.store = store or CatalogTableStore(engine)
        self.session_factory = session_factory or build_session_factory(engine)
        self.clock = clock
        self.state = RefreshState.IDLE
        self.logger = logger.bind(component="catalog_refresh", catalog=definition.name)

    def is_stale(self) -> bool:
        """True if the catalog was never refreshed or is older than its freshness threshold."""
        with session_scope(self.session_factory) as db:
            updated_at = DataAgeRepository(db).get(self.definition.name)
        if updated_at is None:
            return True
        return self.clock() - updated_at > self.definition.freshness

    def tick(self) -> RefreshReport:
        """Run a cycle if the catalog is stale."""
        if not self.is_stale():
            self.logger.debug("refresh_not_due")
            return RefreshReport(catalog=self.definition.name, succeeded=True, fresh=True)
        return self.run_cycle()

    def run_cycle(self) -> RefreshReport:
        """
        Build, populate, swap and prune.

        Errors before the swap leave the view untouched and the half-built
        table behind for the next prune. A failed swap is rolled back in
        full. Prune failures do not undo the swap.
        """
        report = RefreshReport(catalog=self.definition.name, succeeded=False)
        self.logger.info("refresh_started", source=self.source.name)

        # BUILDING
        self.state = RefreshState.BUILDING
        try:
            table = self.store.create_table(self.definition, self.clock())
            report.table_name = table.name
            with session_scope(self.session_factory) as db:
                version = CatalogVersionManager(db).start_build(self.definition.name, table.name)
                report.version_id = version.id
        except SQLAlchemyError as e:
            return self._abort(report, e)

        # POPULATING
        self.state = RefreshState.POPULATING
        try:
            self._populate(table, report)
            with session_scope(self.session_factory) as db:
                CatalogVersionManager(db).mark_populated(
                    report.version_id, report.rows_loaded, report.rows_skipped, report.rows_filtered
                )
        except (UpstreamDataFaultError, SQLAlchemyError) as e:
            return self._abort(report, e)
        except Exception as e:
            self._abort(report, e)
            raise

        # SWAPPING
        self.state = RefreshState.SWAPPING
        try:
            self.store.swap_view(self.definition, table.name, report.version_id)
        except CatalogSwapFaultError as e:
            self.logger.error("view_swap_failed", table=table.name, error=e.reason)
            return self._abort(report, e)

        with session_scope(self.session_factory) as db:
            DataAgeRepository(db).touch(self.definition.name, self.clock())

        # PRUNING
        self.state = RefreshState.PRUNING
        try:
            report.pruned = self.prune()
        except SQLAlchemyError as e:
            self.logger.error("prune_failed", error=str(e))

        self.state = RefreshState.IDLE
        report.succeeded = True
        self.logger.info(
            "refresh_completed",
            table=table.name,
            rows_loaded=report.rows_loaded,
            rows_skipped=report.rows_skipped,
            rows_filtered=report.rows_filtered,
            pruned=len(report.pruned),
        )
        return report

    def _populate(self, table: Table, report: RefreshReport) -> None:
        batch = []
        for raw in self.source.rows():
            try:
                record = load_row(self.definition.schema, raw)
            except RowValidationError as e:
                report.rows_skipped += 1
                self.logger.warning("row_skipped", column=e.column, reason=e.reason)
                continue
            if record is None:
                report.rows_filtered += 1
                continue

            batch.append(record)
            if len(batch) >= self.batch_size:
                report.rows_loaded += self.store.insert_batch(table, batch)
                batch = []

        report.rows_loaded += self.store.insert_batch(table, batch)

    def prune(self) -> List[str]:
        """
        Drop every versioned table except the one behind the active pointer.

        Returns:
            Names of the dropped tables
        """
        with session_scope(self.session_factory) as db:
            active = CatalogVersionManager(db).get_active(self.definition.name)
            active_table = active.table_name if active else None

        dropped = []
        for name in self.store.versioned_tables(self.definition):
            if name == active_table:
                continue
            self.store.drop_table(name)
            with session_scope(self.session_factory) as db:
                CatalogVersionManager(db).retire_table(name)
            dropped.append(name)
        return dropped

    def _abort(self, report: RefreshReport, error: Exception) -> RefreshReport:
        report.error = str(error)
        if report.version_id is not None:
            with session_scope(self.session_factory) as db:
                CatalogVersionManager(db).mark_failed(report.version_id, report.error)
        self.logger.error(
            "refresh_failed",
            state=self.state.value,
            table=report.table_name,
            error_type=type(error).__name__,
            error=report.error,
        )
        self.state = RefreshState.IDLE
        return report
