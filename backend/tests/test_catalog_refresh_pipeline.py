"""
Tests for the append-then-swap catalog refresh pipeline.
"""
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from rightsizer.catalog.pipeline import CatalogRefreshPipeline, RefreshState
from rightsizer.catalog.sources import IterableRowSource
from rightsizer.catalog.store import CatalogTableStore
from rightsizer.catalog.versioning import CatalogVersionManager, VersionStatus, VersionTransitionError
from rightsizer.db.database import session_scope
from rightsizer.exceptions import UpstreamDataFaultError
from rightsizer.models.catalog import CatalogVersion

CATALOG = "ec2_instance_types"


def ec2_row(instance_type, price="0.1", **overrides):
    row = {
        "TermType": "OnDemand",
        "Product Family": "Compute Instance",
        "CapacityStatus": "Used",
        "Instance Type": instance_type,
        "Region Code": "us-east-1",
        "vCPU": "2",
        "Memory": "8 GiB",
        "Network Performance": "Up to 10 Gigabit",
        "PricePerUnit": price,
    }
    row.update(overrides)
    return row


def view_count(engine, view=CATALOG):
    with engine.connect() as conn:
        return conn.exec_driver_sql(f"SELECT COUNT(*) FROM {view}").scalar_one()


class ObservingSource:
    """Calls observe() after each row has been consumed."""

    name = "observing"

    def __init__(self, rows, observe):
        self._rows = rows
        self.observe = observe
        self.observed = []

    def rows(self):
        for row in self._rows:
            yield row
            self.observed.append(self.observe())


class FailingSource:
    name = "failing"

    def __init__(self, error, after=1):
        self.error = error
        self.after = after

    def rows(self):
        for i in range(self.after):
            yield ec2_row(f"m5.{i}xlarge")
        raise self.error


class MutableClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return MutableClock(datetime(2024, 6, 1, 12, 0))


@pytest.fixture
def make_pipeline(sync_engine, session_factory, definitions, clock):
    def make(source, batch_size=2):
        return CatalogRefreshPipeline(
            definitions[CATALOG],
            source,
            sync_engine,
            batch_size=batch_size,
            session_factory=session_factory,
            clock=clock,
        )

    return make


def versions(session_factory):
    with session_scope(session_factory) as db:
        return {v.table_name: v.status for v in db.query(CatalogVersion).all()}


class TestRefreshCycle:
    """Test a full build, populate, swap and prune cycle."""

    def test_first_cycle_publishes_view(self, make_pipeline, sync_engine, session_factory):
        """Test valid rows are loaded and counted separately from skipped and filtered rows."""
        source = IterableRowSource([
            ec2_row("m5.large"),
            ec2_row("m5.xlarge"),
            ec2_row("c5.large"),
            ec2_row("m5.large", TermType="Reserved"),
            ec2_row(""),
        ])
        pipeline = make_pipeline(source)

        report = pipeline.run_cycle()

        assert report.succeeded
        assert report.rows_loaded == 3
        assert report.rows_filtered == 1
        assert report.rows_skipped == 1
        assert pipeline.state == RefreshState.IDLE
        assert view_count(sync_engine) == 3
        assert versions(session_factory) == {report.table_name: VersionStatus.ACTIVE.value}
        assert report.table_name.startswith("ec2_instance_types_2024_06_01_")

    def test_view_serves_old_catalog_while_populating(self, make_pipeline, sync_engine):
        """Test readers keep seeing the previous catalog until the swap."""
        make_pipeline(IterableRowSource([ec2_row("m5.large"), ec2_row("t3.small")])).run_cycle()

        pipeline = None
        source = ObservingSource(
            [ec2_row(f"r5.{i}xlarge") for i in range(5)],
            lambda: (view_count(sync_engine), pipeline.state),
        )
        pipeline = make_pipeline(source, batch_size=1)

        report = pipeline.run_cycle()

        assert report.succeeded
        assert source.observed == [(2, RefreshState.POPULATING)] * 5
        assert view_count(sync_engine) == 5

    def test_second_cycle_prunes_previous_table(self, make_pipeline, sync_engine, session_factory, definitions):
        """Test only the active table survives a prune."""
        first = make_pipeline(IterableRowSource([ec2_row("m5.large")])).run_cycle()
        second = make_pipeline(IterableRowSource([ec2_row("m5.large"), ec2_row("c5.large")])).run_cycle()

        assert second.pruned == [first.table_name]
        store = CatalogTableStore(sync_engine)
        assert store.versioned_tables(definitions[CATALOG]) == [second.table_name]
        assert versions(session_factory) == {
            first.table_name: VersionStatus.RETIRED.value,
            second.table_name: VersionStatus.ACTIVE.value,
        }

    def test_swap_failure_keeps_old_catalog(self, make_pipeline, sync_engine, session_factory, definitions):
        """Test a failed swap rolls back the view change and the pointer move together."""
        first = make_pipeline(IterableRowSource([ec2_row("m5.large")])).run_cycle()
        pipeline = make_pipeline(IterableRowSource([ec2_row("m5.large"), ec2_row("c5.large")]))

        with patch.object(CatalogVersionManager, "activate", side_effect=VersionTransitionError("boom")):
            report = pipeline.run_cycle()

        assert not report.succeeded
        assert "boom" in report.error
        assert pipeline.state == RefreshState.IDLE
        assert view_count(sync_engine) == 1
        assert versions(session_factory) == {
            first.table_name: VersionStatus.ACTIVE.value,
            report.table_name: VersionStatus.FAILED.value,
        }
        # Left behind for the next prune
        assert report.table_name in CatalogTableStore(sync_engine).versioned_tables(definitions[CATALOG])

    def test_failed_table_pruned_next_cycle(self, make_pipeline, session_factory):
        """Test a half-built table is dropped by the next successful cycle."""
        failed = make_pipeline(FailingSource(UpstreamDataFaultError("upstream", "reset"))).run_cycle()
        ok = make_pipeline(IterableRowSource([ec2_row("m5.large")])).run_cycle()

        assert ok.pruned == [failed.table_name]
        assert versions(session_factory)[failed.table_name] == VersionStatus.FAILED.value

    def test_upstream_fault_aborts(self, make_pipeline, session_factory):
        """Test a source failure marks the version failed and leaves no active catalog."""
        pipeline = make_pipeline(FailingSource(UpstreamDataFaultError("upstream", "connection reset"), after=3))

        report = pipeline.run_cycle()

        assert not report.succeeded
        assert pipeline.state == RefreshState.IDLE
        assert versions(session_factory) == {report.table_name: VersionStatus.FAILED.value}
        with session_scope(session_factory) as db:
            assert CatalogVersionManager(db).get_active(CATALOG) is None

    def test_unexpected_error_propagates(self, make_pipeline, session_factory):
        """Test programming errors fail the version and then surface."""
        pipeline = make_pipeline(FailingSource(RuntimeError("bug")))

        with pytest.raises(RuntimeError):
            pipeline.run_cycle()

        assert pipeline.state == RefreshState.IDLE
        assert list(versions(session_factory).values()) == [VersionStatus.FAILED.value]


class TestFreshness:
    """Test staleness checks."""

    def test_never_refreshed_is_stale(self, make_pipeline):
        """Test a catalog without a data_age record is stale."""
        assert make_pipeline(IterableRowSource([])).is_stale()

    def test_tick_skips_fresh_catalog(self, make_pipeline, clock, definitions):
        """Test tick only refreshes once the freshness threshold has passed."""
        pipeline = make_pipeline(IterableRowSource([ec2_row("m5.large")]))
        assert pipeline.tick().succeeded

        report = pipeline.tick()
        assert report.fresh

        clock.now += definitions[CATALOG].freshness + timedelta(seconds=1)
        assert pipeline.is_stale()
        report = pipeline.tick()
        assert report.succeeded
        assert not report.fresh
