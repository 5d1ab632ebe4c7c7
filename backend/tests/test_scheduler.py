"""
Unit tests for the catalog refresh scheduler.
"""
from unittest.mock import MagicMock, patch

import pytest

from rightsizer.catalog.pipeline import RefreshReport
from rightsizer.catalog.scheduler import CatalogRefreshScheduler
from rightsizer.config import Settings


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def fake_pipeline(name, succeeded=True):
    pipeline = MagicMock()
    pipeline.definition.name = name
    pipeline.tick.return_value = RefreshReport(catalog=name, succeeded=succeeded)
    return pipeline


@pytest.fixture
def clock():
    return FakeClock()


class TestCooldown:
    """Test failure cooldowns."""

    def test_failed_report_starts_cooldown(self, settings, clock):
        """Test a failed cycle suppresses ticks until the cooldown passes."""
        pipeline = fake_pipeline("rds_db_storage", succeeded=False)
        scheduler = CatalogRefreshScheduler([pipeline], settings, clock=clock)

        assert not scheduler.run_pipeline("rds_db_storage").succeeded
        assert scheduler.run_pipeline("rds_db_storage") is None
        assert pipeline.tick.call_count == 1

        clock.now += settings.catalog_refresh_cooldown_seconds
        assert scheduler.run_pipeline("rds_db_storage") is not None
        assert pipeline.tick.call_count == 2

    def test_crash_starts_cooldown(self, settings, clock):
        """Test an exception from a job is contained and cools the catalog down."""
        pipeline = fake_pipeline("ec2_instance_types")
        pipeline.tick.side_effect = RuntimeError("disk full")
        scheduler = CatalogRefreshScheduler([pipeline], settings, clock=clock)

        assert scheduler.run_pipeline("ec2_instance_types") is None
        assert scheduler.in_cooldown("ec2_instance_types")

    def test_cooldown_is_per_catalog(self, settings, clock):
        """Test one failing catalog does not hold back the others."""
        failing = fake_pipeline("rds_db_storage", succeeded=False)
        healthy = fake_pipeline("ebs_volume_types")
        scheduler = CatalogRefreshScheduler([failing, healthy], settings, clock=clock)

        reports = scheduler.run_now()
        assert [r.catalog for r in reports] == ["rds_db_storage", "ebs_volume_types"]

        reports = scheduler.run_now()
        assert [r.catalog for r in reports] == ["ebs_volume_types"]

    def test_success_clears_cooldown(self, settings, clock):
        """Test a successful cycle ends the cooldown."""
        pipeline = fake_pipeline("ebs_volume_types", succeeded=False)
        scheduler = CatalogRefreshScheduler([pipeline], settings, clock=clock)
        scheduler.run_pipeline("ebs_volume_types")

        clock.now += settings.catalog_refresh_cooldown_seconds
        pipeline.tick.return_value = RefreshReport(catalog="ebs_volume_types", succeeded=True)
        scheduler.run_pipeline("ebs_volume_types")

        assert not scheduler.in_cooldown("ebs_volume_types")


class TestScheduling:
    """Test job registration."""

    def test_disabled_registers_nothing(self, settings):
        """Test the scheduler stays idle when refresh is disabled."""
        scheduler = CatalogRefreshScheduler([fake_pipeline("ec2_instance_types")], settings)

        scheduler.start()

        assert not scheduler.is_running
        assert scheduler.scheduler.get_jobs() == []

    def test_one_job_per_catalog(self):
        """Test each catalog gets its own single-instance interval job."""
        settings = Settings(_env_file=None, CATALOG_REFRESH_ENABLED=True, CATALOG_REFRESH_INTERVAL_SECONDS=60)
        scheduler = CatalogRefreshScheduler(
            [fake_pipeline("ec2_instance_types"), fake_pipeline("rds_db_storage")], settings
        )

        with patch.object(scheduler.scheduler, "start"), patch.object(scheduler.scheduler, "shutdown") as shutdown:
            scheduler.start()
            jobs = {job.id: job for job in scheduler.scheduler.get_jobs()}
            scheduler.stop()

        assert set(jobs) == {"catalog_refresh_ec2_instance_types", "catalog_refresh_rds_db_storage"}
        assert jobs["catalog_refresh_rds_db_storage"].args == ("rds_db_storage",)
        assert jobs["catalog_refresh_rds_db_storage"].max_instances == 1
        shutdown.assert_called_once()
        assert not scheduler.is_running
