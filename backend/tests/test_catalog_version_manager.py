"""
Unit tests for catalog version pointer management.
"""
from datetime import datetime

import pytest

from rightsizer.catalog.versioning import (
    CatalogVersionManager,
    DataAgeRepository,
    VersionStatus,
    VersionTransitionError,
)


@pytest.fixture
def manager(db_session):
    return CatalogVersionManager(db_session)


def populated(manager, table_name, catalog="ebs_volume_types"):
    version = manager.start_build(catalog, table_name)
    return manager.mark_populated(version.id, 10, 1, 2)


class TestVersionLifecycle:
    """Test version status transitions."""

    def test_start_build(self, manager):
        """Test a new version starts BUILDING."""
        version = manager.start_build("ebs_volume_types", "ebs_volume_types_2024_01_01_1")

        assert version.id is not None
        assert version.status == VersionStatus.BUILDING.value
        assert version.created_at is not None

    def test_mark_populated_records_counts(self, manager):
        """Test populate stores row counts."""
        version = populated(manager, "t1")

        assert version.status == VersionStatus.POPULATED.value
        assert (version.rows_loaded, version.rows_skipped, version.rows_filtered) == (10, 1, 2)

    def test_populate_twice_rejected(self, manager):
        """Test populate only applies to BUILDING versions."""
        version = populated(manager, "t1")

        with pytest.raises(VersionTransitionError):
            manager.mark_populated(version.id, 1, 0, 0)

    def test_activate_requires_populated(self, manager):
        """Test a BUILDING version cannot become active."""
        version = manager.start_build("ebs_volume_types", "t1")

        with pytest.raises(VersionTransitionError):
            manager.activate(version.id)

    def test_activate_retires_previous(self, manager):
        """Test at most one version per catalog is active."""
        first = manager.activate(populated(manager, "t1").id)
        second = manager.activate(populated(manager, "t2").id)

        assert first.status == VersionStatus.RETIRED.value
        assert first.retired_at is not None
        assert second.status == VersionStatus.ACTIVE.value
        assert manager.get_active("ebs_volume_types").id == second.id

    def test_activate_is_per_catalog(self, manager):
        """Test activating one catalog leaves the others alone."""
        ebs = manager.activate(populated(manager, "t1").id)
        manager.activate(populated(manager, "t2", catalog="rds_db_storage").id)

        assert ebs.status == VersionStatus.ACTIVE.value

    def test_fail_active_rejected(self, manager):
        """Test the active version cannot be failed."""
        active = manager.activate(populated(manager, "t1").id)

        with pytest.raises(VersionTransitionError):
            manager.mark_failed(active.id, "late error")

    def test_mark_failed(self, manager):
        """Test failing records the error."""
        version = manager.start_build("ebs_volume_types", "t1")

        failed = manager.mark_failed(version.id, "upstream timed out")

        assert failed.status == VersionStatus.FAILED.value
        assert failed.error == "upstream timed out"

    def test_retire_table(self, manager):
        """Test dropped tables retire their version, but never the active one."""
        old = populated(manager, "t1")
        active = manager.activate(populated(manager, "t2").id)

        assert manager.retire_table("t1").status == VersionStatus.RETIRED.value
        assert old.retired_at is not None
        assert manager.retire_table("unknown") is None
        with pytest.raises(VersionTransitionError):
            manager.retire_table(active.table_name)

    def test_unknown_version(self, manager):
        """Test a missing version id is reported."""
        with pytest.raises(ValueError, match="not found"):
            manager.activate(999)

    def test_history_newest_first(self, manager):
        """Test history lists the latest versions first."""
        populated(manager, "t1")
        manager.start_build("ebs_volume_types", "t2")

        history = manager.history("ebs_volume_types")

        assert [h["table_name"] for h in history] == ["t2", "t1"]
        assert history[1]["rows_loaded"] == 10
        assert history[0]["activated_at"] is None


class TestDataAge:
    """Test last-refresh bookkeeping."""

    def test_touch_and_get(self, db_session):
        """Test touch creates then updates the record."""
        ages = DataAgeRepository(db_session)
        assert ages.get("rds_db_storage") is None

        ages.touch("rds_db_storage", datetime(2024, 1, 1))
        ages.touch("rds_db_storage", datetime(2024, 2, 1))

        assert ages.get("rds_db_storage") == datetime(2024, 2, 1)
