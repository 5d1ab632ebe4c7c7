"""
Catalog version pointer management.

Every versioned table has one catalog_versions row. Status transitions:

    BUILDING -> POPULATED -> ACTIVE -> RETIRED
        |           |
        +-----------+-----> FAILED

At most one version per catalog is ACTIVE; it is the table behind the
canonical view.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from rightsizer.models.catalog import CatalogVersion, DataAge

logger = structlog.get_logger()


def utcnow() -> datetime:
    """Naive UTC timestamp, as stored in DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class VersionStatus(str, Enum):
    """Catalog version lifecycle states."""
    BUILDING = "BUILDING"
    POPULATED = "POPULATED"
    ACTIVE = "ACTIVE"
    RETIRED = "RETIRED"
    FAILED = "FAILED"


class VersionTransitionError(Exception):
    """Raised when a version state transition is invalid."""


class CatalogVersionManager:
    """
    Persists version pointer transitions.

    With autocommit=False changes are only flushed, so they join the
    caller's transaction (used by the view swap).
    """

    def __init__(self, db: Session, autocommit: bool = True):
        self.db = db
        self.autocommit = autocommit
        self.logger = logger.bind(component="catalog_version_manager")

    def _finish(self, version: Optional[CatalogVersion] = None) -> None:
        if self.autocommit:
            self.db.commit()
            if version is not None:
                self.db.refresh(version)
        else:
            self.db.flush()

    def start_build(self, catalog: str, table_name: str) -> CatalogVersion:
        version = CatalogVersion(
            catalog=catalog,
            table_name=table_name,
            status=VersionStatus.BUILDING.value,
            created_at=utcnow(),
        )
        self.db.add(version)
        self._finish(version)

        self.logger.info("version_created", catalog=catalog, table=table_name, version_id=version.id)
        return version

    def mark_populated(self, version_id: int, loaded: int, skipped: int, filtered: int) -> CatalogVersion:
        """
        Record a completed populate.

        Raises:
            VersionTransitionError: If the version is not BUILDING
        """
        version = self._get_version(version_id)
        if version.status != VersionStatus.BUILDING.value:
            raise VersionTransitionError(
                f"Cannot populate version {version_id} in state {version.status}. Must be BUILDING."
            )

        version.status = VersionStatus.POPULATED.value
        version.rows_loaded = loaded
        version.rows_skipped = skipped
        version.rows_filtered = filtered
        version.populated_at = utcnow()
        self._finish(version)
        return version

    def mark_failed(self, version_id: int, error: str) -> CatalogVersion:
        version = self._get_version(version_id)
        if version.status == VersionStatus.ACTIVE.value:
            raise VersionTransitionError(f"Cannot fail ACTIVE version {version_id}")

        version.status = VersionStatus.FAILED.value
        version.error = error
        self._finish(version)

        self.logger.warning("version_failed", catalog=version.catalog, version_id=version_id, error=error)
        return version

    def activate(self, version_id: int) -> CatalogVersion:
        """
        Make a POPULATED version the active one and retire the previous.

        Raises:
            VersionTransitionError: If the version is not POPULATED
        """
        version = self._get_version(version_id)
        if version.status == VersionStatus.ACTIVE.value:
            return version
        if version.status != VersionStatus.POPULATED.value:
            raise VersionTransitionError(
                f"Cannot activate version {version_id} in state {version.status}. Must be POPULATED."
            )

        now = utcnow()
        previous = self.get_active(version.catalog)
        if previous is not None:
            previous.status = VersionStatus.RETIRED.value
            previous.retired_at = now

        version.status = VersionStatus.ACTIVE.value
        version.activated_at = now
        self._finish(version)

        self.logger.info(
            "version_activated",
            catalog=version.catalog,
            version_id=version_id,
            previous_version_id=previous.id if previous else None,
        )
        return version

    def retire_table(self, table_name: str) -> Optional[CatalogVersion]:
        """Retire the version behind a dropped table. FAILED versions keep their status."""
        version = self.db.execute(
            select(CatalogVersion).where(CatalogVersion.table_name == table_name)
        ).scalar_one_or_none()
        if version is None:
            return None
        if version.status == VersionStatus.ACTIVE.value:
            raise VersionTransitionError(f"Cannot retire ACTIVE version {version.id}")

        if version.status not in (VersionStatus.RETIRED.value, VersionStatus.FAILED.value):
            version.status = VersionStatus.RETIRED.value
            version.retired_at = utcnow()
            self._finish(version)
        return version

    def get_active(self, catalog: str) -> Optional[CatalogVersion]:
        return self.db.execute(
            select(CatalogVersion)
            .where(CatalogVersion.catalog == catalog)
            .where(CatalogVersion.status == VersionStatus.ACTIVE.value)
        ).scalar_one_or_none()

    def history(self, catalog: str, limit: int = 10) -> List[Dict[str, Any]]:
        """
        Recent versions of a catalog, newest first.
        """
        versions = self.db.execute(
            select(CatalogVersion)
            .where(CatalogVersion.catalog == catalog)
            .order_by(CatalogVersion.id.desc())
            .limit(limit)
        ).scalars().all()

        return [
            {
                "id": v.id,
                "table_name": v.table_name,
                "status": v.status,
                "rows_loaded": v.rows_loaded,
                "rows_skipped": v.rows_skipped,
                "rows_filtered": v.rows_filtered,
                "error": v.error,
                "created_at": v.created_at.isoformat() if v.created_at else None,
                "populated_at": v.populated_at.isoformat() if v.populated_at else None,
                "activated_at": v.activated_at.isoformat() if v.activated_at else None,
                "retired_at": v.retired_at.isoformat() if v.retired_at else None,
            }
            for v in versions
        ]

    def _get_version(self, version_id: int) -> CatalogVersion:
        version = self.db.get(CatalogVersion, version_id)
        if version is None:
            raise ValueError(f"Version {version_id} not found")
        return version


class DataAgeRepository:
    """Last successful refresh time per catalog."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, data_type: str) -> Optional[datetime]:
        record = self.db.get(DataAge, data_type)
        return record.updated_at if record else None

    def touch(self, data_type: str, when: Optional[datetime] = None) -> None:
        when = when or utcnow()
        record = self.db.get(DataAge, data_type)
        if record is None:
            self.db.add(DataAge(data_type=data_type, updated_at=when))
        else:
            record.updated_at = when
        self.db.commit()
