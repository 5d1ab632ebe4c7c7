"""
Catalog families refreshed by the pipeline.
"""
from dataclasses import dataclass
from datetime import timedelta
from typing import Tuple, Type

from rightsizer.catalog.schema import (
    EBS_VOLUME_SCHEMA,
    EC2_INSTANCE_SCHEMA,
    RDS_STORAGE_SCHEMA,
    RowSchema,
)
from rightsizer.config import Settings
from rightsizer.models.catalog import EBSVolumeType, EC2InstanceType, RDSDBStorage


@dataclass(frozen=True)
class CatalogDefinition:
    """
    One refreshable catalog.

    Attributes:
        name: Catalog name, also its data_age key
        model: Row model mapped onto the canonical view
        schema: Upstream column mapping
        freshness: Maximum age before a refresh is due
    """
    name: str
    model: Type
    schema: RowSchema
    freshness: timedelta

    @property
    def view(self) -> str:
        return self.model.__tablename__


def build_definitions(settings: Settings) -> Tuple[CatalogDefinition, ...]:
    return (
        CatalogDefinition(
            name="ec2_instance_types",
            model=EC2InstanceType,
            schema=EC2_INSTANCE_SCHEMA,
            freshness=timedelta(days=settings.ec2_instance_freshness_days),
        ),
        CatalogDefinition(
            name="ebs_volume_types",
            model=EBSVolumeType,
            schema=EBS_VOLUME_SCHEMA,
            freshness=timedelta(days=settings.ebs_volume_freshness_days),
        ),
        CatalogDefinition(
            name="rds_db_storage",
            model=RDSDBStorage,
            schema=RDS_STORAGE_SCHEMA,
            freshness=timedelta(days=settings.rds_storage_freshness_days),
        ),
    )
