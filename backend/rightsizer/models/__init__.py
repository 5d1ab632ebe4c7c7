from rightsizer.models.catalog import (
    CatalogVersion,
    DataAge,
    EBSVolumeType,
    EC2InstanceType,
    RDSDBStorage,
)

__all__ = [
    "CatalogVersion",
    "DataAge",
    "EBSVolumeType",
    "EC2InstanceType",
    "RDSDBStorage",
]
