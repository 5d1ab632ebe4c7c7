"""
SQLAlchemy models for the pricing catalog and its refresh bookkeeping.

Catalog row models map onto the canonical read views. Their physical
tables are versioned copies created by the refresh pipeline.
"""
from sqlalchemy import Column, DateTime, Float, Index, Integer, Numeric, String, Text
from sqlalchemy.sql import func

from rightsizer.db.database import Base, CatalogBase


# ============================================================================
# CATALOG ROWS (read through views)
# ============================================================================

class EC2InstanceType(CatalogBase):
    """On-demand compute instance configurations with hourly price."""
    __tablename__ = "ec2_instance_types"

    id = Column(Integer, primary_key=True, autoincrement=True)
    instance_type = Column(String(64), nullable=False)
    region_code = Column(String(32), nullable=False)
    instance_family = Column(String(64))
    vcpu = Column(Integer, nullable=False, default=0)
    memory_gb = Column(Float, nullable=False, default=0)
    # bytes per second
    network_max_bandwidth = Column(Float, nullable=False, default=0)
    ebs_max_iops = Column(Float)
    # MB per second
    ebs_max_throughput = Column(Float)
    tenancy = Column(String(32))
    operation = Column(String(32))
    pre_installed_sw = Column(String(64))
    operating_system = Column(String(64))
    license_model = Column(String(64))
    capacity_status = Column(String(32))
    ebs_optimized = Column(String(8))
    current_generation = Column(String(8))
    physical_processor = Column(String(128))
    clock_speed = Column(String(32))
    processor_architecture = Column(String(32))
    enhanced_networking_supported = Column(String(8))
    term_type = Column(String(32))
    unit = Column(String(16))
    price_per_unit = Column(Numeric(20, 10), nullable=False)


class EBSVolumeType(CatalogBase):
    """Block volume price components: one row per volume type and charge type."""
    __tablename__ = "ebs_volume_types"

    id = Column(Integer, primary_key=True, autoincrement=True)
    volume_type = Column(String(16), nullable=False)
    region_code = Column(String(32), nullable=False)
    charge_type = Column(String(16), nullable=False)
    price_group = Column(String(64))
    tier_index = Column(Integer, nullable=False, default=1)
    max_iops = Column(Float, nullable=False, default=0)
    # MB per second
    max_throughput = Column(Float, nullable=False, default=0)
    # GiB
    max_size = Column(Float, nullable=False, default=0)
    unit = Column(String(32))
    price_per_unit = Column(Numeric(20, 10), nullable=False)


class RDSDBStorage(CatalogBase):
    """Managed database storage, provisioned IOPS/throughput and I/O request prices."""
    __tablename__ = "rds_db_storage"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_family = Column(String(64), nullable=False)
    region_code = Column(String(32), nullable=False)
    volume_type = Column(String(32))
    charge_type = Column(String(16))
    database_engine = Column(String(64))
    database_edition = Column(String(64))
    deployment_option = Column(String(64))
    group_name = Column(String(128))
    group_description = Column(String(256))
    min_volume_size_gb = Column(Float, nullable=False, default=0)
    max_volume_size_gb = Column(Float, nullable=False, default=0)
    max_iops = Column(Float)
    max_throughput_mb = Column(Float)
    unit = Column(String(32))
    price_per_unit = Column(Numeric(20, 10), nullable=False)


# ============================================================================
# REFRESH BOOKKEEPING
# ============================================================================

class CatalogVersion(Base):
    """Persisted pointer record for each versioned catalog table."""
    __tablename__ = "catalog_versions"

    id = Column(Integer, primary_key=True, index=True)
    catalog = Column(String(64), nullable=False)
    table_name = Column(String(128), unique=True, nullable=False)
    status = Column(String(16), nullable=False)
    rows_loaded = Column(Integer, nullable=False, default=0)
    rows_skipped = Column(Integer, nullable=False, default=0)
    rows_filtered = Column(Integer, nullable=False, default=0)
    error = Column(Text)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    populated_at = Column(DateTime)
    activated_at = Column(DateTime)
    retired_at = Column(DateTime)

    __table_args__ = (
        Index("idx_catalog_versions_catalog_status", "catalog", "status"),
    )


class DataAge(Base):
    """Last successful refresh per catalog."""
    __tablename__ = "data_age"

    data_type = Column(String(64), primary_key=True)
    updated_at = Column(DateTime, nullable=False)
