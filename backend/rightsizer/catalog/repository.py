"""
Read-side access to the canonical catalog views.

Each reader is a candidate source for the cheapest-fit selector. Readers
only ever query the views; versioned backing tables are a pipeline detail.
"""
from types import MappingProxyType
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import or_, select
from sqlalchemy.exc import OperationalError, ProgrammingError
from sqlalchemy.ext.asyncio import AsyncSession

from rightsizer.engine.selector import Candidate, SelectionQuery
from rightsizer.exceptions import UpstreamUnavailableError
from rightsizer.models.catalog import EBSVolumeType, EC2InstanceType, RDSDBStorage
from rightsizer.models.schemas import ResourceKind, ResourceSpec
from rightsizer.pricing.base import ChargeType, PriceSheet

DATABASE_STORAGE = "Database Storage"
ANY_ENGINE = "Any"

# Request engine name -> (catalog engine label, catalog edition)
RDS_ENGINE_LABELS = MappingProxyType({
    "mysql": ("MySQL", None),
    "mariadb": ("MariaDB", None),
    "postgres": ("PostgreSQL", None),
    "aurora": ("Aurora MySQL", None),
    "aurora-mysql": ("Aurora MySQL", None),
    "aurora-postgresql": ("Aurora PostgreSQL", None),
    "oracle-ee": ("Oracle", "Enterprise"),
    "oracle-se2": ("Oracle", "Standard Two"),
    "sqlserver-ee": ("SQL Server", "Enterprise"),
    "sqlserver-se": ("SQL Server", "Standard"),
    "sqlserver-ex": ("SQL Server", "Express"),
    "sqlserver-web": ("SQL Server", "Web"),
})


def rds_engine_label(engine: str, edition: Optional[str] = None) -> Tuple[str, Optional[str]]:
    label, default_edition = RDS_ENGINE_LABELS.get(engine.lower(), (engine, None))
    return label, edition or default_edition


def instance_spec_from_row(row: EC2InstanceType, region: str) -> ResourceSpec:
    """Describe a catalog instance type as a ResourceSpec."""
    attributes = {
        "instance_type": row.instance_type,
        "instance_family": row.instance_family,
        "tenancy": row.tenancy,
        "operation": row.operation,
        "ebs_optimized": row.ebs_optimized,
        "license_model": row.license_model,
        "current_generation": row.current_generation,
        "physical_processor": row.physical_processor,
        "clock_speed": row.clock_speed,
        "processor_architecture": row.processor_architecture,
        "enhanced_networking_supported": row.enhanced_networking_supported,
    }
    return ResourceSpec(
        kind=ResourceKind.COMPUTE_INSTANCE,
        family=row.instance_type,
        region=region,
        dimensions={
            "vcpu": float(row.vcpu or 0),
            "memory_gb": float(row.memory_gb or 0),
            "network_max_bandwidth": float(row.network_max_bandwidth or 0),
        },
        attributes={k: v for k, v in attributes.items() if v},
    )


def _first_per_family(rows: Iterable, family_of) -> List:
    """Keep the first row (lowest id) for each family."""
    seen: Dict[str, object] = {}
    for row in rows:
        seen.setdefault(family_of(row), row)
    return list(seen.values())


class _CatalogReader:
    catalog_name = ""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _rows(self, stmt) -> list:
        try:
            result = await self.session.execute(stmt)
        except (OperationalError, ProgrammingError) as e:
            raise UpstreamUnavailableError(self.catalog_name, str(getattr(e, "orig", e))) from e
        return list(result.scalars().all())


class InstanceCatalog(_CatalogReader):
    """Compute instance types."""
    catalog_name = EC2InstanceType.__tablename__

    async def find_instance_type(
        self,
        instance_type: str,
        region: str,
        operation: Optional[str] = None,
    ) -> Optional[EC2InstanceType]:
        stmt = (
            select(EC2InstanceType)
            .where(EC2InstanceType.instance_type == instance_type)
            .where(EC2InstanceType.region_code == region)
        )
        if operation:
            stmt = stmt.where(EC2InstanceType.operation == operation)
        rows = await self._rows(stmt.order_by(EC2InstanceType.id).limit(1))
        return rows[0] if rows else None

    async def candidates(self, query: SelectionQuery) -> List[Candidate]:
        stmt = (
            select(EC2InstanceType)
            .where(EC2InstanceType.region_code == query.region)
            .where(EC2InstanceType.price_per_unit > 0)
            .where(*query.constraints.clauses(EC2InstanceType))
            .order_by(EC2InstanceType.id)
        )
        rows = await self._rows(stmt)

        # Several rows can offer the same type; keep its cheapest offer
        cheapest: Dict[str, EC2InstanceType] = {}
        for row in rows:
            existing = cheapest.get(row.instance_type)
            if existing is None or row.price_per_unit < existing.price_per_unit:
                cheapest[row.instance_type] = row

        return [
            Candidate(row_id=row.id, spec=instance_spec_from_row(row, query.region), row=row)
            for row in cheapest.values()
        ]

    async def price_sheet(self, query: SelectionQuery, candidates: List[Candidate]) -> PriceSheet:
        sheet = PriceSheet(query.region)
        for candidate in candidates:
            sheet.add(candidate.spec.family, ChargeType.INSTANCE_HOUR, candidate.row.price_per_unit)
        return sheet


class VolumeCatalog(_CatalogReader):
    """Block volume types and their price components."""
    catalog_name = EBSVolumeType.__tablename__

    async def candidates(self, query: SelectionQuery) -> List[Candidate]:
        stmt = (
            select(EBSVolumeType)
            .where(EBSVolumeType.region_code == query.region)
            .where(EBSVolumeType.charge_type == ChargeType.SIZE.value)
            .where(*query.constraints.clauses(EBSVolumeType))
        )
        if query.valid_families is not None:
            stmt = stmt.where(EBSVolumeType.volume_type.in_(sorted(query.valid_families)))
        rows = await self._rows(stmt.order_by(EBSVolumeType.id))

        return [
            Candidate(
                row_id=row.id,
                spec=ResourceSpec(
                    kind=ResourceKind.BLOCK_VOLUME,
                    family=row.volume_type,
                    region=query.region,
                    dimensions=dict(query.needed),
                ),
                row=row,
            )
            for row in _first_per_family(rows, lambda r: r.volume_type)
        ]

    async def price_sheet(self, query: SelectionQuery, candidates: List[Candidate]) -> PriceSheet:
        return await self.volume_sheet(query.region, {c.spec.family for c in candidates})

    async def volume_sheet(self, region: str, families: Iterable[str]) -> PriceSheet:
        stmt = (
            select(EBSVolumeType)
            .where(EBSVolumeType.region_code == region)
            .where(EBSVolumeType.volume_type.in_(sorted(families)))
            .order_by(EBSVolumeType.id)
        )
        sheet = PriceSheet(region)
        for row in await self._rows(stmt):
            sheet.add(row.volume_type, ChargeType(row.charge_type), row.price_per_unit, tier=row.tier_index or 1)
        return sheet


class StorageCatalog(_CatalogReader):
    """Managed database storage, provisioned IOPS/throughput and I/O request rates."""
    catalog_name = RDSDBStorage.__tablename__

    def _engine_clauses(self, context) -> list:
        label = context["engine_label"]
        if context.get("aurora"):
            return [RDSDBStorage.database_engine.in_([label, ANY_ENGINE])]

        clauses = [RDSDBStorage.database_engine == label]
        if context.get("edition"):
            clauses.append(RDSDBStorage.database_edition == context["edition"])
        return clauses

    async def candidates(self, query: SelectionQuery) -> List[Candidate]:
        context = query.context
        stmt = (
            select(RDSDBStorage)
            .where(RDSDBStorage.product_family == DATABASE_STORAGE)
            .where(RDSDBStorage.charge_type == ChargeType.SIZE.value)
            .where(RDSDBStorage.region_code == query.region)
            .where(RDSDBStorage.deployment_option == context["deployment_option"])
            .where(*self._engine_clauses(context))
            .where(*query.constraints.clauses(RDSDBStorage))
        )
        if query.valid_families is not None:
            stmt = stmt.where(RDSDBStorage.volume_type.in_(sorted(query.valid_families)))
        rows = await self._rows(stmt.order_by(RDSDBStorage.id))

        return [
            Candidate(
                row_id=row.id,
                spec=ResourceSpec(
                    kind=ResourceKind.MANAGED_STORAGE,
                    family=row.volume_type,
                    region=query.region,
                    dimensions=dict(query.needed),
                ),
                row=row,
                min_size=row.min_volume_size_gb or None,
            )
            for row in _first_per_family(rows, lambda r: r.volume_type)
        ]

    async def price_sheet(self, query: SelectionQuery, candidates: List[Candidate]) -> PriceSheet:
        return await self.storage_sheet(query.region, query.context)

    async def storage_sheet(self, region: str, context) -> PriceSheet:
        """
        Unit prices for every storage family of one engine and deployment.

        Per-operation and provisioned rates are often published under the
        "Any" engine, so those rows match either label. Every rate except the
        per-operation one is bound to the deployment option and, when set, the
        edition.
        """
        stmt = (
            select(RDSDBStorage)
            .where(RDSDBStorage.region_code == region)
            .where(RDSDBStorage.database_engine.in_([context["engine_label"], ANY_ENGINE]))
            .where(or_(
                RDSDBStorage.charge_type == ChargeType.IO_REQUEST.value,
                RDSDBStorage.deployment_option == context["deployment_option"],
            ))
        )
        if context.get("edition") and not context.get("aurora"):
            stmt = stmt.where(or_(
                RDSDBStorage.database_engine == ANY_ENGINE,
                RDSDBStorage.database_edition == context["edition"],
            ))
        stmt = stmt.order_by(RDSDBStorage.id)
        sheet = PriceSheet(region)
        for row in await self._rows(stmt):
            if not row.volume_type or not row.charge_type:
                continue
            sheet.add(row.volume_type, ChargeType(row.charge_type), row.price_per_unit)
        return sheet

    async def find_storage(self, region: str, family: str, context) -> Optional[RDSDBStorage]:
        stmt = (
            select(RDSDBStorage)
            .where(RDSDBStorage.product_family == DATABASE_STORAGE)
            .where(RDSDBStorage.charge_type == ChargeType.SIZE.value)
            .where(RDSDBStorage.region_code == region)
            .where(RDSDBStorage.volume_type == family)
            .where(RDSDBStorage.deployment_option == context["deployment_option"])
            .where(*self._engine_clauses(context))
            .order_by(RDSDBStorage.id)
            .limit(1)
        )
        rows = await self._rows(stmt)
        return rows[0] if rows else None
