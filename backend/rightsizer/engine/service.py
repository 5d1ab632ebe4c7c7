"""
Rightsizing recommendation service.

Orchestrates one request: summarize usage, compute needed capacity,
resolve preferences, select the cheapest feasible configuration and
compare it with what the resource costs today.
"""
import functools
import math
from types import MappingProxyType
from typing import Dict, FrozenSet, List, Mapping, Optional

import structlog
from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rightsizer.catalog.repository import (
    InstanceCatalog,
    StorageCatalog,
    VolumeCatalog,
    instance_spec_from_row,
    rds_engine_label,
)
from rightsizer.config import Settings
from rightsizer.engine.description import (
    NO_CHEAPER_ALTERNATIVE,
    UPSIZING_EXCLUDED,
    DescriptionGenerator,
    UsageNeedsSummary,
    describe_needs,
    describe_volume_change,
    generate_description,
)
from rightsizer.engine.headroom import (
    BYTES_PER_MB,
    breathing_room,
    rate_headroom,
    size_headroom,
    utilization_headroom,
)
from rightsizer.engine.preferences import (
    EBS_VOLUME_PREFERENCES,
    EC2_INSTANCE_PREFERENCES,
    RDS_STORAGE_PREFERENCES,
    TENANCY_TO_CATALOG,
    Comparator,
    Constraint,
    PreferenceResolver,
    ResolvedPreferences,
    is_unset,
)
from rightsizer.engine.selector import CheapestFitSelector, Selection, SelectionQuery
from rightsizer.engine.usage import SUM_MERGE, merge, merge_all, summarize, summarize_metric
from rightsizer.exceptions import (
    ComponentPricingUnavailableError,
    InvalidInputError,
    NoFeasibleConfigurationError,
    NotFoundError,
    RightsizerError,
)
from rightsizer.models.schemas import (
    EC2Volume,
    InstanceRightsizingRequest,
    InstanceRightsizingResult,
    MetricSeries,
    PricedResource,
    Recommendation,
    ResourceKind,
    ResourceSpec,
    StorageRightsizingRequest,
    UsageSummary,
    VolumeRightsizingRequest,
)
from rightsizer.pricing.base import ChargeType, PriceQuote, PriceSheet
from rightsizer.pricing.calculator import TieredPricingCalculator
from rightsizer.pricing.families import (
    AURORA_STORAGE_FAMILIES,
    GP3_BASE_IOPS,
    GP3_BASE_THROUGHPUT,
    GP2_IOPS_PER_GIB,
    RDS_GP3_BASE_IOPS,
    RDS_GP3_BASE_THROUGHPUT,
    RDS_GP3_SIZE_THRESHOLD,
    RDS_GP3_THRESHOLD_BASE_IOPS,
    RDS_GP3_THRESHOLD_BASE_THROUGHPUT,
    families_of,
)

logger = structlog.get_logger()

RUNNING = "running"
BYTES_PER_GB = 1024 ** 3
GP2_MIN_IOPS = 100
GP2_MAX_IOPS = 16000

VOLUME_FAMILY_ALIASES = MappingProxyType({
    "general purpose": ("gp2", "gp3"),
    "ssd": ("gp2", "gp3"),
    "solid state drive": ("gp2", "gp3"),
    "gp": ("gp2", "gp3"),
    "io": ("io1", "io2"),
    "io optimized": ("io1", "io2"),
    "hdd": ("sc1", "st1"),
    "sc": ("sc1", "st1"),
    "cold": ("sc1", "st1"),
    "hard disk drive": ("sc1", "st1"),
    "st": ("sc1", "st1"),
})

# RDS API storage type -> catalog storage family
STORAGE_TYPE_FAMILIES = MappingProxyType({
    "gp2": "gp2",
    "gp3": "gp3",
    "io1": "io1",
    "io2": "io2",
    "standard": "magnetic",
    "aurora": "aurora",
    "aurora-iopt1": "aurora-iopt",
})


def guard_request(request_model):
    """
    Validate the request and convert unexpected failures.

    Typed errors pass through; anything else is logged and surfaced as
    InvalidInputError. Task cancellation is never intercepted.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(self, request, *args, **kwargs):
            if not isinstance(request, BaseModel):
                try:
                    request = request_model.model_validate(request)
                except ValidationError as e:
                    raise InvalidInputError(str(e)) from e
            try:
                return await func(self, request, *args, **kwargs)
            except RightsizerError:
                raise
            except Exception as e:
                self.logger.exception("recommendation_crashed", operation=func.__name__)
                raise InvalidInputError(f"unexpected failure: {e}") from e

        return wrapper

    return decorator


def _metric(metrics: MetricSeries, name: str):
    return metrics.get(name) or []


def _present(summary: UsageSummary) -> Optional[UsageSummary]:
    return None if summary.is_empty else summary


def _scaled(summary: Optional[UsageSummary], divisor: float) -> Optional[UsageSummary]:
    if summary is None:
        return None
    return UsageSummary(
        avg=None if summary.avg is None else summary.avg / divisor,
        min=None if summary.min is None else summary.min / divisor,
        max=None if summary.max is None else summary.max / divisor,
        last=summary.last,
    )


def _pct(value: Optional[float]) -> str:
    return "n/a" if value is None else f"{value:.2f}%"


def _priced(quote: PriceQuote, spec: Optional[ResourceSpec] = None) -> PricedResource:
    return PricedResource(spec=spec or quote.spec, cost=quote.total, cost_breakdown=quote.breakdown)


def volume_dimensions(family: str, size: float, iops: float, throughput: float, row=None) -> Dict[str, float]:
    """
    Size plus baseline/provisioned split of IOPS and throughput.

    gp3 includes a fixed baseline and bills the excess; io1/io2 bill every
    IOPS as provisioned; other families report the catalog maximum as
    their baseline.
    """
    dims = {"size": size, "iops": iops, "throughput": throughput}
    if family == "gp3":
        dims.update(
            baseline_iops=GP3_BASE_IOPS,
            provisioned_iops=max(0.0, iops - GP3_BASE_IOPS),
            baseline_throughput=GP3_BASE_THROUGHPUT,
            provisioned_throughput=max(0.0, throughput - GP3_BASE_THROUGHPUT),
        )
    elif family in ("io1", "io2"):
        dims.update(
            baseline_iops=0,
            provisioned_iops=iops,
            baseline_throughput=float(row.max_throughput) if row is not None else throughput,
        )
    else:
        dims.update(
            baseline_iops=float(row.max_iops) if row is not None else iops,
            baseline_throughput=float(row.max_throughput) if row is not None else throughput,
        )
    return dims


def storage_dimensions(family: str, size: float, iops: float, throughput: float) -> Dict[str, float]:
    dims = {"size": size, "iops": iops, "throughput": throughput}
    if family == "gp3":
        above = size >= RDS_GP3_SIZE_THRESHOLD
        base_iops = RDS_GP3_THRESHOLD_BASE_IOPS if above else RDS_GP3_BASE_IOPS
        base_throughput = RDS_GP3_THRESHOLD_BASE_THROUGHPUT if above else RDS_GP3_BASE_THROUGHPUT
        dims.update(
            baseline_iops=base_iops,
            provisioned_iops=max(0.0, iops - base_iops),
            baseline_throughput=base_throughput,
            provisioned_throughput=max(0.0, throughput - base_throughput),
        )
    elif family in ("io1", "io2"):
        dims.update(provisioned_iops=iops)
    return dims


def current_volume_iops(volume: EC2Volume) -> float:
    if volume.iops is not None:
        return float(volume.iops)
    if volume.volume_type == "gp3":
        return float(GP3_BASE_IOPS)
    if volume.volume_type == "gp2":
        return float(min(max(GP2_MIN_IOPS, GP2_IOPS_PER_GIB * volume.size), GP2_MAX_IOPS))
    return 0.0


def current_volume_throughput(volume: EC2Volume) -> float:
    if volume.throughput is not None:
        return float(volume.throughput)
    if volume.volume_type == "gp3":
        return float(GP3_BASE_THROUGHPUT)
    return 0.0


class RecommendationService:
    """
    Rightsizing for compute instances, block volumes and managed storage.

    Requests are independent and read-only against the catalog views, so
    any number can run concurrently.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        calculator: TieredPricingCalculator,
        settings: Settings,
        description_generator: Optional[DescriptionGenerator] = None,
    ):
        self.session_factory = session_factory
        self.calculator = calculator
        self.selector = CheapestFitSelector(calculator)
        self.settings = settings
        self.description_generator = description_generator
        self.instance_resolver = PreferenceResolver(EC2_INSTANCE_PREFERENCES)
        self.volume_resolver = PreferenceResolver(EBS_VOLUME_PREFERENCES)
        self.storage_resolver = PreferenceResolver(RDS_STORAGE_PREFERENCES)
        self.logger = logger.bind(component="recommendation_service")

    def _room(self, preferences: Mapping[str, Optional[str]], name: str) -> float:
        return breathing_room(preferences, name, self.settings.default_breathing_rooms)

    # ------------------------------------------------------------------
    # Compute instances
    # ------------------------------------------------------------------

    @guard_request(InstanceRightsizingRequest)
    async def recommend_instance(self, request: InstanceRightsizingRequest) -> InstanceRightsizingResult:
        """
        Rightsize an instance and each of its attached volumes.

        Raises:
            InvalidInputError: If the instance is not running
            NotFoundError: If the instance type is not in the catalog
        """
        instance = request.instance
        if instance.state != RUNNING:
            raise InvalidInputError(f"instance is {instance.state}, not {RUNNING}", field="instance.state")

        async with self.session_factory() as session:
            recommendation = await self._instance_recommendation(session, request)

            volumes = {}
            for volume in request.volumes:
                volumes[volume.volume_id] = await self._volume_recommendation(
                    session,
                    request.region,
                    volume,
                    request.volume_metrics.get(volume.volume_id, {}),
                    request.preferences,
                    request,
                )

        return InstanceRightsizingResult(instance=recommendation, volumes=volumes)

    async def _instance_recommendation(
        self, session: AsyncSession, request: InstanceRightsizingRequest
    ) -> Recommendation:
        instance = request.instance
        region = request.region
        preferences = request.preferences
        metrics = request.metrics
        catalog = InstanceCatalog(session)
        log = self.logger.bind(resource=instance.instance_id, region=region)

        current_row = await catalog.find_instance_type(instance.instance_type, region, instance.usage_operation)
        if current_row is None:
            current_row = await catalog.find_instance_type(instance.instance_type, region)
        if current_row is None:
            raise NotFoundError(instance.instance_type, region, "instance type not in catalog")

        cpu = summarize_metric(metrics, "CPUUtilization", request.policy_for("CPUUtilization"))
        memory = summarize_metric(metrics, "mem_used_percent", request.policy_for("mem_used_percent"))
        network = _present(summarize(
            merge(_metric(metrics, "NetworkIn"), _metric(metrics, "NetworkOut"), SUM_MERGE),
            request.policy_for("NetworkIn"),
        ))

        volume_metrics = request.volume_metrics.values()
        ebs_iops = _present(summarize(
            merge_all(
                (merge(_metric(m, "VolumeReadOps"), _metric(m, "VolumeWriteOps"), SUM_MERGE) for m in volume_metrics),
                SUM_MERGE,
            ),
            request.policy_for("VolumeReadOps"),
        ))
        ebs_throughput = _scaled(_present(summarize(
            merge_all(
                (merge(_metric(m, "VolumeReadBytes"), _metric(m, "VolumeWriteBytes"), SUM_MERGE)
                 for m in volume_metrics),
                SUM_MERGE,
            ),
            request.policy_for("VolumeReadBytes"),
        )), BYTES_PER_MB)

        vcpu = float(instance.vcpu)
        memory_gb = float(current_row.memory_gb or 0)

        needed_cpu = vcpu
        if cpu is not None and cpu.avg is not None:
            needed_cpu = utilization_headroom(vcpu, cpu.avg, self._room(preferences, "CPUBreathingRoom"))

        needed_memory = None
        if memory is not None and memory.max is not None:
            needed_memory = rate_headroom(
                memory_gb * memory.max / 100.0, self._room(preferences, "MemoryBreathingRoom")
            )

        needed_network = None
        if network is not None and network.avg is not None:
            needed_network = rate_headroom(network.avg, self._room(preferences, "NetworkBreathingRoom"))

        current_spec = instance_spec_from_row(current_row, region)
        current_spec.dimensions["vcpu"] = vcpu
        current_spec.attributes["tenancy"] = TENANCY_TO_CATALOG.get(instance.tenancy, "")
        current_spec.attributes["ebs_optimized"] = "Yes" if instance.ebs_optimized else "No"
        if instance.usage_operation:
            current_spec.attributes["operation"] = instance.usage_operation

        resolved = self.instance_resolver.resolve(
            preferences,
            current_spec,
            floors={"vCPU": needed_cpu, "MemoryGB": needed_memory},
        )
        if not resolved.has("UsageOperation"):
            resolved.add(Constraint("pre_installed_sw", Comparator.EQ, "NA", "UsageOperation"))
        if needed_network is not None:
            resolved.add(Constraint("network_max_bandwidth", Comparator.GTE, needed_network, "network"))
        if ebs_iops is not None and ebs_iops.avg:
            resolved.add(Constraint("ebs_max_iops", Comparator.NULL_OR_GTE, ebs_iops.avg, "ebs_iops"))
        if ebs_throughput is not None and ebs_throughput.avg:
            resolved.add(Constraint("ebs_max_throughput", Comparator.NULL_OR_GTE, ebs_throughput.avg,
                                    "ebs_throughput"))

        current_sheet = PriceSheet(region)
        current_sheet.add(current_spec.family, ChargeType.INSTANCE_HOUR, current_row.price_per_unit)
        current = _priced(self.calculator.price(current_spec, current_sheet))

        query = SelectionQuery(
            kind=ResourceKind.COMPUTE_INSTANCE,
            region=region,
            resource_id=instance.instance_id,
            needed={},
            constraints=resolved,
        )
        selection = await self._select(query, catalog)

        usage = {
            "cpu": cpu,
            "memory": memory,
            "network": network,
            "ebs_iops": ebs_iops,
            "ebs_throughput": ebs_throughput,
        }
        recommendation = Recommendation(
            kind=ResourceKind.COMPUTE_INSTANCE,
            resource_id=instance.instance_id,
            current=current,
            usage={k: v for k, v in usage.items() if v is not None},
        )

        if selection is None:
            recommendation.description = NO_CHEAPER_ALTERNATIVE
            return recommendation

        recommended = _priced(selection.quote)
        if self._upsizing_blocked(resolved, current, recommended):
            log.info("upsizing_excluded", recommended=recommended.spec.family, cost=str(recommended.cost))
            recommendation.recommended = current.model_copy()
            recommendation.description = UPSIZING_EXCLUDED
            return recommendation

        recommendation.recommended = recommended

        rec_spec = recommended.spec
        summary = UsageNeedsSummary(
            kind=ResourceKind.COMPUTE_INSTANCE,
            resource_id=instance.instance_id,
            current_family=current_spec.family,
            recommended_family=rec_spec.family,
            exclude_burstable=resolved.exclude_burstable,
            needs=describe_needs(preferences, resolved.kept_current),
        )
        if rec_spec.family != current_spec.family:
            summary.changes.append(f"- change your instance from {current_spec.family} to {rec_spec.family}")
        summary.usage.append(
            f"- {current_spec.family} has {vcpu:.0f} vCPUs. Usage is "
            f"min={_pct(cpu and cpu.min)}, avg={_pct(cpu and cpu.avg)}, max={_pct(cpu and cpu.max)}, "
            f"so you only need {needed_cpu:.2f} vCPUs. "
            f"{rec_spec.family} has {rec_spec.dimensions.get('vcpu', 0):.0f} vCPUs."
        )
        if memory is not None:
            summary.usage.append(
                f"- {current_spec.family} has {memory_gb:.1f}GB Memory. Usage is "
                f"min={_pct(memory.min)}, avg={_pct(memory.avg)}, max={_pct(memory.max)}, "
                f"so you only need {needed_memory or 0:.2f}GB Memory. "
                f"{rec_spec.family} has {rec_spec.dimensions.get('memory_gb', 0):.1f}GB Memory."
            )
        else:
            summary.usage.append(
                f"- {current_spec.family} has {memory_gb:.1f}GB Memory. Usage is not available."
            )
        if needed_network is not None:
            summary.usage.append(
                f"- Network throughput avg={network.avg / BYTES_PER_MB:.2f} MB/s, "
                f"so you only need {needed_network / BYTES_PER_MB:.2f} MB/s."
            )

        recommendation.description = await generate_description(self.description_generator, summary)
        return recommendation

    # ------------------------------------------------------------------
    # Block volumes
    # ------------------------------------------------------------------

    @guard_request(VolumeRightsizingRequest)
    async def recommend_volume(self, request: VolumeRightsizingRequest) -> Recommendation:
        """Rightsize a standalone block volume."""
        async with self.session_factory() as session:
            return await self._volume_recommendation(
                session, request.region, request.volume, request.metrics, request.preferences, request
            )

    def _valid_volume_families(
        self, preferences: Mapping[str, Optional[str]], current_family: str
    ) -> Optional[FrozenSet[str]]:
        """
        Volume families allowed by VolumeFamily, VolumeType and ExcludeVolumeTypes.

        None means unrestricted; an empty set means nothing is allowed.
        """
        valid: Optional[List[str]] = None

        if "VolumeFamily" in preferences:
            family = preferences["VolumeFamily"]
            if is_unset(family):
                valid = [current_family]
            else:
                alias = VOLUME_FAMILY_ALIASES.get(family.strip().lower())
                if alias is None:
                    raise InvalidInputError(f"unknown volume family {family!r}", field="VolumeFamily")
                valid = list(alias)

        if "VolumeType" in preferences:
            volume_type = preferences["VolumeType"]
            valid = [current_family] if is_unset(volume_type) else [volume_type.strip().lower()]

        excluded = preferences.get("ExcludeVolumeTypes")
        if not is_unset(excluded):
            if valid is None:
                valid = list(families_of(self.calculator.family_models, ResourceKind.BLOCK_VOLUME))
            drop = {e.strip().lower() for e in excluded.split(",")}
            valid = [v for v in valid if v not in drop]

        return None if valid is None else frozenset(valid)

    async def _volume_recommendation(
        self,
        session: AsyncSession,
        region: str,
        volume: EC2Volume,
        metrics: MetricSeries,
        preferences: Mapping[str, Optional[str]],
        request,
    ) -> Recommendation:
        catalog = VolumeCatalog(session)

        iops = _present(summarize(
            merge(_metric(metrics, "VolumeReadOps"), _metric(metrics, "VolumeWriteOps"), SUM_MERGE),
            request.policy_for("VolumeReadOps"),
        ))
        throughput_mb = _scaled(_present(summarize(
            merge(_metric(metrics, "VolumeReadBytes"), _metric(metrics, "VolumeWriteBytes"), SUM_MERGE),
            request.policy_for("VolumeReadBytes"),
        )), BYTES_PER_MB)
        disk = summarize_metric(metrics, "disk_used_percent", request.policy_for("disk_used_percent"))

        current_iops = current_volume_iops(volume)
        current_throughput = current_volume_throughput(volume)
        current_spec = ResourceSpec(
            kind=ResourceKind.BLOCK_VOLUME,
            family=volume.volume_type,
            region=region,
            dimensions=volume_dimensions(volume.volume_type, volume.size, current_iops, current_throughput),
        )

        current_sheet = await catalog.volume_sheet(region, [volume.volume_type])
        try:
            current = _priced(self.calculator.price(current_spec, current_sheet), current_spec)
        except ComponentPricingUnavailableError as e:
            raise NotFoundError(volume.volume_type, region, f"no {e.dimension} price for current volume") from e

        # Unmonitored dimensions keep their current value
        needed_iops = current_iops
        if iops is not None and iops.avg is not None:
            needed_iops = rate_headroom(iops.avg, self._room(preferences, "IOPSBreathingRoom"))
        needed_throughput = current_throughput
        if throughput_mb is not None and throughput_mb.avg is not None:
            needed_throughput = rate_headroom(throughput_mb.avg, self._room(preferences, "ThroughputBreathingRoom"))
        needed_size = volume.size
        if disk is not None and disk.avg is not None:
            needed_size = size_headroom(volume.size, disk.avg, self._room(preferences, "SizeBreathingRoom"))

        resolved = self.volume_resolver.resolve(
            preferences,
            current_spec,
            floors={
                "IOPS": math.ceil(needed_iops),
                "Throughput": math.ceil(needed_throughput),
                "Size": math.ceil(needed_size),
            },
        )

        usage = {"iops": iops, "throughput": throughput_mb, "disk_used_percent": disk}
        recommendation = Recommendation(
            kind=ResourceKind.BLOCK_VOLUME,
            resource_id=volume.volume_id,
            current=current,
            usage={k: v for k, v in usage.items() if v is not None},
        )

        valid_families = self._valid_volume_families(preferences, volume.volume_type)
        if valid_families is not None and not valid_families:
            self.logger.info("no_valid_volume_families", resource=volume.volume_id)
            recommendation.description = NO_CHEAPER_ALTERNATIVE
            return recommendation

        needed = {
            "size": float(resolved.value("Size")),
            "iops": float(resolved.value("IOPS")),
            "throughput": float(resolved.value("Throughput")),
        }
        query = SelectionQuery(
            kind=ResourceKind.BLOCK_VOLUME,
            region=region,
            resource_id=volume.volume_id,
            needed=needed,
            constraints=resolved,
            valid_families=valid_families,
        )
        selection = await self._select(query, catalog)
        if selection is None:
            recommendation.description = NO_CHEAPER_ALTERNATIVE
            return recommendation

        priced = selection.quote.spec
        rec_spec = priced.model_copy(update={"dimensions": volume_dimensions(
            priced.family,
            priced.dimensions["size"],
            needed["iops"],
            needed["throughput"],
            selection.candidate.row,
        )})
        recommended = _priced(selection.quote, rec_spec)

        if self._upsizing_blocked(resolved, current, recommended):
            recommendation.recommended = current.model_copy()
            recommendation.description = UPSIZING_EXCLUDED
            return recommendation

        recommendation.recommended = recommended
        summary = UsageNeedsSummary(
            kind=ResourceKind.BLOCK_VOLUME,
            resource_id=volume.volume_id,
            current_family=volume.volume_type,
            recommended_family=rec_spec.family,
            changes=describe_volume_change(current_spec, rec_spec),
            needs=describe_needs(preferences, resolved.kept_current),
        )
        summary.usage.append(f"- cost breakdown: {recommended.cost_breakdown}")
        recommendation.description = await generate_description(self.description_generator, summary)
        return recommendation

    # ------------------------------------------------------------------
    # Managed database storage
    # ------------------------------------------------------------------

    @guard_request(StorageRightsizingRequest)
    async def recommend_storage(self, request: StorageRightsizingRequest) -> Recommendation:
        """
        Rightsize the storage of a managed database instance.

        Aurora engines only consider Aurora storage families; other engines
        never do.
        """
        storage = request.storage
        region = request.region
        preferences = request.preferences
        metrics = request.metrics

        family = STORAGE_TYPE_FAMILIES.get(storage.storage_type.lower())
        if family is None:
            raise InvalidInputError(f"unknown storage type {storage.storage_type!r}", field="storage.storage_type")

        engine_label, edition = rds_engine_label(storage.engine, storage.engine_edition)
        context = {
            "engine_label": engine_label,
            "edition": edition,
            "deployment_option": storage.deployment_option,
            "aurora": storage.is_aurora,
        }

        iops = _present(summarize(
            merge(_metric(metrics, "ReadIOPS"), _metric(metrics, "WriteIOPS"), SUM_MERGE),
            request.policy_for("ReadIOPS"),
        ))
        throughput_mb = _scaled(_present(summarize(
            merge(_metric(metrics, "ReadThroughput"), _metric(metrics, "WriteThroughput"), SUM_MERGE),
            request.policy_for("ReadThroughput"),
        )), BYTES_PER_MB)
        free_gb = _scaled(
            _present(summarize(_metric(metrics, "FreeStorageSpace"), request.policy_for("FreeStorageSpace"))),
            BYTES_PER_GB,
        )

        current_iops = storage.iops
        if family in ("magnetic", "aurora") and iops is not None and iops.avg is not None:
            # Billed per request, so today's cost follows observed traffic
            current_iops = iops.avg
        if current_iops is None:
            current_iops = RDS_GP3_BASE_IOPS if family == "gp3" else 0.0
        current_throughput = storage.throughput
        if current_throughput is None:
            current_throughput = RDS_GP3_BASE_THROUGHPUT if family == "gp3" else 0.0
        current_spec = ResourceSpec(
            kind=ResourceKind.MANAGED_STORAGE,
            family=family,
            region=region,
            dimensions=storage_dimensions(family, storage.allocated_storage, current_iops, current_throughput),
            attributes={"engine": engine_label, "deployment_option": storage.deployment_option},
        )

        async with self.session_factory() as session:
            catalog = StorageCatalog(session)
            current_row = await catalog.find_storage(region, family, context)
            if current_row is None:
                raise NotFoundError(f"{engine_label} {family}", region, "storage type not in catalog")

            sheet = await catalog.storage_sheet(region, context)
            try:
                current = _priced(self.calculator.price(
                    current_spec, sheet, min_size=current_row.min_volume_size_gb or None
                ))
            except ComponentPricingUnavailableError as e:
                raise NotFoundError(family, region, f"no {e.dimension} price for current storage") from e

            needed_iops = current_iops
            if iops is not None and iops.avg is not None:
                needed_iops = rate_headroom(iops.avg, self._room(preferences, "IOPSBreathingRoom"))
            needed_throughput = current_throughput
            if throughput_mb is not None and throughput_mb.avg is not None:
                needed_throughput = rate_headroom(
                    throughput_mb.avg, self._room(preferences, "ThroughputBreathingRoom")
                )
            needed_size = storage.allocated_storage
            if free_gb is not None and free_gb.min is not None:
                used = max(1.0, storage.allocated_storage - free_gb.min)
                needed_size = rate_headroom(used, self._room(preferences, "SizeBreathingRoom"))

            resolved = self.storage_resolver.resolve(
                preferences,
                current_spec,
                floors={
                    "StorageIops": math.ceil(needed_iops),
                    "StorageThroughput": math.ceil(needed_throughput),
                    "StorageSize": math.ceil(needed_size),
                },
            )

            allowed = families_of(self.calculator.family_models, ResourceKind.MANAGED_STORAGE)
            if storage.is_aurora:
                valid = {f for f in allowed if f in AURORA_STORAGE_FAMILIES}
            else:
                valid = {f for f in allowed if f not in AURORA_STORAGE_FAMILIES}
            if "StorageType" in preferences:
                wanted = preferences["StorageType"]
                requested = family if is_unset(wanted) else STORAGE_TYPE_FAMILIES.get(wanted.strip().lower(), wanted)
                valid &= {requested}

            needed = {
                "size": float(resolved.value("StorageSize")),
                "iops": float(resolved.value("StorageIops")),
                "throughput": float(resolved.value("StorageThroughput")),
            }
            query = SelectionQuery(
                kind=ResourceKind.MANAGED_STORAGE,
                region=region,
                resource_id=storage.db_instance_id,
                needed=needed,
                constraints=resolved,
                valid_families=frozenset(valid),
                context=context,
            )
            selection = await self._select(query, catalog) if valid else None

        usage = {"iops": iops, "throughput": throughput_mb, "free_storage_gb": free_gb}
        recommendation = Recommendation(
            kind=ResourceKind.MANAGED_STORAGE,
            resource_id=storage.db_instance_id,
            current=current,
            usage={k: v for k, v in usage.items() if v is not None},
        )
        if selection is None:
            recommendation.description = NO_CHEAPER_ALTERNATIVE
            return recommendation

        priced = selection.quote.spec
        rec_spec = priced.model_copy(update={
            "dimensions": storage_dimensions(
                priced.family, priced.dimensions["size"], needed["iops"], needed["throughput"]
            ),
            "attributes": dict(current_spec.attributes),
        })
        recommended = _priced(selection.quote, rec_spec)

        if self._upsizing_blocked(resolved, current, recommended):
            recommendation.recommended = current.model_copy()
            recommendation.description = UPSIZING_EXCLUDED
            return recommendation

        recommendation.recommended = recommended
        summary = UsageNeedsSummary(
            kind=ResourceKind.MANAGED_STORAGE,
            resource_id=storage.db_instance_id,
            current_family=family,
            recommended_family=rec_spec.family,
            changes=describe_volume_change(current.spec, rec_spec),
            needs=describe_needs(preferences, resolved.kept_current),
        )
        summary.usage.append(f"- cost breakdown: {recommended.cost_breakdown}")
        recommendation.description = await generate_description(self.description_generator, summary)
        return recommendation

    # ------------------------------------------------------------------

    async def _select(self, query: SelectionQuery, source) -> Optional[Selection]:
        """Selection, or None when nothing feasible exists."""
        try:
            return await self.selector.select(query, source)
        except NoFeasibleConfigurationError:
            return None

    @staticmethod
    def _upsizing_blocked(
        resolved: ResolvedPreferences, current: PricedResource, recommended: PricedResource
    ) -> bool:
        return resolved.exclude_upsizing and recommended.cost > current.cost
