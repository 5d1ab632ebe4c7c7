"""
Static family pricing models.

Built once at startup and handed to the calculator.
"""
from types import MappingProxyType
from typing import Mapping, Tuple

from rightsizer.models.schemas import ResourceKind
from rightsizer.pricing.base import FamilyModel, TierModel

# EBS
GP3_BASE_IOPS = 3000
GP3_BASE_THROUGHPUT = 125
GP2_IOPS_PER_GIB = 3
IO2_TIER1_UPPER_BOUND = 32000
IO2_TIER2_UPPER_BOUND = 64000

# RDS gp3
RDS_GP3_BASE_IOPS = 3000
RDS_GP3_BASE_THROUGHPUT = 125
RDS_GP3_SIZE_THRESHOLD = 400
RDS_GP3_THRESHOLD_BASE_IOPS = 12000
RDS_GP3_THRESHOLD_BASE_THROUGHPUT = 500

# Any instance type
ANY_INSTANCE_TYPE = "*"

FamilyKey = Tuple[ResourceKind, str]

BLOCK = ResourceKind.BLOCK_VOLUME
MANAGED = ResourceKind.MANAGED_STORAGE

_MODELS = (
    FamilyModel(BLOCK, "gp2", TierModel.FLAT, iops_per_gb=GP2_IOPS_PER_GIB),
    FamilyModel(
        BLOCK, "gp3", TierModel.BASE_ALLOWANCE,
        base_iops=GP3_BASE_IOPS, base_throughput=GP3_BASE_THROUGHPUT,
    ),
    FamilyModel(BLOCK, "io1", TierModel.IOPS_TIERED),
    FamilyModel(
        BLOCK, "io2", TierModel.IOPS_TIERED,
        iops_tier_bounds=(IO2_TIER1_UPPER_BOUND, IO2_TIER2_UPPER_BOUND),
    ),
    FamilyModel(BLOCK, "st1", TierModel.FLAT),
    FamilyModel(BLOCK, "sc1", TierModel.FLAT),
    FamilyModel(BLOCK, "standard", TierModel.FLAT),

    FamilyModel(MANAGED, "gp2", TierModel.FLAT),
    FamilyModel(
        MANAGED, "gp3", TierModel.BASE_ALLOWANCE,
        base_iops=RDS_GP3_BASE_IOPS,
        base_throughput=RDS_GP3_BASE_THROUGHPUT,
        size_threshold=RDS_GP3_SIZE_THRESHOLD,
        threshold_base_iops=RDS_GP3_THRESHOLD_BASE_IOPS,
        threshold_base_throughput=RDS_GP3_THRESHOLD_BASE_THROUGHPUT,
    ),
    FamilyModel(MANAGED, "io1", TierModel.IOPS_TIERED),
    FamilyModel(MANAGED, "io2", TierModel.IOPS_TIERED),
    FamilyModel(MANAGED, "magnetic", TierModel.PER_OPERATION),
    FamilyModel(MANAGED, "aurora", TierModel.PER_OPERATION),
    FamilyModel(MANAGED, "aurora-iopt", TierModel.IO_OPTIMIZED),

    FamilyModel(ResourceKind.COMPUTE_INSTANCE, ANY_INSTANCE_TYPE, TierModel.HOURLY),
)

AURORA_STORAGE_FAMILIES = frozenset({"aurora", "aurora-iopt"})


def default_family_models() -> Mapping[FamilyKey, FamilyModel]:
    """Read-only registry of every priced family."""
    return MappingProxyType({(m.kind, m.family): m for m in _MODELS})


def families_of(models: Mapping[FamilyKey, FamilyModel], kind: ResourceKind) -> Tuple[str, ...]:
    return tuple(family for (k, family) in models if k == kind and family != ANY_INSTANCE_TYPE)
