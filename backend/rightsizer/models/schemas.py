"""
Pydantic schemas for rightsizing requests, usage data and recommendations.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AggregationPolicy(str, Enum):
    """How a window of datapoints is collapsed into avg/max."""
    AVERAGE = "average"
    MAX = "max"


class ResourceKind(str, Enum):
    """Resource families the engine can rightsize."""
    COMPUTE_INSTANCE = "compute_instance"
    BLOCK_VOLUME = "block_volume"
    MANAGED_STORAGE = "managed_storage"


# ============================================================================
# USAGE
# ============================================================================

class Datapoint(BaseModel):
    """One time-stamped observation. Statistics not requested upstream are None."""
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    average: Optional[float] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    sum: Optional[float] = None
    sample_count: Optional[float] = None


class UsageSummary(BaseModel):
    """Summary statistics for one metric; None means no datapoint carried it."""
    avg: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None
    last: Optional[Datapoint] = None

    @property
    def is_empty(self) -> bool:
        return self.avg is None and self.min is None and self.max is None

    def zero_filled(self) -> "UsageSummary":
        """Display copy with missing statistics shown as zero."""
        return UsageSummary(
            avg=self.avg or 0.0,
            min=self.min or 0.0,
            max=self.max or 0.0,
            last=self.last,
        )


# ============================================================================
# RESOURCES
# ============================================================================

class ResourceSpec(BaseModel):
    """
    A priced configuration.

    family is the volume tier (gp3), the instance type (m5.large) or the
    managed storage family (aurora). Dimensions hold numeric sizing
    (size, iops, throughput, vcpu, memory_gb); attributes hold the rest.
    """
    kind: ResourceKind
    family: str
    region: str
    dimensions: Dict[str, float] = Field(default_factory=dict)
    attributes: Dict[str, str] = Field(default_factory=dict)

    def value_of(self, name: str) -> Optional[Any]:
        """Read a dimension or attribute; None when the resource lacks it."""
        if name == "family":
            return self.family
        if name == "region":
            return self.region
        if name in self.dimensions:
            return self.dimensions[name]
        value = self.attributes.get(name)
        if value == "":
            return None
        return value


class PricedResource(BaseModel):
    spec: ResourceSpec
    cost: Decimal
    cost_breakdown: str = ""


class Recommendation(BaseModel):
    """Outcome of rightsizing one resource."""
    kind: ResourceKind
    resource_id: str
    current: PricedResource
    recommended: Optional[PricedResource] = None
    usage: Dict[str, UsageSummary] = Field(default_factory=dict)
    description: str = ""


class InstanceRightsizingResult(BaseModel):
    instance: Recommendation
    volumes: Dict[str, Recommendation] = Field(default_factory=dict)


# ============================================================================
# REQUESTS
# ============================================================================

class EC2Instance(BaseModel):
    instance_id: str
    instance_type: str
    state: str = "running"
    usage_operation: Optional[str] = None
    tenancy: str = "default"
    ebs_optimized: bool = False
    core_count: int = Field(gt=0)
    threads_per_core: int = Field(default=1, gt=0)

    @property
    def vcpu(self) -> int:
        return self.core_count * self.threads_per_core


class EC2Volume(BaseModel):
    volume_id: str
    volume_type: str
    size: float = Field(ge=0)
    iops: Optional[float] = Field(default=None, ge=0)
    throughput: Optional[float] = Field(default=None, ge=0)

    @field_validator("volume_type")
    @classmethod
    def lower_volume_type(cls, v: str) -> str:
        return v.lower()


class RDSStorage(BaseModel):
    db_instance_id: str
    engine: str
    engine_edition: Optional[str] = None
    multi_az: bool = False
    storage_type: str
    allocated_storage: float = Field(ge=0)
    iops: Optional[float] = Field(default=None, ge=0)
    throughput: Optional[float] = Field(default=None, ge=0)

    @property
    def deployment_option(self) -> str:
        return "Multi-AZ" if self.multi_az else "Single-AZ"

    @property
    def is_aurora(self) -> bool:
        return self.engine.lower().startswith("aurora")


MetricSeries = Dict[str, List[Datapoint]]


class _RightsizingRequest(BaseModel):
    region: str = Field(min_length=1)
    preferences: Dict[str, Optional[str]] = Field(default_factory=dict)
    aggregation: AggregationPolicy = AggregationPolicy.AVERAGE
    metric_policies: Dict[str, AggregationPolicy] = Field(default_factory=dict)

    def policy_for(self, metric: str) -> AggregationPolicy:
        return self.metric_policies.get(metric, self.aggregation)


class InstanceRightsizingRequest(_RightsizingRequest):
    instance: EC2Instance
    volumes: List[EC2Volume] = Field(default_factory=list)
    metrics: MetricSeries = Field(default_factory=dict)
    volume_metrics: Dict[str, MetricSeries] = Field(default_factory=dict)


class VolumeRightsizingRequest(_RightsizingRequest):
    volume: EC2Volume
    metrics: MetricSeries = Field(default_factory=dict)


class StorageRightsizingRequest(_RightsizingRequest):
    storage: RDSStorage
    metrics: MetricSeries = Field(default_factory=dict)
