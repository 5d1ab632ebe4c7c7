"""
Pricing building blocks: family tier models, price sheets and quotes.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Tuple

from rightsizer.exceptions import ComponentPricingUnavailableError
from rightsizer.models.schemas import ResourceKind, ResourceSpec


class ChargeType(str, Enum):
    """What a price component is charged per."""
    SIZE = "size"
    IOPS = "iops"
    THROUGHPUT = "throughput"
    IO_REQUEST = "io_request"
    INSTANCE_HOUR = "instance_hour"


class TierModel(str, Enum):
    """Closed set of pricing models a family can use."""
    FLAT = "flat"
    IOPS_TIERED = "iops_tiered"
    BASE_ALLOWANCE = "base_allowance"
    PER_OPERATION = "per_operation"
    IO_OPTIMIZED = "io_optimized"
    HOURLY = "hourly"


@dataclass(frozen=True)
class FamilyModel:
    """
    Static pricing shape of one resource family.

    Attributes:
        kind: Resource kind the family belongs to
        family: Family tag ("gp3", "io2", "aurora", "*" for any instance type)
        tier_model: Which pricing model applies
        iops_tier_bounds: Ascending IOPS tier upper bounds (b1 < b2)
        base_iops: IOPS included with the size charge
        base_throughput: MB/s included with the size charge
        iops_per_gb: IOPS a GiB of storage sustains; size is bumped to match
        iops_bump_floor: IOPS at or below which no size bump happens
        size_threshold: Size that unlocks the raised allowance
        threshold_base_iops: Included IOPS at or above size_threshold
        threshold_base_throughput: Included MB/s at or above size_threshold
    """
    kind: ResourceKind
    family: str
    tier_model: TierModel
    iops_tier_bounds: Tuple[int, ...] = ()
    base_iops: int = 0
    base_throughput: float = 0
    iops_per_gb: Optional[int] = None
    iops_bump_floor: int = 100
    size_threshold: Optional[float] = None
    threshold_base_iops: int = 0
    threshold_base_throughput: float = 0


@dataclass(frozen=True)
class CostComponent:
    """One line of a cost breakdown."""
    label: str
    unit_price: Decimal
    quantity: Decimal
    charge_type: ChargeType

    @property
    def cost(self) -> Decimal:
        return self.unit_price * self.quantity

    def describe(self) -> str:
        return f"{self.label}: ${_plain(self.unit_price)} * {_plain(self.quantity)}"


@dataclass
class PriceQuote:
    """
    Result of pricing one candidate.

    spec is the configuration actually priced (after minimum-size and
    IOPS-driven size bumps).
    """
    spec: ResourceSpec
    components: List[CostComponent] = field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return sum((c.cost for c in self.components), Decimal("0"))

    @property
    def breakdown(self) -> str:
        """Non-zero components, in calculation order, joined with ' + '."""
        return " + ".join(c.describe() for c in self.components if c.cost != 0)

    def component(self, charge_type: ChargeType) -> List[CostComponent]:
        return [c for c in self.components if c.charge_type == charge_type]


class PriceSheet:
    """
    Unit prices for one region, keyed by (family, charge type, tier index).

    When several catalog rows price the same cell, the lowest wins.
    """

    def __init__(self, region: str):
        self.region = region
        self._rates: Dict[Tuple[str, ChargeType, int], Decimal] = {}

    def add(self, family: str, charge_type: ChargeType, price: Decimal, tier: int = 1) -> None:
        key = (family, charge_type, tier)
        price = Decimal(price)
        current = self._rates.get(key)
        if current is None or price < current:
            self._rates[key] = price

    def has(self, family: str, charge_type: ChargeType, tier: int = 1) -> bool:
        return (family, charge_type, tier) in self._rates

    def rate(self, family: str, charge_type: ChargeType, tier: int = 1) -> Decimal:
        """
        Look up a unit price.

        Raises:
            ComponentPricingUnavailableError: If the cell was never priced
        """
        try:
            return self._rates[(family, charge_type, tier)]
        except KeyError:
            dimension = charge_type.value if tier == 1 else f"{charge_type.value} tier {tier}"
            raise ComponentPricingUnavailableError(family, self.region, dimension) from None

    def __len__(self) -> int:
        return len(self._rates)


def _plain(value: Decimal) -> str:
    """Render a Decimal without exponent or trailing zeros."""
    return format(value.normalize(), "f")


def to_decimal(value: Optional[float]) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))
