"""
Tiered pricing calculator.

Prices one candidate configuration against a region's price sheet. Each
family's shape comes from its FamilyModel; the arithmetic is done in
Decimal so the breakdown decomposes the total exactly.
"""
import math
from decimal import Decimal
from typing import List, Mapping, Optional

from rightsizer.exceptions import ComponentPricingUnavailableError
from rightsizer.models.schemas import ResourceSpec
from rightsizer.pricing.base import (
    ChargeType,
    CostComponent,
    FamilyModel,
    PriceQuote,
    PriceSheet,
    TierModel,
    to_decimal,
)
from rightsizer.pricing.families import ANY_INSTANCE_TYPE, FamilyKey

SECONDS_PER_MONTH = 30 * 24 * 3600
ONE_MILLION = Decimal("1000000")


class TieredPricingCalculator:
    """
    Monthly cost of a resource configuration.

    Component order in every quote: size, IOPS by tier descending,
    throughput. Compute instances have a single instance-hours component.
    """

    def __init__(self, family_models: Mapping[FamilyKey, FamilyModel], hours_per_month: int = 730):
        self.family_models = family_models
        self.hours_per_month = Decimal(hours_per_month)

    def model_for(self, spec: ResourceSpec) -> FamilyModel:
        model = self.family_models.get((spec.kind, spec.family))
        if model is None:
            model = self.family_models.get((spec.kind, ANY_INSTANCE_TYPE))
        if model is None:
            raise ComponentPricingUnavailableError(spec.family, spec.region, "family")
        return model

    def price(
        self,
        spec: ResourceSpec,
        sheet: PriceSheet,
        min_size: Optional[float] = None,
    ) -> PriceQuote:
        """
        Price a configuration.

        Args:
            spec: Configuration to price (size, iops, throughput dimensions)
            sheet: Unit prices for spec.region
            min_size: Catalog minimum purchasable size, applied before pricing

        Returns:
            PriceQuote whose spec carries the size actually billed

        Raises:
            ComponentPricingUnavailableError: If a charged component has no price
        """
        model = self.model_for(spec)

        if model.tier_model == TierModel.HOURLY:
            rate = sheet.rate(spec.family, ChargeType.INSTANCE_HOUR)
            return PriceQuote(
                spec=spec,
                components=[
                    CostComponent("Instance Hours", rate, self.hours_per_month, ChargeType.INSTANCE_HOUR)
                ],
            )

        size = to_decimal(spec.dimensions.get("size"))
        iops = to_decimal(spec.dimensions.get("iops"))
        throughput = to_decimal(spec.dimensions.get("throughput"))

        if min_size is not None and size < to_decimal(min_size):
            size = to_decimal(min_size)

        components: List[CostComponent] = []

        if model.tier_model == TierModel.FLAT:
            if model.iops_per_gb and iops > model.iops_bump_floor:
                size = max(size, Decimal(math.ceil(iops / model.iops_per_gb)))
            components.append(self._size_component(model, sheet, size))

        elif model.tier_model == TierModel.IOPS_TIERED:
            components.append(self._size_component(model, sheet, size))
            components.extend(self._iops_tiers(model, sheet, iops))

        elif model.tier_model == TierModel.BASE_ALLOWANCE:
            base_iops = Decimal(model.base_iops)
            base_throughput = to_decimal(model.base_throughput)
            if model.size_threshold is not None and (iops > base_iops or throughput > base_throughput):
                size = max(size, to_decimal(model.size_threshold))
                base_iops = Decimal(model.threshold_base_iops)
                base_throughput = to_decimal(model.threshold_base_throughput)

            components.append(self._size_component(model, sheet, size))
            if iops > base_iops:
                components.append(CostComponent(
                    f"Provisioned IOPS (over {_plain_int(base_iops)})",
                    sheet.rate(model.family, ChargeType.IOPS),
                    iops - base_iops,
                    ChargeType.IOPS,
                ))
            if throughput > base_throughput:
                components.append(CostComponent(
                    f"Provisioned Throughput (over {_plain_int(base_throughput)})",
                    sheet.rate(model.family, ChargeType.THROUGHPUT),
                    throughput - base_throughput,
                    ChargeType.THROUGHPUT,
                ))

        elif model.tier_model == TierModel.PER_OPERATION:
            components.append(self._size_component(model, sheet, size))
            million_ops = Decimal(math.ceil(iops * SECONDS_PER_MONTH / ONE_MILLION))
            if million_ops > 0:
                components.append(CostComponent(
                    "I/O Requests (millions)",
                    sheet.rate(model.family, ChargeType.IO_REQUEST),
                    million_ops,
                    ChargeType.IO_REQUEST,
                ))

        elif model.tier_model == TierModel.IO_OPTIMIZED:
            components.append(self._size_component(model, sheet, size))

        priced_spec = spec.model_copy(
            update={"dimensions": {**spec.dimensions, "size": float(size)}}
        )
        return PriceQuote(spec=priced_spec, components=components)

    def _size_component(
        self, model: FamilyModel, sheet: PriceSheet, size: Decimal
    ) -> CostComponent:
        return CostComponent("Size", sheet.rate(model.family, ChargeType.SIZE), size, ChargeType.SIZE)

    def _iops_tiers(
        self, model: FamilyModel, sheet: PriceSheet, iops: Decimal
    ) -> List[CostComponent]:
        """
        Split IOPS across tiers, highest tier first.

        With bounds b1 < b2: over b2 at rate3, (b1, b2] at rate2, up to b1 at rate1.
        """
        if iops <= 0:
            return []

        bounds = [Decimal(b) for b in model.iops_tier_bounds]
        if not bounds:
            return [CostComponent(
                "Provisioned IOPS", sheet.rate(model.family, ChargeType.IOPS), iops, ChargeType.IOPS
            )]

        components = []
        upper = None
        for tier in range(len(bounds) + 1, 0, -1):
            lower = bounds[tier - 2] if tier > 1 else Decimal("0")
            ceiling = iops if upper is None else min(iops, upper)
            quantity = max(Decimal("0"), ceiling - lower)
            upper = lower
            if quantity == 0:
                continue
            if tier == len(bounds) + 1:
                label = f"IOPS Tier {tier} (over {_plain_int(lower)})"
            elif tier == 1:
                label = f"IOPS Tier 1 (up to {_plain_int(bounds[0])})"
            else:
                label = f"IOPS Tier {tier} ({_plain_int(lower)}-{_plain_int(bounds[tier - 1])})"
            components.append(CostComponent(
                label, sheet.rate(model.family, ChargeType.IOPS, tier), quantity, ChargeType.IOPS
            ))
        return components


def _plain_int(value: Decimal) -> str:
    return format(value.normalize(), "f")
