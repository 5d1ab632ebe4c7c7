from rightsizer.pricing.base import (
    ChargeType,
    CostComponent,
    FamilyModel,
    PriceQuote,
    PriceSheet,
    TierModel,
)
from rightsizer.pricing.calculator import TieredPricingCalculator
from rightsizer.pricing.families import default_family_models

__all__ = [
    "ChargeType",
    "CostComponent",
    "FamilyModel",
    "PriceQuote",
    "PriceSheet",
    "TierModel",
    "TieredPricingCalculator",
    "default_family_models",
]
