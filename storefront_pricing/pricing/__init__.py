"""
Pricing module.

Handles final price derivation, dynamic markup computation, exchange-rate
providers and conversion into display currencies.
"""

from storefront_pricing.pricing.currency_converter import CurrencyConverter, DisplayPrice
from storefront_pricing.pricing.fx_provider import (
    FrankfurterRateProvider,
    StaticRateProvider,
    build_provider,
)
from storefront_pricing.pricing.markup_engine import (
    BatchResult,
    LinearDemandPolicy,
    MarkupEngine,
    TieredDemandPolicy,
)
from storefront_pricing.pricing.price_calculator import PriceCalculator, compute_final_price

__all__ = [
    "PriceCalculator",
    "compute_final_price",
    "MarkupEngine",
    "BatchResult",
    "TieredDemandPolicy",
    "LinearDemandPolicy",
    "FrankfurterRateProvider",
    "StaticRateProvider",
    "build_provider",
    "CurrencyConverter",
    "DisplayPrice",
]
