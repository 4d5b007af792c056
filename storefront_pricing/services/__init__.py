"""
Services layer for the pricing engine.

Wires components together and schedules the periodic jobs.
"""

from storefront_pricing.services.pricing_service import PricingService
from storefront_pricing.services.scheduler import PeriodicJob

__all__ = ["PricingService", "PeriodicJob"]
