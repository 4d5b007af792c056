"""
Storage modules: catalog, currency configuration, rate cache and report sinks.
"""

from storefront_pricing.storage.catalog_store import InMemoryCatalogStore, JsonCatalogStore
from storefront_pricing.storage.currency_store import InMemoryCurrencyStore
from storefront_pricing.storage.rate_cache import ExchangeRateCache, RefreshResult
from storefront_pricing.storage.report_sink import CsvReportSink, InMemoryReportSink
from storefront_pricing.storage.signal_source import StaticSignalSource

__all__ = [
    "InMemoryCatalogStore",
    "JsonCatalogStore",
    "InMemoryCurrencyStore",
    "ExchangeRateCache",
    "RefreshResult",
    "InMemoryReportSink",
    "CsvReportSink",
    "StaticSignalSource",
]
