"""
Pricing service.

Wires the engine components together from configuration and owns the two
periodic jobs: markup recompute and exchange-rate refresh.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional

from storefront_pricing.exceptions import NotFound
from storefront_pricing.pricing.currency_converter import CurrencyConverter
from storefront_pricing.pricing.fx_provider import RateProvider, build_provider
from storefront_pricing.pricing.markup_engine import BatchResult, MarkupEngine
from storefront_pricing.pricing.price_calculator import PriceCalculator
from storefront_pricing.risk.price_auditor import AuditReport, PriceIntegrityAuditor, RepairResult
from storefront_pricing.services.scheduler import PeriodicJob
from storefront_pricing.storage.catalog_store import JsonCatalogStore
from storefront_pricing.storage.currency_store import InMemoryCurrencyStore
from storefront_pricing.storage.rate_cache import ExchangeRateCache, RefreshResult
from storefront_pricing.storage.report_sink import InMemoryReportSink
from storefront_pricing.storage.signal_source import StaticSignalSource
from storefront_pricing.utils.config_loader import AppConfig

logger = logging.getLogger(__name__)


class PricingService:
    """
    Facade over the pricing engine.

    Handles:
    - Scheduled markup recompute over the catalog
    - Scheduled exchange-rate refresh per base currency
    - Display price lookups
    - Integrity scans and scoped repairs
    """

    def __init__(
        self,
        app_config: AppConfig,
        catalog_store: Any,
        currency_store: Any = None,
        signal_source: Any = None,
        provider: Optional[RateProvider] = None,
        report_sink: Any = None,
    ):
        """
        Initialize the pricing service.

        Args:
            app_config: Application configuration.
            catalog_store: Catalog store (list_active/get/update).
            currency_store: Currency store; built from config when None.
            signal_source: Demand signal source; empty static source when None.
            provider: Rate provider; built from config when None.
            report_sink: Audit/repair sink; in-memory when None.
        """
        self.app_config = app_config
        self.catalog_store = catalog_store
        self.currency_store = currency_store or InMemoryCurrencyStore.from_dicts(
            app_config.currencies
        )
        self.signal_source = signal_source or StaticSignalSource()
        self.provider = provider or build_provider(app_config)
        self.report_sink = report_sink or InMemoryReportSink()

        self.calculator = PriceCalculator.from_config(app_config)
        self.rate_cache = ExchangeRateCache.from_config(
            app_config, self.provider, self.currency_store
        )
        self.converter = CurrencyConverter(
            self.rate_cache,
            self.currency_store,
            canonical_currency=app_config.pricing.canonical_currency,
            default_decimals=app_config.pricing.decimal_places,
        )
        self.markup_engine = MarkupEngine.from_config(app_config, self.signal_source)
        self.auditor = PriceIntegrityAuditor(
            app_config.audit,
            self.calculator,
            catalog_store=catalog_store,
            report_sink=self.report_sink,
        )

        self.markup_job = PeriodicJob(
            "markup-recompute",
            self.recompute_all,
            app_config.markup.recompute_interval_seconds,
        )
        self.fx_job = PeriodicJob(
            "fx-refresh",
            lambda stop_event: self.refresh_rates(stop_event=stop_event),
            app_config.fx.refresh_interval_seconds,
        )

    def recompute_all(self, stop_event: Optional[threading.Event] = None) -> BatchResult:
        """Recompute dynamic markups and final prices for the active catalog."""
        return self.markup_engine.run_batch(self.catalog_store, self.calculator, stop_event)

    def refresh_rates(
        self,
        base_currency: Optional[str] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> List[RefreshResult]:
        """
        Refresh exchange rates for one base or every configured base.

        Each base is refreshed on its own worker, so a slow provider
        response for one base does not hold back the others.

        Returns:
            List of RefreshResult, one per base attempted, in base order.
        """
        bases: List[str] = (
            [base_currency] if base_currency else list(self.app_config.fx.base_currencies)
        )
        if not bases:
            return []

        futures = []
        with ThreadPoolExecutor(
            max_workers=len(bases), thread_name_prefix="fx-refresh"
        ) as executor:
            for base in bases:
                if stop_event is not None and stop_event.is_set():
                    logger.info("Rate refresh stopped before all bases were refreshed")
                    break
                futures.append(executor.submit(self.rate_cache.refresh, base))
        return [future.result() for future in futures]

    def display_price(
        self,
        item_id: str,
        currency: str,
        variant_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Get an item's (or variant's) final price in a display currency.

        Raises:
            NotFound: If the item or variant does not exist.
        """
        item = self.catalog_store.get(item_id)
        entity = item
        if variant_id:
            entity = item.find_variant(variant_id)
            if entity is None:
                raise NotFound("variant", variant_id)

        final_price = entity.final_price
        if final_price is None:
            final_price = self.calculator.derive_entity(entity)

        display = self.converter.convert_for_display(final_price, currency)
        return {
            "item_id": item.id,
            "variant_id": variant_id,
            "canonical_price": str(final_price),
            "canonical_currency": self.converter.canonical_currency,
            **display.to_dict(),
        }

    def scan(self) -> AuditReport:
        return self.auditor.scan_catalog()

    def repair(self, entity_ids: Any, factor: Any, dry_run: bool = False) -> RepairResult:
        return self.auditor.repair(entity_ids, factor, dry_run=dry_run)

    def start(self) -> None:
        """Start the periodic jobs."""
        self.fx_job.start()
        self.markup_job.start()

    def stop(self, wait: bool = True) -> None:
        """Stop the periodic jobs, letting in-flight work finish."""
        self.markup_job.stop(wait=wait)
        self.fx_job.stop(wait=wait)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "catalog_items": len(self.catalog_store),
            "active_currencies": self.currency_store.active_codes(),
            "fx": self.rate_cache.get_stats(),
            "jobs": [self.markup_job.get_stats(), self.fx_job.get_stats()],
        }

    @classmethod
    def from_config(cls, app_config: AppConfig, **overrides: Any) -> "PricingService":
        """Build a service with a JSON catalog store at the configured path."""
        catalog_store = overrides.pop("catalog_store", None)
        if catalog_store is None:
            catalog_store = JsonCatalogStore(
                app_config.paths.catalog_file,
                default_base_markup_pct=app_config.pricing.default_base_markup_pct,
            )
        return cls(app_config, catalog_store, **overrides)
