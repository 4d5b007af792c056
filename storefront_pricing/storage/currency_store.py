"""
Currency configuration store.

Holds the operator-owned currency configuration: which currencies are
active, their display settings and optional manual rates.
"""

import logging
import threading
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, List, Optional

from storefront_pricing.exceptions import InvalidInput, NotFound
from storefront_pricing.models import CurrencyConfig, to_decimal

logger = logging.getLogger(__name__)


class InMemoryCurrencyStore:
    """Thread-safe in-memory store of CurrencyConfig records keyed by code."""

    def __init__(self, currencies: Optional[Iterable[CurrencyConfig]] = None):
        self._lock = threading.Lock()
        self._currencies: dict[str, CurrencyConfig] = {}
        for currency in currencies or []:
            self._currencies[currency.code] = currency

    @classmethod
    def from_dicts(cls, rows: Iterable[dict[str, Any]]) -> "InMemoryCurrencyStore":
        """Build a store from plain dictionaries (YAML/JSON rows)."""
        return cls(CurrencyConfig(**row) for row in rows)

    def get(self, code: str) -> CurrencyConfig:
        """
        Get a currency configuration.

        Raises:
            NotFound: If the currency is not configured.
        """
        with self._lock:
            currency = self._currencies.get(code.strip().upper())
        if currency is None:
            raise NotFound("currency", code)
        return replace(currency)

    def find(self, code: str) -> Optional[CurrencyConfig]:
        try:
            return self.get(code)
        except NotFound:
            return None

    def list_all(self) -> List[CurrencyConfig]:
        with self._lock:
            return [replace(c) for c in self._currencies.values()]

    def list_active(self) -> List[CurrencyConfig]:
        return [c for c in self.list_all() if c.is_active]

    def active_codes(self) -> List[str]:
        return sorted(c.code for c in self.list_active())

    def upsert(self, currency: CurrencyConfig) -> CurrencyConfig:
        with self._lock:
            self._currencies[currency.code] = replace(currency)
        logger.info(f"Currency {currency.code} saved (active={currency.is_active})")
        return currency

    def activate(self, code: str, active: bool = True) -> CurrencyConfig:
        with self._lock:
            current = self._currencies.get(code.strip().upper())
            if current is None:
                raise NotFound("currency", code)
            current.is_active = active
            updated = replace(current)
        logger.info(f"Currency {updated.code} {'activated' if active else 'deactivated'}")
        return updated

    def set_manual_rate(
        self,
        code: str,
        rate: Decimal | float | None,
        allow: bool = True,
    ) -> CurrencyConfig:
        """
        Set or clear the manual rate of a currency.

        Args:
            code: Currency code.
            rate: Positive rate, or None to clear.
            allow: Whether the manual rate should take precedence.

        Raises:
            NotFound: If the currency is not configured.
            InvalidInput: If the rate is not positive.
        """
        try:
            value = to_decimal(rate)
        except ValueError as e:
            raise InvalidInput(str(e), field="manual_rate") from e
        if value is not None and (not value.is_finite() or value <= 0):
            raise InvalidInput(f"Manual rate must be > 0, got {rate}", field="manual_rate")

        with self._lock:
            current = self._currencies.get(code.strip().upper())
            if current is None:
                raise NotFound("currency", code)
            current.manual_rate = value
            current.allow_manual_rate = allow and value is not None
            current.manual_rate_updated_at = datetime.now(timezone.utc)
            updated = replace(current)

        logger.info(
            f"Manual rate for {updated.code} set to {value} (allowed={updated.allow_manual_rate})"
        )
        return updated
