"""
FX rate provider module.

Retrieves exchange-rate tables from the Frankfurter API or from a static
table in configuration. Providers only fetch; caching, manual overrides
and staleness live in the rate cache.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable, Mapping, Protocol

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from storefront_pricing.exceptions import ConfigurationError, ProviderFetchFailed
from storefront_pricing.models import to_decimal
from storefront_pricing.utils.config_loader import AppConfig

logger = logging.getLogger(__name__)

# Currencies requested from the provider when the store has none active
SUPPORTED_CURRENCIES = (
    "AUD", "BGN", "BRL", "CAD", "CHF", "CNY", "CZK", "DKK", "EUR", "GBP",
    "HKD", "HUF", "IDR", "ILS", "INR", "ISK", "JPY", "KRW", "MXN", "MYR",
    "NOK", "NZD", "PHP", "PLN", "RON", "SEK", "SGD", "THB", "TRY", "ZAR",
    "AED", "SAR", "EGP",
)


@dataclass
class ProviderRates:
    """
    Raw result of a provider fetch.

    Attributes:
        as_of_date: Date the provider reports the rates for.
        rates: Currency code -> factor relative to the base.
        missing: Requested codes the provider did not return.
    """

    as_of_date: str
    rates: dict[str, Decimal]
    missing: list[str] = field(default_factory=list)


class RateProvider(Protocol):
    """Anything that can fetch a rate table for a base currency."""

    name: str

    def fetch(self, base_currency: str, symbols: Iterable[str]) -> ProviderRates:
        ...


def _split_rates(
    raw_rates: Mapping[str, object],
    base_currency: str,
    symbols: Iterable[str],
) -> tuple[dict[str, Decimal], list[str]]:
    """Keep valid positive rates for the requested symbols and list the rest as missing."""
    rates: dict[str, Decimal] = {}
    missing: list[str] = []
    for code in symbols:
        code = code.upper()
        if code == base_currency:
            continue
        try:
            rate = to_decimal(raw_rates.get(code))
        except ValueError:
            rate = None
        if rate is None or not rate.is_finite() or rate <= 0:
            missing.append(code)
        else:
            rates[code] = rate
    return rates, missing


class FrankfurterRateProvider:
    """
    Rate provider backed by the Frankfurter API.

    Attributes:
        base_url: API root, e.g. https://api.frankfurter.dev/v1.
        timeout: Request timeout in seconds.
        max_retries: Retry budget for transient HTTP failures.
    """

    name = "frankfurter"

    def __init__(
        self,
        base_url: str = "https://api.frankfurter.dev/v1",
        timeout: float = 10,
        max_retries: int = 3,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.session = self._create_session()

    def _create_session(self) -> requests.Session:
        """
        Create a requests session with retry logic.

        Returns:
            requests.Session: Configured session object.
        """
        session = requests.Session()

        retry_strategy = Retry(
            total=self.max_retries,
            backoff_factor=1.0,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("https://", adapter)
        session.mount("http://", adapter)

        return session

    def fetch(self, base_currency: str, symbols: Iterable[str]) -> ProviderRates:
        """
        Fetch the latest rates for a base currency.

        Args:
            base_currency: Currency to quote against.
            symbols: Currency codes to request.

        Returns:
            ProviderRates: Rates plus the codes the provider did not return.

        Raises:
            ProviderFetchFailed: On transport errors, HTTP errors or a malformed body.
        """
        base_currency = base_currency.upper()
        requested = sorted({s.upper() for s in symbols} - {base_currency})
        url = f"{self.base_url}/latest"
        params = {"base": base_currency}
        if requested:
            params["symbols"] = ",".join(requested)

        logger.info(f"Fetching {base_currency} rates from {url} ({len(requested)} symbols)")

        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            logger.error(f"Frankfurter request failed for {base_currency}: {e}")
            raise ProviderFetchFailed(f"Frankfurter request failed: {e}", provider=self.name) from e
        except ValueError as e:
            raise ProviderFetchFailed(
                f"Frankfurter returned invalid JSON: {e}", provider=self.name
            ) from e

        raw_rates = data.get("rates") if isinstance(data, dict) else None
        if not isinstance(raw_rates, dict):
            raise ProviderFetchFailed("Frankfurter response has no rates table", provider=self.name)

        rates, missing = _split_rates(raw_rates, base_currency, requested)
        if missing:
            logger.warning(f"Frankfurter did not return rates for: {', '.join(missing)}")

        return ProviderRates(
            as_of_date=str(data.get("date") or date.today().isoformat()),
            rates=rates,
            missing=missing,
        )


class StaticRateProvider:
    """
    Rate provider serving a fixed table.

    Rates are given relative to one anchor currency and cross rates are
    derived for any other base present in the table.
    """

    name = "static"

    def __init__(self, rates: Mapping[str, object], anchor_currency: str = "USD") -> None:
        self.anchor_currency = anchor_currency.upper()
        self.rates = {code.upper(): to_decimal(rate) for code, rate in rates.items()}
        self.rates[self.anchor_currency] = Decimal("1")

    def fetch(self, base_currency: str, symbols: Iterable[str]) -> ProviderRates:
        base_currency = base_currency.upper()
        base_rate = self.rates.get(base_currency)
        if base_rate is None or base_rate <= 0:
            raise ProviderFetchFailed(
                f"Static table has no rate for base {base_currency}", provider=self.name
            )

        cross = {code: rate / base_rate for code, rate in self.rates.items() if rate}
        rates, missing = _split_rates(cross, base_currency, symbols)
        return ProviderRates(as_of_date=date.today().isoformat(), rates=rates, missing=missing)


def build_provider(config: AppConfig) -> RateProvider:
    """
    Create the rate provider selected in configuration.

    Raises:
        ConfigurationError: If the provider name is unknown.
    """
    if config.fx.provider == "frankfurter":
        return FrankfurterRateProvider(
            base_url=config.fx.base_url,
            timeout=config.fx.timeout_seconds,
            max_retries=config.fx.max_retries,
        )
    if config.fx.provider == "static":
        return StaticRateProvider(config.fx.static_rates, config.pricing.canonical_currency)
    raise ConfigurationError(f"Unknown FX provider: {config.fx.provider}")
