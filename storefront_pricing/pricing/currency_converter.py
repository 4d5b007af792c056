"""
Currency converter module.

Converts canonical-currency amounts into display currencies using the
exchange-rate cache. A missing rate is an error, never a silent 1.0.

Display helpers add psychological rounding and symbol formatting:
- NONE: no rounding beyond the currency's decimals
- NEAREST_1 / NEAREST_5 / NEAREST_10: round to the nearest step
- ENDING_9: charm pricing (9.99, 49.99, 499, 1999 ...)
- CUSTOM: per-currency price bands (see RoundingRule)

A currency's market adjustment is applied to the rounded price, which is
then rounded again.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, Optional

from storefront_pricing.exceptions import ConversionUnavailable, NotFound, RateUnavailable
from storefront_pricing.models import CurrencyConfig, RoundingRule, RoundingStrategy, to_decimal
from storefront_pricing.pricing.price_calculator import quantize_amount

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


def _round_to_step(amount: Decimal, step: int | Decimal) -> Decimal:
    return (amount / step).quantize(Decimal("1"), rounding=ROUND_HALF_UP) * step


def apply_rounding_strategy(
    amount: Decimal,
    strategy: RoundingStrategy | str,
    rules: Iterable[RoundingRule] = (),
) -> Decimal:
    """
    Apply a psychological rounding strategy to a display amount.

    Args:
        amount: Converted amount.
        strategy: Rounding strategy.
        rules: Price bands for the CUSTOM strategy, lowest band first.

    Returns:
        Decimal: Rounded amount.
    """
    strategy = RoundingStrategy(strategy)
    if strategy == RoundingStrategy.NONE or amount <= 0:
        return amount
    if strategy == RoundingStrategy.NEAREST_1:
        return _round_to_step(amount, 1)
    if strategy == RoundingStrategy.NEAREST_5:
        return _round_to_step(amount, 5)
    if strategy == RoundingStrategy.NEAREST_10:
        return _round_to_step(amount, 10)
    if strategy == RoundingStrategy.CUSTOM:
        return _custom(amount, rules)
    return _ending_9(amount)


def _custom(amount: Decimal, rules: Iterable[RoundingRule]) -> Decimal:
    for rule in rules:
        if rule.below is not None and amount >= rule.below:
            continue
        if rule.floor_step is not None:
            floored = (amount / rule.floor_step).to_integral_value(rounding=ROUND_FLOOR)
            return floored * rule.floor_step + rule.offset
        if rule.nearest_step is not None:
            return _round_to_step(amount, rule.nearest_step) + rule.offset
    # No band matched
    return _round_to_step(amount, 1)


def _ending_9(amount: Decimal) -> Decimal:
    whole = amount.to_integral_value(rounding=ROUND_FLOOR)

    if amount < 10:
        return whole - 1 + Decimal("0.99") if whole >= 1 else Decimal("0.99")

    if amount < 100:
        tens = (amount / 10).to_integral_value(rounding=ROUND_FLOOR)
        if amount - tens * 10 > 5:
            return tens * 10 + Decimal("9.99")
        return (tens - 1) * 10 + Decimal("9.99")

    if amount < 1000:
        hundreds = (amount / 100).to_integral_value(rounding=ROUND_FLOOR)
        if amount - hundreds * 100 > 50:
            return hundreds * 100 + 99
        return (hundreds - 1) * 100 + 99

    return _round_to_step(amount, 100) - 1


def format_price(amount: Decimal, currency: CurrencyConfig) -> str:
    """
    Format an amount with the currency's symbol and decimals.

    Example:
        format_price(Decimal("1234.5"), usd) -> "$1,234.50"
    """
    number = f"{amount:,.{currency.decimals}f}"
    if currency.symbol_position == "after":
        return f"{number} {currency.display_symbol}"
    return f"{currency.display_symbol}{number}"


@dataclass
class DisplayPrice:
    """
    A price ready to show to a shopper.

    When the requested currency could not be served, the amount is the
    canonical one, rate_unavailable is True and notice explains why.
    """

    amount: Decimal
    currency: str
    formatted: str
    rate: Optional[Decimal] = None
    rate_as_of: Optional[datetime] = None
    is_stale: bool = False
    rate_unavailable: bool = False
    notice: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount": str(self.amount),
            "currency": self.currency,
            "formatted": self.formatted,
            "rate": None if self.rate is None else str(self.rate),
            "rate_as_of": self.rate_as_of.isoformat() if self.rate_as_of else None,
            "is_stale": self.is_stale,
            "rate_unavailable": self.rate_unavailable,
            "notice": self.notice,
        }


class CurrencyConverter:
    """
    Converter from the canonical currency to display currencies.

    Attributes:
        rate_cache: Exchange-rate cache.
        currency_store: Optional store supplying decimals and display settings.
        canonical_currency: Currency all stored prices are in.
        default_decimals: Precision for currencies without configuration.
    """

    def __init__(
        self,
        rate_cache: Any,
        currency_store: Any = None,
        canonical_currency: str = "USD",
        default_decimals: int = 2,
    ) -> None:
        self.rate_cache = rate_cache
        self.currency_store = currency_store
        self.canonical_currency = canonical_currency.upper()
        self.default_decimals = default_decimals

    def _currency_config(self, code: str) -> CurrencyConfig:
        if self.currency_store is not None:
            try:
                return self.currency_store.get(code)
            except NotFound:
                pass
        return CurrencyConfig(code=code, decimals=self.default_decimals)

    def convert(self, amount: Any, target_currency: str) -> Decimal:
        """
        Convert a canonical amount into the target currency.

        Args:
            amount: Amount in the canonical currency.
            target_currency: Currency code to convert to.

        Returns:
            Decimal: Converted amount rounded to the target's decimals.

        Raises:
            ConversionUnavailable: If no rate is available.
        """
        value = to_decimal(amount)
        target = target_currency.strip().upper()
        if target == self.canonical_currency:
            return value

        currency = self._currency_config(target)
        try:
            quote = self.rate_cache.get_rate(self.canonical_currency, target)
        except RateUnavailable as e:
            raise ConversionUnavailable(target, e.message) from e

        return quantize_amount(value * quote.rate, currency.decimals)

    def round_for_display(self, amount: Decimal, currency: CurrencyConfig) -> Decimal:
        """
        Apply the currency's rounding strategy and market adjustment.

        The market adjustment scales the rounded price, which is then
        rounded again so the result still follows the strategy.
        """
        rounded = self._round(amount, currency)
        adjustment = currency.market_markup_adjustment_pct
        if adjustment:
            adjusted = quantize_amount(rounded * (1 + adjustment / HUNDRED), currency.decimals)
            rounded = self._round(adjusted, currency)
        return rounded

    @staticmethod
    def _round(amount: Decimal, currency: CurrencyConfig) -> Decimal:
        rounded = apply_rounding_strategy(
            amount, currency.rounding_strategy, currency.custom_rounding_rules
        )
        return quantize_amount(rounded, currency.decimals)

    def convert_for_display(self, amount: Any, target_currency: str) -> DisplayPrice:
        """
        Convert and format an amount for display.

        Falls back to the canonical amount, flagged and with a notice, when
        the target rate is unavailable.
        """
        value = to_decimal(amount)
        target = target_currency.strip().upper()

        if target == self.canonical_currency:
            currency = self._currency_config(target)
            shown = quantize_amount(value, currency.decimals)
            return DisplayPrice(shown, target, format_price(shown, currency), rate=Decimal("1"))

        currency = self._currency_config(target)
        try:
            quote = self.rate_cache.get_rate(self.canonical_currency, target)
        except RateUnavailable as e:
            fallback = self._currency_config(self.canonical_currency)
            shown = quantize_amount(value, fallback.decimals)
            logger.warning(f"Display conversion to {target} unavailable, showing {self.canonical_currency}")
            return DisplayPrice(
                amount=shown,
                currency=self.canonical_currency,
                formatted=format_price(shown, fallback),
                rate_unavailable=True,
                notice=(
                    f"Prices in {target} are temporarily unavailable; "
                    f"showing {self.canonical_currency}. ({e.message})"
                ),
            )

        converted = quantize_amount(value * quote.rate, currency.decimals)
        rounded = self.round_for_display(converted, currency)
        return DisplayPrice(
            amount=rounded,
            currency=target,
            formatted=format_price(rounded, currency),
            rate=quote.rate,
            rate_as_of=quote.as_of,
            is_stale=quote.is_stale,
        )

