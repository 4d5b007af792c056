"""
Price calculator module.

Derives a final price from a merchant price and an effective markup.

Formula: P_final = P_merchant × (1 + (base_markup + dynamic_markup) / 100)
Where:
- P_merchant = merchant-entered price in the canonical currency
- base_markup = operator-configured markup %, 0..cap
- dynamic_markup = engine-computed markup %, 0..50

Inputs are validated, never clamped: a bad input upstream should surface
here instead of turning into a wrong stored price.
"""

import logging
from decimal import ROUND_HALF_EVEN, Decimal
from typing import Any

from storefront_pricing.exceptions import InvalidInput
from storefront_pricing.models import DYNAMIC_MARKUP_CAP_PCT, PricedEntity, to_decimal
from storefront_pricing.utils.config_loader import AppConfig

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


def quantize_amount(amount: Decimal, decimal_places: int = 2) -> Decimal:
    """
    Round an amount to a number of decimal places using banker's rounding.

    Args:
        amount: Amount to round.
        decimal_places: Minor-unit precision.

    Returns:
        Decimal: Rounded amount.
    """
    quantize_str = "0." + "0" * decimal_places if decimal_places > 0 else "1"
    return amount.quantize(Decimal(quantize_str), rounding=ROUND_HALF_EVEN)


class PriceCalculator:
    """
    Calculator for final prices.

    Attributes:
        decimal_places: Canonical currency minor-unit precision.
        base_markup_cap: Upper bound for the base markup percentage.
    """

    def __init__(
        self,
        decimal_places: int = 2,
        base_markup_cap: Decimal | float = 100,
    ) -> None:
        self.decimal_places = decimal_places
        self.base_markup_cap = to_decimal(base_markup_cap)

    @classmethod
    def from_config(cls, config: AppConfig) -> "PriceCalculator":
        return cls(
            decimal_places=config.pricing.decimal_places,
            base_markup_cap=config.pricing.base_markup_cap_pct,
        )

    def validate_inputs(
        self,
        merchant_price: Any,
        base_markup_pct: Any,
        dynamic_markup_pct: Any,
        entity_id: str | None = None,
    ) -> tuple[Decimal, Decimal, Decimal]:
        """
        Validate and normalize pricing inputs.

        Returns:
            Tuple of (merchant_price, base_markup_pct, dynamic_markup_pct) as Decimals.

        Raises:
            InvalidInput: If any input is missing, non-finite or out of range.
        """
        try:
            merchant = to_decimal(merchant_price)
            base = to_decimal(base_markup_pct)
            dynamic = to_decimal(dynamic_markup_pct)
        except ValueError as e:
            raise InvalidInput(str(e), entity_id=entity_id) from e

        if merchant is None or not merchant.is_finite() or merchant <= 0:
            raise InvalidInput(
                f"merchant_price must be > 0, got {merchant_price}",
                entity_id=entity_id,
                field="merchant_price",
            )
        if base is None or not base.is_finite() or base < 0 or base > self.base_markup_cap:
            raise InvalidInput(
                f"base_markup_pct must be within [0, {self.base_markup_cap}], got {base_markup_pct}",
                entity_id=entity_id,
                field="base_markup_pct",
            )
        if (
            dynamic is None
            or not dynamic.is_finite()
            or dynamic < 0
            or dynamic > DYNAMIC_MARKUP_CAP_PCT
        ):
            raise InvalidInput(
                f"dynamic_markup_pct must be within [0, {DYNAMIC_MARKUP_CAP_PCT}], "
                f"got {dynamic_markup_pct}",
                entity_id=entity_id,
                field="dynamic_markup_pct",
            )
        return merchant, base, dynamic

    def derive(
        self,
        merchant_price: Any,
        base_markup_pct: Any,
        dynamic_markup_pct: Any,
        entity_id: str | None = None,
    ) -> Decimal:
        """
        Derive the final price.

        Args:
            merchant_price: Merchant price in the canonical currency.
            base_markup_pct: Base markup percentage.
            dynamic_markup_pct: Dynamic markup percentage.
            entity_id: Optional id, included in errors and logs.

        Returns:
            Decimal: Final price rounded to the canonical minor unit.

        Raises:
            InvalidInput: If inputs are out of range.
        """
        try:
            merchant, base, dynamic = self.validate_inputs(
                merchant_price, base_markup_pct, dynamic_markup_pct, entity_id
            )
        except InvalidInput as e:
            logger.warning(f"Rejected pricing inputs for {entity_id or '<unknown>'}: {e.message}")
            raise

        final = merchant * (1 + (base + dynamic) / HUNDRED)
        return quantize_amount(final, self.decimal_places)

    def derive_entity(self, entity: PricedEntity) -> Decimal:
        """Derive the final price for an entity from its own inputs."""
        return self.derive(
            entity.merchant_price,
            entity.base_markup_pct,
            entity.dynamic_markup_pct,
            entity_id=entity.id,
        )

    def check_invariant(self, entity: PricedEntity, epsilon: Decimal | float = 0.01) -> bool:
        """
        Check that an entity's stored final price matches its inputs.

        Raises:
            InvalidInput: If the stored inputs themselves are invalid.
        """
        if entity.final_price is None:
            return False
        expected = self.derive_entity(entity)
        return abs(entity.final_price - expected) <= to_decimal(epsilon)

    def guard_write(
        self,
        previous: Decimal | None,
        new: Decimal,
        max_jump_ratio: Decimal | float = 10,
        entity_id: str | None = None,
    ) -> None:
        """
        Refuse to persist a price that is non-positive or jumps by an order of magnitude.

        Args:
            previous: Currently stored final price, if any.
            new: Price about to be written.
            max_jump_ratio: Largest allowed ratio between new and previous.
            entity_id: Optional id for the error.

        Raises:
            InvalidInput: If the write must be rejected.
        """
        if new is None or new <= 0:
            raise InvalidInput(
                f"Refusing to write non-positive price {new}", entity_id=entity_id
            )
        if previous is None or previous <= 0:
            return

        ratio = to_decimal(max_jump_ratio)
        if new > previous * ratio or new * ratio < previous:
            raise InvalidInput(
                f"Refusing to write price {new}: jump from {previous} exceeds {ratio}x",
                entity_id=entity_id,
                previous=str(previous),
                new=str(new),
            )


def compute_final_price(
    merchant_price: float,
    base_markup_pct: float,
    dynamic_markup_pct: float = 0,
    decimal_places: int = 2,
) -> Decimal:
    """
    Convenience function to derive a final price with default bounds.

    Args:
        merchant_price: Merchant price.
        base_markup_pct: Base markup percentage.
        dynamic_markup_pct: Dynamic markup percentage.
        decimal_places: Decimal places for rounding.

    Returns:
        Decimal: Final price.
    """
    return PriceCalculator(decimal_places=decimal_places).derive(
        merchant_price, base_markup_pct, dynamic_markup_pct
    )
