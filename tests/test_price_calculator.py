"""
Tests for the price calculator module.
"""

from decimal import Decimal

import pytest

from storefront_pricing.exceptions import InvalidInput
from storefront_pricing.models import PricedEntity
from storefront_pricing.pricing.price_calculator import (
    PriceCalculator,
    compute_final_price,
    quantize_amount,
)
from storefront_pricing.utils.config_loader import AppConfig


class TestDerive:
    """Tests for PriceCalculator.derive."""

    @pytest.fixture
    def calculator(self) -> PriceCalculator:
        return PriceCalculator()

    def test_base_and_dynamic_markup(self, calculator: PriceCalculator) -> None:
        """100 with 10% base and 5% dynamic markup is 115.00."""
        assert calculator.derive(100, 10, 5) == Decimal("115.00")

    def test_deterministic(self, calculator: PriceCalculator) -> None:
        results = {calculator.derive("19.99", "12.5", "3") for _ in range(5)}
        assert len(results) == 1

    def test_result_quantized_to_two_places(self, calculator: PriceCalculator) -> None:
        result = calculator.derive("19.99", "12.5", "3")
        assert result == Decimal("23.09")
        assert result.as_tuple().exponent == -2

    def test_zero_markups(self, calculator: PriceCalculator) -> None:
        assert calculator.derive("42", 0, 0) == Decimal("42.00")

    def test_float_inputs_do_not_leak_binary_error(self, calculator: PriceCalculator) -> None:
        assert calculator.derive(0.1, 10, 0) == Decimal("0.11")

    def test_bankers_rounding(self) -> None:
        assert quantize_amount(Decimal("2.345")) == Decimal("2.34")
        assert quantize_amount(Decimal("2.355")) == Decimal("2.36")

    def test_zero_decimal_places(self) -> None:
        assert quantize_amount(Decimal("1234.5"), 0) == Decimal("1234")

    @pytest.mark.parametrize("merchant", [0, -5, "NaN", "Infinity", None])
    def test_rejects_bad_merchant_price(self, calculator: PriceCalculator, merchant) -> None:
        with pytest.raises(InvalidInput):
            calculator.derive(merchant, 10, 0)

    def test_rejects_negative_markup(self, calculator: PriceCalculator) -> None:
        with pytest.raises(InvalidInput):
            calculator.derive(100, -1, 0)
        with pytest.raises(InvalidInput):
            calculator.derive(100, 10, -0.5)

    def test_rejects_base_markup_above_cap(self) -> None:
        calculator = PriceCalculator(base_markup_cap=50)
        with pytest.raises(InvalidInput) as exc_info:
            calculator.derive(100, 51, 0)
        assert exc_info.value.details["field"] == "base_markup_pct"

    def test_rejects_dynamic_markup_above_fifty(self, calculator: PriceCalculator) -> None:
        """Out-of-range dynamic markup is rejected, not clamped."""
        with pytest.raises(InvalidInput):
            calculator.derive(100, 10, 50.01)

    def test_dynamic_markup_at_cap_allowed(self, calculator: PriceCalculator) -> None:
        assert calculator.derive(100, 10, 50) == Decimal("160.00")

    def test_rejects_non_numeric(self, calculator: PriceCalculator) -> None:
        with pytest.raises(InvalidInput):
            calculator.derive("abc", 10, 0)

    def test_error_carries_entity_id(self, calculator: PriceCalculator) -> None:
        with pytest.raises(InvalidInput) as exc_info:
            calculator.derive(0, 10, 0, entity_id="sku-1")
        assert exc_info.value.entity_id == "sku-1"
        assert exc_info.value.status_code == 422

    def test_from_config(self) -> None:
        config = AppConfig()
        config.pricing.decimal_places = 3
        calculator = PriceCalculator.from_config(config)
        assert calculator.derive("10", "10", "0.05") == Decimal("11.005")

    def test_convenience_function(self) -> None:
        assert compute_final_price(100, 10, 5) == Decimal("115.00")


class TestEntityHelpers:
    """Tests for entity-level helpers and the write guard."""

    @pytest.fixture
    def calculator(self) -> PriceCalculator:
        return PriceCalculator()

    @pytest.fixture
    def entity(self) -> PricedEntity:
        return PricedEntity(
            id="e1",
            merchant_price=Decimal("100"),
            base_markup_pct=Decimal("10"),
            dynamic_markup_pct=Decimal("5"),
            final_price=Decimal("115.00"),
        )

    def test_derive_entity(self, calculator: PriceCalculator, entity: PricedEntity) -> None:
        assert calculator.derive_entity(entity) == Decimal("115.00")

    def test_check_invariant_holds(self, calculator: PriceCalculator, entity: PricedEntity) -> None:
        assert calculator.check_invariant(entity) is True

    def test_check_invariant_within_epsilon(
        self, calculator: PriceCalculator, entity: PricedEntity
    ) -> None:
        entity.final_price = Decimal("115.01")
        assert calculator.check_invariant(entity, epsilon=0.01) is True

    def test_check_invariant_violated(
        self, calculator: PriceCalculator, entity: PricedEntity
    ) -> None:
        entity.final_price = Decimal("11500.00")
        assert calculator.check_invariant(entity) is False

    def test_check_invariant_missing_final(
        self, calculator: PriceCalculator, entity: PricedEntity
    ) -> None:
        entity.final_price = None
        assert calculator.check_invariant(entity) is False

    def test_guard_allows_normal_change(self, calculator: PriceCalculator) -> None:
        calculator.guard_write(Decimal("100"), Decimal("130"))

    def test_guard_allows_first_write(self, calculator: PriceCalculator) -> None:
        calculator.guard_write(None, Decimal("5000"))

    @pytest.mark.parametrize("new", ["0", "-1"])
    def test_guard_rejects_non_positive(self, calculator: PriceCalculator, new: str) -> None:
        with pytest.raises(InvalidInput):
            calculator.guard_write(Decimal("100"), Decimal(new))

    def test_guard_rejects_order_of_magnitude_jump(self, calculator: PriceCalculator) -> None:
        with pytest.raises(InvalidInput):
            calculator.guard_write(Decimal("100"), Decimal("1000.01"), 10, entity_id="x")
        with pytest.raises(InvalidInput):
            calculator.guard_write(Decimal("100"), Decimal("9.99"), 10)
