"""
Domain models for the pricing engine.

Priced catalog entities, currency configuration and exchange-rate snapshots.
All money values are Decimals in the canonical currency unless noted.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, NamedTuple

DEFAULT_BASE_MARKUP_PCT = Decimal("10")
DYNAMIC_MARKUP_CAP_PCT = Decimal("50")
MARKET_ADJUSTMENT_MIN_PCT = Decimal("-20")
MARKET_ADJUSTMENT_MAX_PCT = Decimal("30")


def to_decimal(value: Any) -> Decimal | None:
    """
    Convert a number-like value to Decimal.

    Floats go through str() so 0.1 stays 0.1. Returns None for None/empty.

    Raises:
        ValueError: If the value is not numeric.
    """
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Not a numeric value: {value!r}") from e


class RoundingStrategy(str, Enum):
    """Psychological rounding applied to display prices."""

    NONE = "NONE"
    NEAREST_1 = "NEAREST_1"
    NEAREST_5 = "NEAREST_5"
    NEAREST_10 = "NEAREST_10"
    ENDING_9 = "ENDING_9"
    CUSTOM = "CUSTOM"


@dataclass(frozen=True)
class RoundingRule:
    """
    One price band of CUSTOM rounding.

    Amounts below `below` (no limit when None) are floored to a multiple of
    `floor_step` or rounded to the nearest multiple of `nearest_step`, then
    shifted by `offset`. A band with neither step is passed over.

    Example:
        RoundingRule(below=10, floor_step=1, offset=Decimal("0.99"))
        turns 7.30 into 7.99.
    """

    below: Decimal | None = None
    floor_step: Decimal | None = None
    nearest_step: Decimal | None = None
    offset: Decimal = Decimal("0")

    def __post_init__(self):
        for name in ("below", "floor_step", "nearest_step", "offset"):
            object.__setattr__(self, name, to_decimal(getattr(self, name)))
        if self.offset is None:
            object.__setattr__(self, "offset", Decimal("0"))
        for name in ("floor_step", "nearest_step"):
            step = getattr(self, name)
            if step is not None and step <= 0:
                raise ValueError(f"{name} must be positive, got {step}")

    @classmethod
    def from_value(cls, value: Any) -> "RoundingRule":
        return value if isinstance(value, cls) else cls(**value)


def parse_rounding_rules(rules: Any) -> tuple[RoundingRule, ...]:
    """
    Normalize CUSTOM rounding rules, ordered by band limit (open band last).

    Accepts a list of rules or a mapping of band name -> rule.
    """
    if not rules:
        return ()
    if isinstance(rules, Mapping):
        rules = rules.values()
    parsed = [RoundingRule.from_value(rule) for rule in rules]
    return tuple(sorted(parsed, key=lambda r: (r.below is None, r.below or Decimal("0"))))


@dataclass
class PriceFields:
    """The price-bearing fields of an entity, as written to the catalog."""

    merchant_price: Decimal
    base_markup_pct: Decimal
    dynamic_markup_pct: Decimal
    final_price: Decimal | None

    def to_dict(self) -> dict[str, str | None]:
        return {
            "merchant_price": str(self.merchant_price),
            "base_markup_pct": str(self.base_markup_pct),
            "dynamic_markup_pct": str(self.dynamic_markup_pct),
            "final_price": None if self.final_price is None else str(self.final_price),
        }


@dataclass
class PricedEntity:
    """
    A catalog item or one of its variants.

    Attributes:
        id: Entity identifier.
        merchant_price: Merchant-entered price in the canonical currency.
        base_markup_pct: Operator-configured markup percentage.
        dynamic_markup_pct: Engine-computed markup percentage, 0-50.
        final_price: Derived price; only the engine writes it.
        category: Catalog category, used by the integrity auditor.
        is_active: Inactive entities are not recomputed.
        parent_id: Set on variants; demand signals are read under this id.
    """

    id: str
    merchant_price: Decimal
    base_markup_pct: Decimal = DEFAULT_BASE_MARKUP_PCT
    dynamic_markup_pct: Decimal = Decimal("0")
    final_price: Decimal | None = None
    category: str | None = None
    is_active: bool = True
    parent_id: str | None = None

    @property
    def effective_markup_pct(self) -> Decimal:
        """Sum of base and dynamic markup."""
        return self.base_markup_pct + self.dynamic_markup_pct

    @property
    def signal_key(self) -> str:
        """Key under which the demand signal for this entity is tracked."""
        return self.parent_id or self.id

    def price_fields(self) -> PriceFields:
        return PriceFields(
            merchant_price=self.merchant_price,
            base_markup_pct=self.base_markup_pct,
            dynamic_markup_pct=self.dynamic_markup_pct,
            final_price=self.final_price,
        )

    def apply_price_fields(self, fields: PriceFields) -> None:
        self.merchant_price = fields.merchant_price
        self.base_markup_pct = fields.base_markup_pct
        self.dynamic_markup_pct = fields.dynamic_markup_pct
        self.final_price = fields.final_price

    def to_dict(self) -> dict[str, Any]:
        data = {"id": self.id, **self.price_fields().to_dict()}
        data.update(category=self.category, is_active=self.is_active)
        if self.parent_id:
            data["parent_id"] = self.parent_id
        return data

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        parent_id: str | None = None,
        default_base_markup_pct: Decimal | float = DEFAULT_BASE_MARKUP_PCT,
    ) -> "PricedEntity":
        """
        Create an entity from a plain dictionary (JSON catalog row).

        Rows without a base markup get default_base_markup_pct.
        """
        base_markup = to_decimal(data.get("base_markup_pct"))
        return cls(
            id=str(data["id"]),
            merchant_price=to_decimal(data.get("merchant_price")),
            base_markup_pct=(
                to_decimal(default_base_markup_pct) if base_markup is None else base_markup
            ),
            dynamic_markup_pct=to_decimal(data.get("dynamic_markup_pct")) or Decimal("0"),
            final_price=to_decimal(data.get("final_price")),
            category=data.get("category"),
            is_active=bool(data.get("is_active", True)),
            parent_id=parent_id or data.get("parent_id"),
        )


@dataclass
class CatalogItem(PricedEntity):
    """
    Root catalog entity owning zero or more variants.

    Variants are independent priced entities; no price is inherited
    between root and variant.
    """

    variants: list[PricedEntity] = field(default_factory=list)
    version: int = 0

    def iter_entities(self):
        """Yield the root followed by each variant."""
        yield self
        yield from self.variants

    def find_variant(self, variant_id: str) -> PricedEntity | None:
        for variant in self.variants:
            if variant.id == variant_id:
                return variant
        return None

    def clone(self) -> "CatalogItem":
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["version"] = self.version
        data["variants"] = [v.to_dict() for v in self.variants]
        return data

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        parent_id: str | None = None,
        default_base_markup_pct: Decimal | float = DEFAULT_BASE_MARKUP_PCT,
    ) -> "CatalogItem":
        root = PricedEntity.from_dict(data, default_base_markup_pct=default_base_markup_pct)
        return cls(
            id=root.id,
            merchant_price=root.merchant_price,
            base_markup_pct=root.base_markup_pct,
            dynamic_markup_pct=root.dynamic_markup_pct,
            final_price=root.final_price,
            category=root.category,
            is_active=root.is_active,
            variants=[
                PricedEntity.from_dict(
                    {"category": root.category, **v},
                    parent_id=root.id,
                    default_base_markup_pct=default_base_markup_pct,
                )
                for v in data.get("variants", [])
            ],
            version=int(data.get("version", 0)),
        )


@dataclass
class CurrencyConfig:
    """
    Currency configuration owned by the operator.

    `manual_rate` is only honoured when `allow_manual_rate` is true.
    `custom_rounding_rules` apply with the CUSTOM strategy;
    `market_markup_adjustment_pct` (-20 to 30) scales display prices after
    rounding.
    """

    code: str
    is_active: bool = False
    manual_rate: Decimal | None = None
    allow_manual_rate: bool = False
    decimals: int = 2
    symbol: str | None = None
    symbol_position: str = "before"
    rounding_strategy: RoundingStrategy = RoundingStrategy.NONE
    custom_rounding_rules: tuple[RoundingRule, ...] = ()
    market_markup_adjustment_pct: Decimal = Decimal("0")
    manual_rate_updated_at: datetime | None = None

    def __post_init__(self):
        self.code = self.code.strip().upper()
        self.manual_rate = to_decimal(self.manual_rate)
        if not 0 <= self.decimals <= 4:
            raise ValueError(f"decimals must be between 0 and 4, got {self.decimals}")
        if not isinstance(self.rounding_strategy, RoundingStrategy):
            self.rounding_strategy = RoundingStrategy(self.rounding_strategy)
        self.custom_rounding_rules = parse_rounding_rules(self.custom_rounding_rules)
        adjustment = to_decimal(self.market_markup_adjustment_pct) or Decimal("0")
        if not MARKET_ADJUSTMENT_MIN_PCT <= adjustment <= MARKET_ADJUSTMENT_MAX_PCT:
            raise ValueError(
                f"market_markup_adjustment_pct must be between {MARKET_ADJUSTMENT_MIN_PCT} "
                f"and {MARKET_ADJUSTMENT_MAX_PCT}, got {adjustment}"
            )
        self.market_markup_adjustment_pct = adjustment

    @property
    def effective_manual_rate(self) -> Decimal | None:
        """The manual rate if it is allowed and usable, else None."""
        if self.allow_manual_rate and self.manual_rate is not None and self.manual_rate > 0:
            return self.manual_rate
        return None

    @property
    def display_symbol(self) -> str:
        return self.symbol or self.code


@dataclass(frozen=True)
class ExchangeRateSnapshot:
    """
    Immutable exchange-rate table for one base currency.

    Attributes:
        base_currency: Currency the rates are quoted against.
        as_of_date: Date of the rates as reported by the provider.
        rates: Read-only mapping of currency code -> factor.
        fetched_at: When the snapshot was fetched.
        provider: Source identifier.
        missing_currencies: Requested codes the provider did not return.
    """

    base_currency: str
    as_of_date: str
    rates: Mapping[str, Decimal]
    fetched_at: datetime
    provider: str
    missing_currencies: tuple[str, ...] = ()

    def __post_init__(self):
        normalized = {}
        for code, rate in dict(self.rates).items():
            normalized[code.strip().upper()] = to_decimal(rate)
        object.__setattr__(self, "base_currency", self.base_currency.upper())
        object.__setattr__(self, "rates", MappingProxyType(normalized))
        object.__setattr__(self, "missing_currencies", tuple(self.missing_currencies))

    @property
    def fetch_status(self) -> str:
        return "partial" if self.missing_currencies else "success"

    def get_rate(self, currency_code: str) -> Decimal | None:
        return self.rates.get(currency_code.upper())

    def to_dict(self) -> dict[str, Any]:
        return {
            "base": self.base_currency,
            "date": self.as_of_date,
            "rates": {code: str(rate) for code, rate in self.rates.items()},
            "fetched_at": self.fetched_at.isoformat(),
            "provider": self.provider,
            "fetch_status": self.fetch_status,
            "missing_currencies": list(self.missing_currencies),
        }


class RateQuote(NamedTuple):
    """A resolved exchange rate and the time it is valid as of."""

    rate: Decimal
    as_of: datetime
    source: str
    is_stale: bool = False
