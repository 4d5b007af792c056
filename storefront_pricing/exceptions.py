"""
Exceptions for the pricing and currency normalization engine.

Every error carries a machine-readable code and an HTTP status so the admin
API can render it without a translation table.
"""

from typing import Any, Dict, Optional


class PricingEngineError(Exception):
    """Base exception for pricing engine errors."""

    status_code: int = 500
    error_code: str = "PRICING_ENGINE_ERROR"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if status_code:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class InvalidInput(PricingEngineError):
    """Raised when pricing inputs are malformed or out of range."""

    status_code = 422
    error_code = "INVALID_INPUT"

    def __init__(self, message: str, entity_id: Optional[str] = None, **details: Any):
        if entity_id is not None:
            details["entity_id"] = entity_id
        super().__init__(message, details)
        self.entity_id = entity_id


class RateUnavailable(PricingEngineError):
    """Raised when no usable exchange rate exists for a currency pair."""

    status_code = 503
    error_code = "RATE_UNAVAILABLE"

    def __init__(self, base_currency: str, target_currency: str):
        super().__init__(
            f"No exchange rate available for {base_currency}->{target_currency}",
            details={"base": base_currency, "target": target_currency},
        )
        self.base_currency = base_currency
        self.target_currency = target_currency


class ConversionUnavailable(PricingEngineError):
    """Raised when an amount cannot be converted to the requested currency."""

    status_code = 503
    error_code = "CONVERSION_UNAVAILABLE"

    def __init__(self, target_currency: str, reason: str = ""):
        super().__init__(
            f"Cannot convert to {target_currency}" + (f": {reason}" if reason else ""),
            details={"target": target_currency},
        )
        self.target_currency = target_currency


class ProviderFetchFailed(PricingEngineError):
    """Raised when the rate provider cannot deliver rates."""

    status_code = 502
    error_code = "PROVIDER_FETCH_FAILED"

    def __init__(self, message: str, provider: str = "unknown"):
        super().__init__(message, details={"provider": provider})
        self.provider = provider


class EntityRecomputeFailed(PricingEngineError):
    """Raised when a single entity's markup cannot be recomputed."""

    error_code = "ENTITY_RECOMPUTE_FAILED"

    def __init__(self, entity_id: str, reason: str):
        super().__init__(
            f"Recompute failed for {entity_id}: {reason}",
            details={"entity_id": entity_id, "reason": reason},
        )
        self.entity_id = entity_id
        self.reason = reason


class RepairRequiresExplicitScope(PricingEngineError):
    """Raised when a repair is requested without an explicit id list and factor."""

    status_code = 400
    error_code = "REPAIR_REQUIRES_EXPLICIT_SCOPE"


class NotFound(PricingEngineError):
    """Raised when a catalog item or currency does not exist."""

    status_code = 404
    error_code = "NOT_FOUND"

    def __init__(self, kind: str, key: str):
        super().__init__(f"{kind} not found: {key}", details={"kind": kind, "key": key})
        self.kind = kind
        self.key = key


class Conflict(PricingEngineError):
    """Raised when a catalog write races with another writer."""

    status_code = 409
    error_code = "CONFLICT"

    def __init__(self, item_id: str, expected_version: int, actual_version: int):
        super().__init__(
            f"Version conflict on {item_id}: expected {expected_version}, found {actual_version}",
            details={
                "item_id": item_id,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )
        self.item_id = item_id


class ConfigurationError(PricingEngineError):
    """Raised when configuration is missing or invalid."""

    error_code = "CONFIGURATION_ERROR"
