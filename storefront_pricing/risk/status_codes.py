"""
Status codes for price integrity audits.

Defines magnitude classes for stored final prices and the kinds of
findings the auditor reports.
"""

from enum import Enum


class MagnitudeClass(str, Enum):
    """
    Magnitude bucket of a stored final price.

    Values:
        BELOW_LOW: Under the low threshold (default 1).
        NORMAL: Between the low and high thresholds.
        HIGH: Between the high and extreme thresholds (default 1000..10000).
        EXTREME: Over the extreme threshold; treated as an anomaly.
    """

    BELOW_LOW = "BELOW_LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    EXTREME = "EXTREME"


class FindingKind(str, Enum):
    """
    Kind of audit finding.

    Values:
        INVARIANT_MISMATCH: Stored final price differs from the derived one.
        MAGNITUDE_ANOMALY: Price is out of range for its class or category.
        INVALID_INPUTS: Stored merchant price or markups are invalid.
        MISSING_PRICE: Entity has no stored final price.
    """

    INVARIANT_MISMATCH = "INVARIANT_MISMATCH"
    MAGNITUDE_ANOMALY = "MAGNITUDE_ANOMALY"
    INVALID_INPUTS = "INVALID_INPUTS"
    MISSING_PRICE = "MISSING_PRICE"


FINDING_DESCRIPTIONS = {
    FindingKind.INVARIANT_MISMATCH: "Stored final price does not match merchant price and markups.",
    FindingKind.MAGNITUDE_ANOMALY: "Price is out of the expected magnitude for its category.",
    FindingKind.INVALID_INPUTS: "Stored pricing inputs are invalid.",
    FindingKind.MISSING_PRICE: "No final price is stored.",
}


def get_finding_description(kind: FindingKind) -> str:
    """
    Get a human-readable description for a finding kind.

    Args:
        kind: The finding kind.

    Returns:
        str: Finding description.
    """
    return FINDING_DESCRIPTIONS.get(kind, "Unknown finding.")
