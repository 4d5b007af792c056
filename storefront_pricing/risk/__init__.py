"""
Risk module.

Handles price integrity scans and scoped repairs.
"""

from storefront_pricing.risk.price_auditor import (
    AuditFinding,
    AuditReport,
    PriceIntegrityAuditor,
    RepairResult,
)
from storefront_pricing.risk.status_codes import FindingKind, MagnitudeClass

__all__ = [
    "PriceIntegrityAuditor",
    "AuditFinding",
    "AuditReport",
    "RepairResult",
    "FindingKind",
    "MagnitudeClass",
]
