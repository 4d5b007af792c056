"""
Pydantic models for admin API inputs and outputs.

Provides request validation with sensible defaults and constraints.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RepairRequest(BaseModel):
    """
    Scoped repair request.

    Both the id list and the factor are required; there is no "repair
    everything flagged" shortcut.
    """

    model_config = ConfigDict(extra="ignore")

    entity_ids: List[str] = Field(..., min_length=1, description="Root or variant ids to repair")
    factor: float = Field(..., gt=0, description="Multiplier for merchant prices, e.g. 0.01")
    dry_run: bool = Field(False, description="Compute before/after records without writing")

    @field_validator("entity_ids")
    @classmethod
    def strip_ids(cls, v: List[str]) -> List[str]:
        ids = [i.strip() for i in v if i and i.strip()]
        if not ids:
            raise ValueError("entity_ids must contain at least one non-empty id")
        return ids


class RefreshRequest(BaseModel):
    """Exchange-rate refresh request; all configured bases when base is omitted."""

    model_config = ConfigDict(extra="ignore")

    base: Optional[str] = Field(None, min_length=3, max_length=3, description="Base currency")

    @field_validator("base")
    @classmethod
    def upper_base(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v


class RateResponse(BaseModel):
    """Resolved exchange rate."""

    base: str
    target: str
    rate: str
    as_of: str
    source: str
    is_stale: bool


class BatchResponse(BaseModel):
    """Markup recompute batch statistics."""

    total: int
    updated: int
    unchanged: int
    skipped: Dict[str, str]
    stopped: bool
    duration_ms: float


class AuditResponse(BaseModel):
    """Audit scan report."""

    scanned_at: str
    total: int
    magnitude_counts: Dict[str, int]
    flagged_ids: List[str]
    findings: List[Dict[str, Any]]


class RepairResponse(BaseModel):
    """Repair outcome with before/after records."""

    factor: str
    dry_run: bool
    records: List[Dict[str, Any]]
    failed: Dict[str, str]
