"""
FastAPI routes for the pricing engine admin surface.

Handles:
- Exchange-rate inspection and manual refresh
- Display price lookups
- Markup recompute, integrity scans and scoped repairs

Authentication and role checks happen in front of this router.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Query, Request

from storefront_pricing.exceptions import NotFound
from storefront_pricing.services.pricing_service import PricingService
from storefront_pricing.webapp.schemas import (
    AuditResponse,
    BatchResponse,
    RateResponse,
    RefreshRequest,
    RepairRequest,
    RepairResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def get_service(request: Request) -> PricingService:
    return request.app.state.pricing_service


@router.get("/fx/latest")
async def latest_rates(request: Request, base: Optional[str] = Query(None)) -> Dict[str, Any]:
    """Latest snapshot for a base currency (canonical currency by default)."""
    service = get_service(request)
    base_currency = (base or service.converter.canonical_currency).upper()
    snapshot = service.rate_cache.get_snapshot(base_currency)
    if snapshot is None:
        raise NotFound("rate snapshot", base_currency)
    return {**snapshot.to_dict(), "is_stale": service.rate_cache.is_stale(base_currency)}


@router.get("/fx/rates/{target}", response_model=RateResponse)
async def get_rate(
    request: Request,
    target: str,
    base: Optional[str] = Query(None),
) -> RateResponse:
    """Resolve a single rate with manual-override precedence."""
    service = get_service(request)
    base_currency = (base or service.converter.canonical_currency).upper()
    quote = service.rate_cache.get_rate(base_currency, target)
    return RateResponse(
        base=base_currency,
        target=target.upper(),
        rate=str(quote.rate),
        as_of=quote.as_of.isoformat(),
        source=quote.source,
        is_stale=quote.is_stale,
    )


@router.get("/fx/stats")
async def fx_stats(request: Request) -> Dict[str, Any]:
    return get_service(request).get_stats()


@router.post("/admin/fx/refresh")
def refresh_rates(
    request: Request,
    payload: Optional[RefreshRequest] = None,
) -> Dict[str, Any]:
    """Refresh rates now. Provider failures are reported, not raised."""
    results = get_service(request).refresh_rates(payload.base if payload else None)
    return {"results": [r.to_dict() for r in results]}


@router.get("/prices/{item_id}")
async def display_price(
    request: Request,
    item_id: str,
    currency: str = Query(..., min_length=3, max_length=3),
    variant_id: Optional[str] = Query(None),
) -> Dict[str, Any]:
    """Final price of an item or variant in a display currency."""
    return get_service(request).display_price(item_id, currency, variant_id)


@router.post("/admin/pricing/recompute", response_model=BatchResponse)
def recompute(request: Request) -> BatchResponse:
    """Run a markup recompute batch synchronously."""
    result = get_service(request).recompute_all()
    return BatchResponse(**result.to_dict())


@router.post("/admin/audit/scan", response_model=AuditResponse)
def audit_scan(request: Request) -> AuditResponse:
    report = get_service(request).scan()
    return AuditResponse(**report.to_dict())


@router.post("/admin/audit/repair", response_model=RepairResponse)
def audit_repair(request: Request, payload: RepairRequest) -> RepairResponse:
    """Apply a scoped repair; the id list and factor are mandatory."""
    logger.info(
        f"Repair requested via API for {len(payload.entity_ids)} ids "
        f"(factor={payload.factor}, dry_run={payload.dry_run})"
    )
    result = get_service(request).repair(payload.entity_ids, payload.factor, payload.dry_run)
    return RepairResponse(**result.to_dict())
