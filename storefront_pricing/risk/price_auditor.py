"""
Price integrity auditor.

Scans stored prices for magnitude anomalies and invariant violations and
applies explicitly scoped, logged repairs.

A scan never changes data. A repair only touches the ids it is given and
only by the factor it is given; suggested factors in findings are hints.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

from storefront_pricing.exceptions import (
    Conflict,
    ConfigurationError,
    InvalidInput,
    NotFound,
    RepairRequiresExplicitScope,
)
from storefront_pricing.models import CatalogItem, PricedEntity, to_decimal
from storefront_pricing.pricing.price_calculator import PriceCalculator, quantize_amount
from storefront_pricing.risk.status_codes import FindingKind, MagnitudeClass
from storefront_pricing.utils.config_loader import AuditConfig

logger = logging.getLogger(__name__)

# How close log10(stored / reference) must be to an integer to suggest a factor
FACTOR_TOLERANCE = 0.15


def suggest_factor(stored: Optional[Decimal], reference: Optional[Decimal]) -> Optional[Decimal]:
    """
    Suggest a power-of-ten correction when stored is off by a clean order of magnitude.

    Example:
        suggest_factor(Decimal("50000"), Decimal("575")) -> Decimal("0.01")
    """
    if stored is None or reference is None or stored <= 0 or reference <= 0:
        return None
    exponent = math.log10(float(stored / reference))
    nearest = round(exponent)
    if nearest == 0 or abs(exponent - nearest) > FACTOR_TOLERANCE:
        return None
    return Decimal(10) ** -nearest


@dataclass
class AuditFinding:
    """
    A single problem found by a scan.

    Attributes:
        entity_id: Entity the finding is about.
        root_id: Catalog item owning the entity.
        kind: Finding kind.
        message: Human-readable explanation.
        magnitude: Magnitude class of the stored final price.
        stored_price: Stored final price.
        expected_price: Price derived from the stored inputs, if valid.
        category: Entity category.
        suggested_factor: Power-of-ten correction hint, if any.
    """

    entity_id: str
    root_id: str
    kind: FindingKind
    message: str
    magnitude: Optional[MagnitudeClass] = None
    stored_price: Optional[Decimal] = None
    expected_price: Optional[Decimal] = None
    category: Optional[str] = None
    suggested_factor: Optional[Decimal] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "root_id": self.root_id,
            "kind": self.kind.value,
            "message": self.message,
            "magnitude": self.magnitude.value if self.magnitude else None,
            "stored_price": None if self.stored_price is None else str(self.stored_price),
            "expected_price": None if self.expected_price is None else str(self.expected_price),
            "category": self.category,
            "suggested_factor": (
                None if self.suggested_factor is None else str(self.suggested_factor)
            ),
        }


@dataclass
class AuditReport:
    """Result of a scan."""

    scanned_at: datetime
    total: int
    magnitude_counts: Dict[str, int]
    findings: List[AuditFinding] = field(default_factory=list)

    @property
    def flagged_ids(self) -> List[str]:
        return sorted({f.entity_id for f in self.findings})

    def findings_for(self, entity_id: str) -> List[AuditFinding]:
        return [f for f in self.findings if f.entity_id == entity_id]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scanned_at": self.scanned_at.isoformat(),
            "total": self.total,
            "magnitude_counts": dict(self.magnitude_counts),
            "flagged_ids": self.flagged_ids,
            "findings": [f.to_dict() for f in self.findings],
        }

    def to_dataframe(self) -> pd.DataFrame:
        columns = [
            "entity_id", "root_id", "kind", "message", "magnitude",
            "stored_price", "expected_price", "category", "suggested_factor",
        ]
        return pd.DataFrame([f.to_dict() for f in self.findings], columns=columns)


@dataclass
class RepairResult:
    """
    Result of a repair call.

    Attributes:
        factor: Factor applied to merchant prices.
        dry_run: True if nothing was written.
        records: Before/after record per changed entity.
        failed: Entity or item id -> reason for ids that were not repaired.
    """

    factor: Decimal
    dry_run: bool
    records: List[Dict[str, Any]] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def repaired_ids(self) -> List[str]:
        return [r["entity_id"] for r in self.records]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "factor": str(self.factor),
            "dry_run": self.dry_run,
            "records": list(self.records),
            "failed": dict(self.failed),
        }


def _flatten(items: Iterable[Any]) -> List[tuple[PricedEntity, str]]:
    """Expand catalog items into (entity, root id) pairs."""
    entities = []
    for item in items:
        if isinstance(item, CatalogItem):
            entities.extend((entity, item.id) for entity in item.iter_entities())
        else:
            entities.append((item, item.parent_id or item.id))
    return entities


class PriceIntegrityAuditor:
    """
    Auditor for stored catalog prices.

    Attributes:
        config: Audit thresholds.
        calculator: Price calculator used to derive expected prices.
        catalog_store: Catalog store, required for scan_catalog() and repair().
        report_sink: Optional destination for reports and repair records.
    """

    def __init__(
        self,
        config: Optional[AuditConfig] = None,
        calculator: Optional[PriceCalculator] = None,
        catalog_store: Any = None,
        report_sink: Any = None,
    ) -> None:
        self.config = config or AuditConfig()
        self.calculator = calculator or PriceCalculator()
        self.catalog_store = catalog_store
        self.report_sink = report_sink

    def classify_magnitude(self, price: Decimal) -> MagnitudeClass:
        """
        Classify a price into a magnitude bucket.

        Args:
            price: Stored final price.

        Returns:
            MagnitudeClass: Bucket for the price.
        """
        value = float(price)
        if value < self.config.low_threshold:
            return MagnitudeClass.BELOW_LOW
        if value <= self.config.high_threshold:
            return MagnitudeClass.NORMAL
        if value <= self.config.extreme_threshold:
            return MagnitudeClass.HIGH
        return MagnitudeClass.EXTREME

    def scan(self, items: Iterable[Any]) -> AuditReport:
        """
        Scan entities for price integrity problems.

        Args:
            items: Catalog items (variants included) or loose priced entities.

        Returns:
            AuditReport: Magnitude distribution and findings.
        """
        entities = _flatten(items)
        epsilon = to_decimal(self.config.epsilon)
        findings: List[AuditFinding] = []
        counts = {m.value: 0 for m in MagnitudeClass}
        rows = []
        meta = []

        for entity, root_id in entities:
            stored = entity.final_price
            if stored is None:
                findings.append(
                    AuditFinding(
                        entity.id, root_id, FindingKind.MISSING_PRICE,
                        "No final price stored", category=entity.category,
                    )
                )
                continue

            magnitude = self.classify_magnitude(stored)
            counts[magnitude.value] += 1

            expected = None
            try:
                expected = self.calculator.derive_entity(entity)
            except InvalidInput as e:
                findings.append(
                    AuditFinding(
                        entity.id, root_id, FindingKind.INVALID_INPUTS, e.message,
                        magnitude=magnitude, stored_price=stored, category=entity.category,
                    )
                )

            if expected is not None and abs(stored - expected) > epsilon:
                findings.append(
                    AuditFinding(
                        entity.id, root_id, FindingKind.INVARIANT_MISMATCH,
                        f"Stored final price {stored} != derived {expected}",
                        magnitude=magnitude,
                        stored_price=stored,
                        expected_price=expected,
                        category=entity.category,
                        suggested_factor=suggest_factor(stored, expected),
                    )
                )

            rows.append({"category": entity.category or "", "final_price": float(stored)})
            meta.append((entity, root_id, stored, expected, magnitude))

        findings.extend(self._magnitude_findings(pd.DataFrame(rows), meta))

        report = AuditReport(
            scanned_at=datetime.now(timezone.utc),
            total=len(entities),
            magnitude_counts=counts,
            findings=findings,
        )
        logger.info(
            f"Audit scanned {report.total} entities: {len(report.flagged_ids)} flagged, "
            f"magnitudes={counts}"
        )
        if self.report_sink is not None:
            self.report_sink.emit_audit(report)
        return report

    def _magnitude_findings(self, df: pd.DataFrame, meta: List[tuple]) -> List[AuditFinding]:
        if df.empty:
            return []

        stats = df.groupby("category")["final_price"].agg(["median", "count"])
        ratio = self.config.category_anomaly_ratio
        findings = []

        for row, (entity, root_id, stored, expected, magnitude) in zip(
            df.itertuples(index=False), meta
        ):
            reasons = []
            if magnitude == MagnitudeClass.EXTREME:
                reasons.append(f"above extreme threshold {self.config.extreme_threshold}")

            bounds = self.config.category_ranges.get(row.category)
            if bounds and not bounds[0] <= row.final_price <= bounds[1]:
                reasons.append(f"outside {row.category} range {bounds[0]}-{bounds[1]}")

            median = None
            if row.category and row.final_price > 0:
                median, count = stats.loc[row.category, "median"], stats.loc[row.category, "count"]
                if count >= self.config.min_category_size and median > 0:
                    off_by = max(row.final_price / median, median / row.final_price)
                    if off_by >= ratio:
                        reasons.append(f"{off_by:.1f}x away from {row.category} median {median:.2f}")
                else:
                    median = None

            if not reasons:
                continue

            reference = to_decimal(round(float(median), 2)) if median is not None else expected
            findings.append(
                AuditFinding(
                    entity.id, root_id, FindingKind.MAGNITUDE_ANOMALY,
                    "Price " + "; ".join(reasons),
                    magnitude=magnitude,
                    stored_price=stored,
                    expected_price=expected,
                    category=entity.category,
                    suggested_factor=suggest_factor(stored, reference),
                )
            )
        return findings

    def _require_store(self) -> Any:
        if self.catalog_store is None:
            raise ConfigurationError("Auditor has no catalog store configured")
        return self.catalog_store

    def scan_catalog(self) -> AuditReport:
        """Scan every item in the catalog store, active or not."""
        return self.scan(self._require_store().list_all())

    def repair(
        self,
        entity_ids: Optional[Iterable[str]],
        factor: Any,
        dry_run: bool = False,
    ) -> RepairResult:
        """
        Rescale merchant prices of explicitly listed entities.

        A root id rescales the root and all of its variants; a variant id
        rescales only that variant. Final prices are re-derived and every
        changed entity gets a before/after record. Rescaled merchant prices
        are rounded to minor units; the record keeps the exact product and
        sets precision_lost when rounding changed it.

        Args:
            entity_ids: Non-empty list of root or variant ids.
            factor: Positive multiplier for merchant prices, e.g. 0.01.
            dry_run: Compute records without writing.

        Returns:
            RepairResult: Records and per-id failures.

        Raises:
            RepairRequiresExplicitScope: If ids or factor are missing.
            InvalidInput: If factor is not positive.
        """
        if entity_ids is None or isinstance(entity_ids, str):
            raise RepairRequiresExplicitScope("Repair requires an explicit list of entity ids")
        ids = list(dict.fromkeys(str(i) for i in entity_ids))
        if not ids:
            raise RepairRequiresExplicitScope("Repair requires an explicit list of entity ids")
        if factor is None:
            raise RepairRequiresExplicitScope("Repair requires an explicit factor")
        try:
            scale = to_decimal(factor)
        except ValueError as e:
            raise InvalidInput(str(e), field="factor") from e
        if scale is None or not scale.is_finite() or scale <= 0:
            raise InvalidInput(f"Repair factor must be > 0, got {factor}", field="factor")

        store = self._require_store()
        result = RepairResult(factor=scale, dry_run=dry_run)

        # root id -> None (whole item) or set of variant ids
        scopes: Dict[str, Optional[set]] = {}
        for entity_id in ids:
            root_id = store.find_entity_owner(entity_id)
            if root_id is None:
                result.failed[entity_id] = "not found"
                continue
            if root_id == entity_id:
                scopes[root_id] = None
            elif scopes.get(root_id, set()) is not None:
                scopes.setdefault(root_id, set()).add(entity_id)

        logger.info(
            f"Repair requested for {len(ids)} ids with factor {scale} (dry_run={dry_run})"
        )
        for root_id, variant_ids in scopes.items():
            try:
                self._repair_item(store, root_id, variant_ids, scale, dry_run, result)
            except (InvalidInput, Conflict, NotFound) as e:
                result.failed[root_id] = e.message
                logger.error(f"Repair of {root_id} failed, nothing written: {e.message}")

        return result

    def _repair_item(
        self,
        store: Any,
        root_id: str,
        variant_ids: Optional[set],
        scale: Decimal,
        dry_run: bool,
        result: RepairResult,
    ) -> None:
        item = store.get(root_id)
        working = item.clone()
        if variant_ids is None:
            targets = list(working.iter_entities())
        else:
            targets = [v for v in working.variants if v.id in variant_ids]

        places = self.calculator.decimal_places
        records = []
        for entity in targets:
            before = entity.price_fields()
            exact = entity.merchant_price * scale
            entity.merchant_price = quantize_amount(exact, places)
            precision_lost = exact != entity.merchant_price
            if precision_lost:
                logger.warning(
                    f"Repair of {entity.id} rounds merchant price {exact} to {entity.merchant_price}"
                )
            entity.final_price = self.calculator.derive_entity(entity)
            records.append(
                {
                    "entity_id": entity.id,
                    "root_id": root_id,
                    "factor": str(scale),
                    "dry_run": dry_run,
                    "merchant_price_before": str(before.merchant_price),
                    "merchant_price_after": str(entity.merchant_price),
                    "merchant_price_exact": str(exact),
                    "precision_lost": precision_lost,
                    "final_price_before": (
                        None if before.final_price is None else str(before.final_price)
                    ),
                    "final_price_after": str(entity.final_price),
                }
            )

        if not dry_run:
            root_fields = working.price_fields() if variant_ids is None else None
            variant_fields = {
                v.id: v.price_fields() for v in targets if v.id != working.id
            }
            store.update(root_id, root_fields, variant_fields, expected_version=item.version)

        for record in records:
            logger.info(
                f"{'Dry-run repair' if dry_run else 'Repaired'} {record['entity_id']}: "
                f"merchant {record['merchant_price_before']} -> {record['merchant_price_after']}, "
                f"final {record['final_price_before']} -> {record['final_price_after']}",
                extra={"extra_fields": record},
            )
            if self.report_sink is not None:
                self.report_sink.emit_repair(record)
        result.records.extend(records)
