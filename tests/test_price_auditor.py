"""
Tests for the price integrity auditor.
"""

from decimal import Decimal

import pytest

from storefront_pricing.exceptions import (
    ConfigurationError,
    InvalidInput,
    RepairRequiresExplicitScope,
)
from storefront_pricing.risk.price_auditor import PriceIntegrityAuditor, suggest_factor
from storefront_pricing.risk.status_codes import (
    FindingKind,
    MagnitudeClass,
    get_finding_description,
)
from storefront_pricing.storage.catalog_store import InMemoryCatalogStore
from storefront_pricing.storage.report_sink import InMemoryReportSink
from storefront_pricing.utils.config_loader import AuditConfig
from tests.fixtures.catalog_factory import make_item, make_variant


@pytest.fixture
def catalog() -> InMemoryCatalogStore:
    return InMemoryCatalogStore(
        [
            make_item("tee", "100", dynamic_markup_pct="5", category="apparel"),
            make_item(
                "hoodie",
                "500",
                dynamic_markup_pct="5",
                final_price="50000.00",
                category="outerwear",
                variants=[make_variant("hoodie-xl", "520", final_price="57200.00")],
            ),
            make_item("mug", "8", category="kitchen"),
        ]
    )


@pytest.fixture
def sink() -> InMemoryReportSink:
    return InMemoryReportSink()


@pytest.fixture
def auditor(catalog, sink) -> PriceIntegrityAuditor:
    return PriceIntegrityAuditor(catalog_store=catalog, report_sink=sink)


class TestSuggestFactor:
    """Tests for suggest_factor."""

    @pytest.mark.parametrize(
        "stored, reference, expected",
        [
            ("50000", "575", "0.01"),
            ("5.75", "575", "1E+2"),
            ("1150", "115", "0.1"),
            ("120", "115", None),
            ("300", "115", None),
            ("0", "115", None),
        ],
    )
    def test_suggest_factor(self, stored, reference, expected) -> None:
        result = suggest_factor(Decimal(stored), Decimal(reference))
        if expected is None:
            assert result is None
        else:
            assert result == Decimal(expected)

    def test_missing_reference(self) -> None:
        assert suggest_factor(Decimal("10"), None) is None


class TestClassifyMagnitude:
    """Tests for magnitude classification."""

    @pytest.mark.parametrize(
        "price, expected",
        [
            ("0.50", MagnitudeClass.BELOW_LOW),
            ("1", MagnitudeClass.NORMAL),
            ("1000", MagnitudeClass.NORMAL),
            ("1000.01", MagnitudeClass.HIGH),
            ("10000", MagnitudeClass.HIGH),
            ("10000.01", MagnitudeClass.EXTREME),
        ],
    )
    def test_buckets(self, price: str, expected: MagnitudeClass) -> None:
        assert PriceIntegrityAuditor().classify_magnitude(Decimal(price)) == expected


class TestScan:
    """Tests for PriceIntegrityAuditor.scan."""

    def test_flags_inflated_price(self, auditor: PriceIntegrityAuditor) -> None:
        """A price 100x its derived value is flagged with factor 0.01."""
        report = auditor.scan_catalog()

        assert "hoodie" in report.flagged_ids
        mismatch = [
            f for f in report.findings_for("hoodie") if f.kind == FindingKind.INVARIANT_MISMATCH
        ]
        assert len(mismatch) == 1
        assert mismatch[0].expected_price == Decimal("575.00")
        assert mismatch[0].suggested_factor == Decimal("0.01")

    def test_extreme_price_is_magnitude_anomaly(self, auditor) -> None:
        report = auditor.scan_catalog()
        kinds = {f.kind for f in report.findings_for("hoodie")}
        assert FindingKind.MAGNITUDE_ANOMALY in kinds
        assert report.magnitude_counts["EXTREME"] == 2

    def test_variants_scanned_independently(self, auditor) -> None:
        report = auditor.scan_catalog()
        finding = report.findings_for("hoodie-xl")[0]
        assert finding.root_id == "hoodie"
        assert finding.expected_price == Decimal("572.00")

    def test_consistent_prices_not_flagged(self, auditor) -> None:
        report = auditor.scan_catalog()
        assert "tee" not in report.flagged_ids
        assert "mug" not in report.flagged_ids
        assert report.total == 4

    def test_scan_does_not_modify(self, auditor, catalog) -> None:
        before = [item.to_dict() for item in catalog.list_all()]
        auditor.scan_catalog()
        assert [item.to_dict() for item in catalog.list_all()] == before

    def test_category_outlier(self) -> None:
        """An internally consistent price far from its category median is flagged."""
        items = [
            make_item("a", "20", category="socks"),
            make_item("b", "25", category="socks"),
            make_item("c", "2800", category="socks"),
        ]
        report = PriceIntegrityAuditor().scan(items)

        assert report.flagged_ids == ["c"]
        finding = report.findings_for("c")[0]
        assert finding.kind == FindingKind.MAGNITUDE_ANOMALY
        assert finding.suggested_factor == Decimal("0.01")

    def test_small_category_has_no_median_check(self) -> None:
        items = [make_item("a", "20", category="socks"), make_item("b", "2800", category="socks")]
        assert PriceIntegrityAuditor().scan(items).findings == []

    def test_category_range(self) -> None:
        config = AuditConfig(category_ranges={"socks": (1.0, 50.0)})
        report = PriceIntegrityAuditor(config=config).scan([make_item("a", "100", category="socks")])
        assert report.findings[0].kind == FindingKind.MAGNITUDE_ANOMALY
        assert "range" in report.findings[0].message

    def test_missing_and_invalid_inputs(self) -> None:
        missing = make_item("a", "20")
        missing.final_price = None
        invalid = make_item("b", "20")
        invalid.merchant_price = Decimal("-1")

        report = PriceIntegrityAuditor().scan([missing, invalid])

        assert report.findings_for("a")[0].kind == FindingKind.MISSING_PRICE
        assert report.findings_for("b")[0].kind == FindingKind.INVALID_INPUTS

    def test_report_emitted_to_sink(self, auditor, sink) -> None:
        report = auditor.scan_catalog()
        assert sink.audits == [report]

    def test_report_serialization(self, auditor) -> None:
        report = auditor.scan_catalog()
        data = report.to_dict()
        assert data["flagged_ids"] == ["hoodie", "hoodie-xl"]
        df = report.to_dataframe()
        assert len(df) == len(report.findings)
        assert "suggested_factor" in df.columns

    def test_scan_catalog_requires_store(self) -> None:
        with pytest.raises(ConfigurationError):
            PriceIntegrityAuditor().scan_catalog()

    def test_finding_descriptions(self) -> None:
        for kind in FindingKind:
            assert get_finding_description(kind) != "Unknown finding."


class TestRepair:
    """Tests for PriceIntegrityAuditor.repair."""

    def test_repair_root_and_variants(self, auditor, catalog) -> None:
        result = auditor.repair(["hoodie"], Decimal("0.01"))

        assert result.failed == {}
        assert result.repaired_ids == ["hoodie", "hoodie-xl"]
        hoodie = catalog.get("hoodie")
        assert hoodie.merchant_price == Decimal("5.00")
        assert hoodie.final_price == Decimal("5.75")
        assert hoodie.variants[0].merchant_price == Decimal("5.20")
        assert hoodie.variants[0].final_price == Decimal("5.72")
        assert hoodie.version == 1

    def test_records_before_and_after(self, auditor, sink) -> None:
        result = auditor.repair(["hoodie"], "0.01")

        record = result.records[0]
        assert record["entity_id"] == "hoodie"
        assert record["merchant_price_before"] == "500"
        assert record["merchant_price_after"] == "5.00"
        assert record["final_price_before"] == "50000.00"
        assert record["final_price_after"] == "5.75"
        assert sink.repairs == result.records

        assert record["merchant_price_exact"] == "5.00"
        assert record["precision_lost"] is False

    def test_records_rounded_merchant_price(self) -> None:
        catalog = InMemoryCatalogStore([make_item("lamp", "1234.5")])
        auditor = PriceIntegrityAuditor(catalog_store=catalog)

        result = auditor.repair(["lamp"], "0.001")

        record = result.records[0]
        assert record["merchant_price_exact"] == "1.2345"
        assert record["merchant_price_after"] == "1.23"
        assert record["precision_lost"] is True
        assert catalog.get("lamp").final_price == Decimal("1.35")

    def test_repair_variant_only(self, auditor, catalog) -> None:
        result = auditor.repair(["hoodie-xl"], "0.01")

        assert result.repaired_ids == ["hoodie-xl"]
        hoodie = catalog.get("hoodie")
        assert hoodie.merchant_price == Decimal("500")
        assert hoodie.variants[0].final_price == Decimal("5.72")

    def test_dry_run_writes_nothing(self, auditor, catalog) -> None:
        result = auditor.repair(["hoodie"], "0.01", dry_run=True)

        assert result.dry_run is True
        assert result.records[0]["final_price_after"] == "5.75"
        assert catalog.get("hoodie").final_price == Decimal("50000.00")
        assert catalog.get("hoodie").version == 0

    def test_untouched_items_unchanged(self, auditor, catalog) -> None:
        auditor.repair(["hoodie"], "0.01")
        assert catalog.get("tee").version == 0
        assert catalog.get("mug").version == 0

    def test_unknown_id_reported(self, auditor) -> None:
        result = auditor.repair(["hoodie", "ghost"], "0.01")
        assert result.failed == {"ghost": "not found"}
        assert "hoodie" in result.repaired_ids

    @pytest.mark.parametrize("ids", [None, [], "hoodie"])
    def test_requires_explicit_ids(self, auditor, ids) -> None:
        with pytest.raises(RepairRequiresExplicitScope):
            auditor.repair(ids, "0.01")

    def test_requires_factor(self, auditor) -> None:
        with pytest.raises(RepairRequiresExplicitScope) as exc_info:
            auditor.repair(["hoodie"], None)
        assert exc_info.value.status_code == 400

    @pytest.mark.parametrize("factor", ["0", "-0.01", "NaN", "abc"])
    def test_rejects_bad_factor(self, auditor, factor) -> None:
        with pytest.raises(InvalidInput):
            auditor.repair(["hoodie"], factor)

    def test_rescan_after_repair_is_clean(self, auditor) -> None:
        auditor.repair(["hoodie"], "0.01")
        report = auditor.scan_catalog()
        assert "hoodie" not in report.flagged_ids
        assert "hoodie-xl" not in report.flagged_ids
