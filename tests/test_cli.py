"""
Tests for the command line entry point.
"""

import json
from decimal import Decimal
from pathlib import Path

import pytest

from storefront_pricing import main as cli
from storefront_pricing.storage.catalog_store import JsonCatalogStore
from tests.fixtures.catalog_factory import make_item


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr(cli, "setup_logging_from_config", lambda *args, **kwargs: None)


@pytest.fixture
def workspace(tmp_path: Path) -> dict:
    catalog_path = tmp_path / "catalog.json"
    catalog_path.write_text(
        json.dumps(
            {
                "items": [
                    make_item("tee", "100").to_dict(),
                    make_item("hoodie", "500", final_price="55000.00").to_dict(),
                ]
            }
        ),
        encoding="utf-8",
    )
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        f"""
paths:
  catalog_file: {catalog_path.as_posix()}
  report_dir: {(tmp_path / "reports").as_posix()}
fx:
  provider: static
  static_rates:
    EUR: 0.92
currencies:
  - code: USD
    is_active: true
  - code: EUR
    is_active: true
""",
        encoding="utf-8",
    )
    return {"config": str(config_path), "catalog": catalog_path, "reports": tmp_path / "reports"}


class TestCli:
    """Tests for main()."""

    def test_refresh_rates(self, workspace, capsys) -> None:
        code = cli.main(["--config", workspace["config"], "refresh-rates"])

        output = json.loads(capsys.readouterr().out)
        assert code == 0
        assert output[0]["snapshot"]["rates"] == {"EUR": "0.92"}

    def test_refresh_rates_unknown_base(self, workspace) -> None:
        code = cli.main(["--config", workspace["config"], "refresh-rates", "--base", "CHF"])
        assert code == 2

    def test_audit_exit_code(self, workspace) -> None:
        code = cli.main(["--config", workspace["config"], "audit"])
        assert code == 3
        assert (workspace["reports"] / "audit_findings.csv").exists()

    def test_repair_writes_catalog(self, workspace) -> None:
        code = cli.main(
            ["--config", workspace["config"], "repair", "--id", "hoodie", "--factor", "0.01"]
        )

        assert code == 0
        hoodie = JsonCatalogStore(workspace["catalog"]).get("hoodie")
        assert hoodie.final_price == Decimal("5.50")
        assert (workspace["reports"] / "repair_log.csv").exists()

    def test_repair_dry_run(self, workspace, capsys) -> None:
        code = cli.main(
            [
                "--config", workspace["config"],
                "repair", "--id", "hoodie", "--factor", "0.01", "--dry-run",
            ]
        )

        assert code == 0
        assert "DRY RUN" in capsys.readouterr().out
        hoodie = JsonCatalogStore(workspace["catalog"]).get("hoodie")
        assert hoodie.final_price == Decimal("55000.00")

    def test_repair_unknown_id(self, workspace) -> None:
        code = cli.main(
            ["--config", workspace["config"], "repair", "--id", "ghost", "--factor", "0.01"]
        )
        assert code == 2

    def test_repair_bad_factor(self, workspace) -> None:
        code = cli.main(
            ["--config", workspace["config"], "repair", "--id", "hoodie", "--factor", "0"]
        )
        assert code == 1

    def test_repair_requires_ids(self, workspace) -> None:
        with pytest.raises(SystemExit):
            cli.main(["--config", workspace["config"], "repair", "--factor", "0.01"])

    def test_recompute(self, workspace, capsys) -> None:
        code = cli.main(["--config", workspace["config"], "--catalog", str(workspace["catalog"]), "recompute"])

        output = json.loads(capsys.readouterr().out)
        assert code == 0
        assert output["total"] == 2
        assert output["skipped"] == {"hoodie": "INVALID_INPUT"}
