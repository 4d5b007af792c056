"""
CLI entry point for the storefront pricing engine.

Wires the engine components together and exposes the operator workflows:
rate refresh, markup recompute, integrity audit, scoped repair and the
admin API server.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from storefront_pricing.exceptions import PricingEngineError
from storefront_pricing.services.pricing_service import PricingService
from storefront_pricing.storage.catalog_store import JsonCatalogStore
from storefront_pricing.storage.report_sink import CsvReportSink
from storefront_pricing.utils.config_loader import AppConfig, load_config, load_env
from storefront_pricing.utils.logging_config import setup_logging_from_config

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command line arguments.

    Returns:
        argparse.Namespace: Parsed command line arguments.
    """
    parser = argparse.ArgumentParser(
        description="Storefront Pricing & Currency Normalization Engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m storefront_pricing.main refresh-rates --base USD
    python -m storefront_pricing.main audit
    python -m storefront_pricing.main repair --id item-1 --id item-2 --factor 0.01 --dry-run
    python -m storefront_pricing.main serve --port 8000
        """,
    )
    parser.add_argument(
        "--config", "-c",
        type=Path,
        default=Path("config/config.yaml"),
        help="Path to configuration file",
    )
    parser.add_argument(
        "--catalog",
        type=Path,
        help="Path to catalog JSON file (default: from config)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    sub = parser.add_subparsers(dest="command", required=True)

    refresh = sub.add_parser("refresh-rates", help="Fetch exchange rates now")
    refresh.add_argument("--base", help="Base currency (default: all configured bases)")

    sub.add_parser("recompute", help="Recompute dynamic markups and final prices")
    sub.add_parser("audit", help="Scan stored prices for integrity problems")

    repair = sub.add_parser("repair", help="Rescale merchant prices of explicit ids")
    repair.add_argument(
        "--id", dest="ids", action="append", required=True,
        help="Root or variant id to repair (repeatable)",
    )
    repair.add_argument("--factor", type=float, required=True, help="Multiplier, e.g. 0.01")
    repair.add_argument("--dry-run", action="store_true", help="Report without writing")

    serve = sub.add_parser("serve", help="Run the admin API with scheduled jobs")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    return parser.parse_args(argv)


def build_service(config: AppConfig, catalog_path: Optional[Path] = None) -> PricingService:
    """Build a pricing service backed by the JSON catalog and CSV reports."""
    catalog_store = JsonCatalogStore(
        catalog_path or config.paths.catalog_file,
        default_base_markup_pct=config.pricing.default_base_markup_pct,
    )
    return PricingService(
        config,
        catalog_store,
        report_sink=CsvReportSink(config.paths.report_dir),
    )


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def run_command(args: argparse.Namespace, config: AppConfig) -> int:
    """
    Run one CLI command.

    Returns:
        int: Exit code (0 for success, non-zero for errors).
    """
    if args.command == "serve":
        return run_server(args, config)

    service = build_service(config, args.catalog)

    if args.command == "refresh-rates":
        results = service.refresh_rates(args.base)
        _print_json([r.to_dict() for r in results])
        return 0 if all(r.refreshed for r in results) else 2

    if args.command == "recompute":
        result = service.recompute_all()
        _print_json(result.to_dict())
        return 0

    if args.command == "audit":
        report = service.scan()
        _print_json(report.to_dict())
        print(f"\nScanned {report.total} entities, {len(report.flagged_ids)} flagged")
        return 0 if not report.findings else 3

    if args.command == "repair":
        result = service.repair(args.ids, args.factor, dry_run=args.dry_run)
        _print_json(result.to_dict())
        if args.dry_run:
            print("\n[DRY RUN] - No changes written")
        return 0 if not result.failed else 2

    logger.error(f"Unknown command: {args.command}")
    return 1


def run_server(args: argparse.Namespace, config: AppConfig) -> int:
    """Serve the admin API with the periodic jobs running."""
    import uvicorn

    from storefront_pricing.webapp.main import create_app

    service = build_service(config, args.catalog)
    app = create_app(service, start_jobs=True)
    uvicorn.run(app, host=args.host, port=args.port)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        int: Exit code.
    """
    load_env()
    args = parse_args(argv)

    config = load_config(args.config)
    setup_logging_from_config(config.logging, verbose=args.verbose)

    logger.info(f"Storefront pricing engine: {args.command}")

    try:
        return run_command(args, config)
    except PricingEngineError as e:
        logger.error(f"{e.error_code}: {e.message}")
        print(f"\n✗ Error: {e.message}")
        return 1
    except KeyboardInterrupt:
        print("\n\nOperation cancelled by user.")
        return 130
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        print(f"\n✗ Fatal error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
