"""
Configuration loader module.

Loads engine configuration from YAML files and environment variables.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


@dataclass
class PathsConfig:
    """File path configuration."""

    report_dir: str = "data/reports"
    catalog_file: str = "data/catalog.json"


@dataclass
class PricingConfig:
    """Price derivation configuration."""

    canonical_currency: str = "USD"
    decimal_places: int = 2
    default_base_markup_pct: float = 10.0
    base_markup_cap_pct: float = 100.0
    max_price_jump_ratio: float = 10.0


@dataclass
class MarkupConfig:
    """Dynamic markup recomputation configuration."""

    recompute_interval_seconds: int = 3600
    max_workers: int = 8
    entity_timeout_seconds: float = 30.0
    policy: str = "tiered"  # "tiered" or "linear"
    linear_scale: float = 0.1
    # (minimum signal, markup %) pairs, highest tier wins
    tiers: list[tuple[float, float]] = field(
        default_factory=lambda: [
            (1000.0, 30.0),
            (500.0, 20.0),
            (200.0, 12.0),
            (100.0, 8.0),
            (50.0, 4.0),
            (10.0, 2.0),
        ]
    )


@dataclass
class FXConfig:
    """Exchange-rate provider and cache configuration."""

    provider: str = "frankfurter"  # "frankfurter" or "static"
    base_url: str = "https://api.frankfurter.dev/v1"
    timeout_seconds: int = 10
    max_retries: int = 3
    refresh_interval_seconds: int = 86400
    stale_after_seconds: int = 2 * 86400
    history_size: int = 7
    base_currencies: list[str] = field(default_factory=lambda: ["USD"])
    static_rates: dict[str, float] = field(default_factory=dict)


@dataclass
class AuditConfig:
    """Price integrity audit configuration."""

    low_threshold: float = 1.0
    high_threshold: float = 1000.0
    extreme_threshold: float = 10000.0
    epsilon: float = 0.01
    category_anomaly_ratio: float = 10.0
    min_category_size: int = 3
    # category -> [low, high] typical final price range
    category_ranges: dict[str, tuple[float, float]] = field(default_factory=dict)


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    file: str | None = None


@dataclass
class AppConfig:
    """
    Main engine configuration.

    Aggregates all configuration sections into a single object.
    """

    paths: PathsConfig = field(default_factory=PathsConfig)
    pricing: PricingConfig = field(default_factory=PricingConfig)
    markup: MarkupConfig = field(default_factory=MarkupConfig)
    fx: FXConfig = field(default_factory=FXConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    # Currency rows seeding the currency store (code, is_active, decimals, ...)
    currencies: list[dict[str, Any]] = field(default_factory=list)


def load_env(env_file: Path = Path(".env")) -> None:
    """
    Load environment variables from .env file.

    Args:
        env_file: Path to .env file.
    """
    if env_file.exists():
        load_dotenv(env_file)
        logger.debug(f"Loaded environment from: {env_file}")
    else:
        logger.debug(f"No .env file found at: {env_file}")


def load_config(config_file: Path = Path("config/config.yaml")) -> AppConfig:
    """
    Load engine configuration from YAML file.

    Environment variables FX_BASE_URL, LOG_LEVEL and LOG_FORMAT override
    the file values.

    Args:
        config_file: Path to configuration YAML file.

    Returns:
        AppConfig: Loaded configuration object.

    Raises:
        yaml.YAMLError: If config file is invalid.
    """
    config_file = Path(config_file)
    if not config_file.exists():
        logger.warning(f"Config file not found: {config_file}. Using defaults.")
        config = AppConfig()
    else:
        with open(config_file, encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
        config = _parse_config(raw_config or {})
        logger.info(f"Loaded configuration from: {config_file}")

    _apply_env_overrides(config)
    return config


def _apply_env_overrides(config: AppConfig) -> None:
    base_url = get_env_var("FX_BASE_URL")
    if base_url:
        config.fx.base_url = base_url
    log_level = get_env_var("LOG_LEVEL")
    if log_level:
        config.logging.level = log_level
    log_format = get_env_var("LOG_FORMAT")
    if log_format:
        config.logging.format = log_format


def _parse_config(raw: dict[str, Any]) -> AppConfig:
    """
    Parse raw YAML dict into AppConfig dataclass.

    Args:
        raw: Raw dictionary from YAML file.

    Returns:
        AppConfig: Parsed configuration object.
    """
    defaults = AppConfig()

    paths_raw = raw.get("paths", {})
    paths = PathsConfig(
        report_dir=paths_raw.get("report_dir", defaults.paths.report_dir),
        catalog_file=paths_raw.get("catalog_file", defaults.paths.catalog_file),
    )

    pricing_raw = raw.get("pricing", {})
    pricing = PricingConfig(
        canonical_currency=str(pricing_raw.get("canonical_currency", "USD")).upper(),
        decimal_places=pricing_raw.get("decimal_places", 2),
        default_base_markup_pct=pricing_raw.get("default_base_markup_pct", 10.0),
        base_markup_cap_pct=pricing_raw.get("base_markup_cap_pct", 100.0),
        max_price_jump_ratio=pricing_raw.get("max_price_jump_ratio", 10.0),
    )

    markup_raw = raw.get("markup", {})
    tiers_raw = markup_raw.get("tiers")
    markup = MarkupConfig(
        recompute_interval_seconds=markup_raw.get("recompute_interval_seconds", 3600),
        max_workers=markup_raw.get("max_workers", 8),
        entity_timeout_seconds=markup_raw.get("entity_timeout_seconds", 30.0),
        policy=markup_raw.get("policy", "tiered"),
        linear_scale=markup_raw.get("linear_scale", 0.1),
        tiers=(
            [(float(t[0]), float(t[1])) for t in tiers_raw]
            if tiers_raw
            else defaults.markup.tiers
        ),
    )

    fx_raw = raw.get("fx", {})
    fx = FXConfig(
        provider=fx_raw.get("provider", "frankfurter"),
        base_url=fx_raw.get("base_url", defaults.fx.base_url),
        timeout_seconds=fx_raw.get("timeout_seconds", 10),
        max_retries=fx_raw.get("max_retries", 3),
        refresh_interval_seconds=fx_raw.get("refresh_interval_seconds", 86400),
        stale_after_seconds=fx_raw.get("stale_after_seconds", 2 * 86400),
        history_size=fx_raw.get("history_size", 7),
        base_currencies=[c.upper() for c in fx_raw.get("base_currencies", ["USD"])],
        static_rates=dict(fx_raw.get("static_rates", {})),
    )

    audit_raw = raw.get("audit", {})
    audit = AuditConfig(
        low_threshold=audit_raw.get("low_threshold", 1.0),
        high_threshold=audit_raw.get("high_threshold", 1000.0),
        extreme_threshold=audit_raw.get("extreme_threshold", 10000.0),
        epsilon=audit_raw.get("epsilon", 0.01),
        category_anomaly_ratio=audit_raw.get("category_anomaly_ratio", 10.0),
        min_category_size=audit_raw.get("min_category_size", 3),
        category_ranges={
            name: (float(bounds[0]), float(bounds[1]))
            for name, bounds in audit_raw.get("category_ranges", {}).items()
        },
    )

    logging_raw = raw.get("logging", {})
    logging_config = LoggingConfig(
        level=logging_raw.get("level", "INFO"),
        format=logging_raw.get("format", "text"),
        file=logging_raw.get("file"),
    )

    return AppConfig(
        paths=paths,
        pricing=pricing,
        markup=markup,
        fx=fx,
        audit=audit,
        logging=logging_config,
        currencies=[dict(row) for row in raw.get("currencies", [])],
    )


def get_env_var(key: str, default: str | None = None) -> str | None:
    """
    Get an environment variable with optional default.

    Args:
        key: Environment variable name.
        default: Default value if not set.

    Returns:
        Environment variable value or default.
    """
    return os.environ.get(key, default)
