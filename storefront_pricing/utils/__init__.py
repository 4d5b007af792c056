"""
Utility modules.

Configuration loading and logging setup.
"""

from storefront_pricing.utils.config_loader import AppConfig, load_config, load_env
from storefront_pricing.utils.logging_config import setup_logging, setup_logging_from_config

__all__ = [
    "load_config",
    "load_env",
    "AppConfig",
    "setup_logging",
    "setup_logging_from_config",
]
