"""
Structured logging configuration.

Text logs for operators at a terminal, JSON logs for aggregation. The
periodic jobs and batch workers run on named threads, so every record
carries the thread name.
"""

import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path

from pythonjsonlogger.json import JsonFormatter

from storefront_pricing.utils.config_loader import LoggingConfig

SERVICE_NAME = "storefront-pricing"

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(threadName)s] %(message)s"

# Chatty third-party loggers
QUIET_LOGGERS = ("urllib3", "httpx", "uvicorn.access")


class JSONFormatter(JsonFormatter):
    """JSON formatter emitting one flat object per record."""

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict):
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.fromtimestamp(record.created, timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["thread"] = record.threadName
        log_record["service"] = SERVICE_NAME

        # Repair records, refresh failures etc. pass extra={"extra_fields": {...}}
        extra_fields = log_record.pop("extra_fields", None) or getattr(record, "extra_fields", None)
        if extra_fields:
            log_record.update(extra_fields)


def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
    log_file: Path | None = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
) -> None:
    """
    Configure root logging for the CLI and the admin API.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        log_format: "text" or "json".
        log_file: Optional rotating log file.
        max_bytes: Max log file size before rotation.
        backup_count: Number of rotated files to keep.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers.clear()

    if log_format.lower() == "json":
        formatter: logging.Formatter = JSONFormatter("%(message)s")
    else:
        formatter = logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.info(f"Logging configured: level={level}, format={log_format}")


def setup_logging_from_config(config: LoggingConfig, verbose: bool = False) -> None:
    """Configure logging from the `logging` config section; verbose forces DEBUG."""
    setup_logging(
        level="DEBUG" if verbose else config.level,
        log_format=config.format,
        log_file=Path(config.file) if config.file else None,
    )
