"""
Structured JSON logging for the Fulfillment Service.

Every module gets its logger from ``setup_fulfillment_logging``; anything
passed through ``extra=`` ends up as a top-level key in the JSON line.
"""

import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable, List, Optional

# Attributes every LogRecord carries; only caller-supplied extras are emitted
_STANDARD_RECORD_FIELDS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "taskName"}


class FulfillmentJSONFormatter(logging.Formatter):
    """One JSON object per record: fixed envelope plus the record's extras."""

    def __init__(self, exclude_fields: Optional[Iterable[str]] = None):
        super().__init__()
        self.skipped = _STANDARD_RECORD_FIELDS | set(exclude_fields or ())

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "service": "fulfillment_service",
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_entry.update(
            (key, value) for key, value in record.__dict__.items() if key not in self.skipped
        )
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str, ensure_ascii=False)


def _rotating_handler(
    path: Path, level: int, formatter: logging.Formatter, max_bytes: int, backups: int
) -> logging.Handler:
    handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backups)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_fulfillment_logging(
    service_name: str = "fulfillment_service",
    log_level: str = "INFO",
    enable_file_logging: bool = False,
    log_dir: Optional[str] = None,
    max_file_size: int = 100 * 1024 * 1024,
    backup_count: int = 5,
    exclude_fields: Optional[List[str]] = None,
) -> logging.Logger:
    """
    Configure and return the named logger.

    Console output always; with ``enable_file_logging`` (production and
    staging) also ``<name>.log`` and an ERROR-only ``<name>_errors.log``,
    both rotated at ``max_file_size``.
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logger = logging.getLogger(service_name)
    logger.setLevel(level)
    # Re-running setup for the same name must not stack handlers
    logger.handlers.clear()

    formatter = FulfillmentJSONFormatter(exclude_fields=exclude_fields)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if enable_file_logging:
        directory = Path(log_dir) if log_dir else Path(__file__).parent.parent / "logs"
        directory.mkdir(parents=True, exist_ok=True)
        logger.addHandler(
            _rotating_handler(
                directory / f"{service_name}.log", level, formatter, max_file_size, backup_count
            )
        )
        logger.addHandler(
            _rotating_handler(
                directory / f"{service_name}_errors.log",
                logging.ERROR,
                formatter,
                max_file_size,
                backup_count,
            )
        )

    return logger
