"""
Logging setup for the CPI.

Modules log through logging.getLogger(__name__), all under `vcloud_cpi`.
The client and the transaction runner attach context with `extra=`:
method/url/attempt/status_code for remote calls, transaction/step for the
step runner. The JSON formatter copies those fields into each line.

Usage:
    from vcloud_cpi.logging_config import configure_logging

    configure_logging(settings.logging)
"""

import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Optional

from vcloud_cpi.settings import LoggingSettings

LOGGER_NAME = "vcloud_cpi"

CONTEXT_FIELDS = ("transaction", "step", "method", "url", "status_code", "attempt")

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with CPI call context when present."""

    def format(self, record):
        created = datetime.fromtimestamp(record.created, timezone.utc)
        entry = {
            "timestamp": created.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(
            (field, getattr(record, field))
            for field in CONTEXT_FIELDS
            if hasattr(record, field)
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def _formatter(kind: str) -> logging.Formatter:
    if kind == "json":
        return JSONFormatter()
    return logging.Formatter(TEXT_FORMAT)


def configure_logging(settings: Optional[LoggingSettings] = None) -> logging.Logger:
    """
    Install handlers on the `vcloud_cpi` logger, replacing earlier ones.

    Args:
        settings: Logging section (default: LOG_* environment / defaults)

    Returns:
        The configured package logger
    """
    settings = settings or LoggingSettings()

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, settings.level.upper(), logging.INFO))
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    console.setFormatter(_formatter(settings.format))
    logger.addHandler(console)

    # Files always get JSON lines
    if settings.file:
        file_handler = RotatingFileHandler(
            settings.file,
            maxBytes=settings.max_bytes,
            backupCount=settings.backup_count,
        )
        file_handler.setFormatter(JSONFormatter())
        logger.addHandler(file_handler)

    return logger
