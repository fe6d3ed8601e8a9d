"""Logging configuration for the authorization controller."""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

from athenz_istio_auth.core.config import Settings, get_settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter for structured logging."""

    def __init__(self, *args, settings: Optional[Settings] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.settings = settings or get_settings()

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        """Add custom fields to log record."""
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()

        log_record["app_name"] = self.settings.app_name
        log_record["app_version"] = self.settings.app_version

        log_record["level"] = record.levelname
        log_record["logger"] = record.name

        # Reconciliation context
        if hasattr(record, "namespace"):
            log_record["namespace"] = record.namespace
        if hasattr(record, "domain"):
            log_record["domain"] = record.domain
        if hasattr(record, "queue_key"):
            log_record["queue_key"] = record.queue_key


def setup_logging(settings: Optional[Settings] = None) -> None:
    """Configure logging for the controller."""
    settings = settings or get_settings()

    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level.value)

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(settings.log_level.value)

    if settings.log_json:
        formatter = CustomJsonFormatter(
            "%(timestamp)s %(level)s %(name)s %(message)s", settings=settings
        )
    else:
        formatter = logging.Formatter(settings.log_format)

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Set log levels for third-party libraries
    logging.getLogger("kubernetes").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("kopf.objects").setLevel(logging.WARNING)

    logger = get_logger(__name__)
    logger.info(
        "Logging configured",
        extra={
            "log_level": settings.log_level.value,
            "log_json": settings.log_json,
        },
    )


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)


def log_event(logger: logging.Logger, level: str, event: str, **kwargs) -> None:
    """Log a structured event."""
    extra = {"event": event, **kwargs}

    message = f"{event}: {json.dumps(kwargs, default=str)}" if kwargs else event

    getattr(logger, level)(message, extra=extra)
