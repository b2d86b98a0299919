"""
Structured JSON Logging Configuration

This module provides structured logging for the order ingest worker.

Every log line is a single JSON object so the worker's output can be shipped
straight to CloudWatch (or any log aggregator) and queried by field.

EXAMPLE OUTPUT:
{
  "timestamp": "2025-01-10T14:30:00.123Z",
  "level": "INFO",
  "service": "order-worker",
  "logger": "src.worker.consumer",
  "correlation_id": "9f1c2a4e-7b1d-4c55-a1d2-0d3e5b9d6f10",
  "message": "Processed message",
  "extra": {"messages_processed": 42}
}

The correlation_id is the queue message id, which is also the order id, so
one query finds every line about one delivery (including redeliveries).
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

# Root of the worker's logger tree. Module loggers (src.worker.consumer,
# src.worker.database, ...) propagate here.
WORKER_LOGGER_NAME = "src.worker"

_STANDARD_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "message", "pathname", "process", "processName", "relativeCreated",
    "thread", "threadName", "taskName", "exc_info", "exc_text", "stack_info",
    "correlation_id",
}


# ==============================================================================
# JSON FORMATTER
# ==============================================================================


class JSONFormatter(logging.Formatter):
    """
    Log formatter that outputs one JSON object per record.

    Fields:
    - timestamp: ISO 8601, UTC, millisecond precision
    - level, service, logger, message
    - correlation_id: queue message id (if provided)
    - exception: formatted traceback (if any)
    - extra: any additional context passed via ``extra=``
    """

    def __init__(self, service_name: str = "order-worker", include_extra: bool = True):
        super().__init__()
        self.service_name = service_name
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": self._format_timestamp(record.created),
            "level": record.levelname,
            "service": self.service_name,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "correlation_id"):
            log_data["correlation_id"] = record.correlation_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if self.include_extra:
            extra_fields = {
                k: v for k, v in record.__dict__.items()
                if k not in _STANDARD_ATTRS and not k.startswith("_")
            }
            if extra_fields:
                log_data["extra"] = extra_fields

        return json.dumps(log_data, default=str)

    @staticmethod
    def _format_timestamp(created: float) -> str:
        """Format a record timestamp as e.g. ``2025-01-10T14:30:00.123Z``."""
        dt = datetime.fromtimestamp(created, tz=timezone.utc)
        return dt.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


# ==============================================================================
# PLAIN TEXT FORMATTER (for development)
# ==============================================================================


class PlainTextFormatter(logging.Formatter):
    """
    Human-readable log formatter for local development.

    Format: [2025-01-10 14:30:00] INFO [order-worker] Processed message
    """

    def __init__(self, service_name: str = "order-worker"):
        super().__init__(
            fmt=f"[%(asctime)s] %(levelname)s [{service_name}] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


# ==============================================================================
# LOGGER SETUP
# ==============================================================================


def setup_logger(
    name: str = WORKER_LOGGER_NAME,
    service_name: str = "order-worker",
    log_level: str = "INFO",
    log_format: str = "json",
) -> logging.Logger:
    """
    Set up the structured logger for the worker.

    Configures ``name`` (by default the whole ``src.worker`` tree) with a
    single stdout handler. Calling it again reuses that handler and applies
    the new level, service name and format to it.

    Args:
        name: Logger name to configure
        service_name: Service identifier written on every line
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_format: "json" or "text"

    Returns:
        Configured logging.Logger instance

    Example:
        >>> logger = setup_logger(service_name="order-worker", log_format="json")
        >>> logger.info("Worker started", extra={"queue_url": "https://..."})
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    if log_format.lower() == "json":
        formatter: logging.Formatter = JSONFormatter(service_name=service_name)
    else:
        formatter = PlainTextFormatter(service_name=service_name)

    # Prevent duplicate handlers if logger already configured
    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(logger.level)
            handler.setFormatter(formatter)
        return logger

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logger.level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


# ==============================================================================
# CORRELATION ID ADAPTER
# ==============================================================================


class CorrelationAdapter(logging.LoggerAdapter):
    """
    Logger adapter that adds correlation_id to every log line.

    Example:
        >>> base_logger = logging.getLogger("src.worker.consumer")
        >>> logger = CorrelationAdapter(base_logger, {"correlation_id": message.message_id})
        >>> logger.info("Recording order")  # correlation_id included
    """

    def process(self, msg: str, kwargs: dict) -> tuple:
        extra = dict(kwargs.get("extra") or {})

        if "correlation_id" in self.extra:
            extra["correlation_id"] = self.extra["correlation_id"]

        kwargs["extra"] = extra
        return msg, kwargs
