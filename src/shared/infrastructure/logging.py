"""
Structured Logging
==================

JSON-structured logging with per-pass correlation.

Provides:
- Structured JSON logs (parseable by log aggregators)
- A run_id that ties every line of one evaluation pass together
- Performance timing utilities

Usage:
    from shared.infrastructure.logging import get_logger

    logger = get_logger(__name__)
    logger.info("Escalation fired", extra={"ticket_id": "INC-001", "rule_id": "r-80"})
"""

import logging
import sys
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from pythonjsonlogger import jsonlogger

_SENSITIVE_MARKERS = ("password", "secret", "api_key", "authorization", "webhook_url")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter with engine-specific fields.

    Adds:
    - timestamp in ISO format (UTC)
    - run_id / correlation_id when present on the record
    - environment
    """

    def __init__(self, *args: Any, environment: str = "unknown", **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._environment = environment

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        if not log_record.get("timestamp"):
            log_record["timestamp"] = datetime.now(timezone.utc).isoformat()

        for key in ("run_id", "correlation_id"):
            value = getattr(record, key, None)
            if value is not None:
                log_record[key] = value

        log_record.setdefault("environment", self._environment)

        for key, value in list(log_record.items()):
            if isinstance(value, str) and any(m in key.lower() for m in _SENSITIVE_MARKERS):
                log_record[key] = "***REDACTED***"


def setup_logging(
    level: str = "INFO",
    environment: str = "development",
) -> None:
    """
    Configure structured JSON logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        environment: Environment name for log context
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))
    handler.setFormatter(
        CustomJsonFormatter(
            fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
            environment=environment,
        )
    )
    root_logger.addHandler(handler)

    # Silence noisy loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("watchdog").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)


class RunContextAdapter(logging.LoggerAdapter):
    """LoggerAdapter that merges its context into each call's ``extra``."""

    def process(self, msg: Any, kwargs: Any):
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def get_context_logger(name: str, run_id: Optional[str] = None) -> logging.Logger:
    """
    Get a logger bound to one evaluation pass.

    Args:
        name: Logger name
        run_id: Identifier of the pass; added to every record

    Returns:
        A logger, or a LoggerAdapter carrying run_id when one is given
    """
    logger = get_logger(name)
    if run_id:
        logger = RunContextAdapter(logger, {"run_id": run_id})
    return logger


@contextmanager
def log_latency(logger: logging.Logger, operation: str, **extra_context: Any):
    """
    Context manager for measuring and logging operation latency.

    Usage:
        with log_latency(logger, "evaluation_pass", trigger="scheduled"):
            summary = await engine.run_pass()
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        latency_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"{operation} completed",
            extra={
                "operation": operation,
                "latency_ms": round(latency_ms, 2),
                **extra_context,
            },
        )
