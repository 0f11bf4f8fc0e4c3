"""Structured Logging: JSON formatter, setup, and the error reporting channel.

Invariants:
    - All logs include timestamp, level, logger name, and message
    - Extra fields (email_id, step_id, rule, error_code, ...) surfaced when present
    - JSON format in production, human-readable in development
    - report_error never raises

Design Decisions:
    - JSONFormatter over third-party libs: zero dependencies, full control
    - setup_logging called once on startup via lifespan
    - report_error is the single place pipeline failures are surfaced for
      observability; callers record the compact form in side-channel meta
"""

import json
import logging
from datetime import datetime, timezone

from decisioning.core.errors import DecisioningError, ErrorContext

logger = logging.getLogger("decisioning.errors")

_EXTRA_KEYS = (
    "email_id", "application_id", "step_id", "rule", "error_code", "attempt",
    "input_tokens", "output_tokens", "outcome", "latency_ms",
)


class JSONFormatter(logging.Formatter):
    """Format logs as JSON for structured logging in production."""

    def format(self, record: logging.LogRecord) -> str:
        log = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _EXTRA_KEYS:
            val = record.__dict__.get(key)
            if val is not None:
                log[key] = val
        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", fmt: str = "json"):
    """Configure logging for the application."""
    handler = logging.StreamHandler()
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
        ))
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, level.upper(), logging.INFO))


def report_error(exc: BaseException, context: ErrorContext | None = None, **extra) -> dict:
    """Log a structured error record; returns its compact JSON-safe form."""
    ctx = context or getattr(exc, "context", None) or ErrorContext()
    if isinstance(exc, DecisioningError):
        record = exc.to_record()
    else:
        record = {"code": type(exc).__name__, "message": str(exc)}
    record.update({k: v for k, v in extra.items() if v is not None})
    logger.error(
        "%s: %s", record["code"], record["message"],
        extra={
            "email_id": ctx.email_id,
            "application_id": ctx.application_id,
            "step_id": ctx.step_id,
            "rule": ctx.rule_name,
            "error_code": record["code"],
        },
    )
    return record
