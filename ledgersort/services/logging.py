"""
Structured logging for LedgerSort.

Every module logs through ``logging.getLogger(__name__)``; records reach the
package logger ``ledgersort`` configured here. ``LOG_LEVEL`` picks the level
and ``USE_JSON_LOGS=true`` switches the console output to one JSON object
per line.
"""
import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

PLAIN_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
PLAIN_DATEFMT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger("ledgersort")


class JSONFormatter(logging.Formatter):
    """One JSON object per record; ``extra_fields`` are merged in."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            log_data.update(extra_fields)
        return json.dumps(log_data, default=str)


def configure_logging(level: Optional[str] = None, json_logs: Optional[bool] = None) -> logging.Logger:
    """(Re)install the console handler on the package logger."""
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    if json_logs is None:
        json_logs = os.getenv("USE_JSON_LOGS", "false").lower() == "true"

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_logs else logging.Formatter(PLAIN_FORMAT, datefmt=PLAIN_DATEFMT))

    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level_name, logging.INFO))
    # Keep engine records out of the root logger
    logger.propagate = False
    return logger


configure_logging()


def log_request(
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    client_id: Optional[str] = None,
) -> None:
    """Log an HTTP request served by the API."""
    extra_fields = {
        "type": "http_request",
        "method": method,
        "path": path,
        "status_code": status_code,
        "duration_ms": round(duration_ms, 3),
    }
    if client_id:
        extra_fields["client_id"] = client_id
    level = logging.WARNING if status_code >= 500 else logging.INFO
    logger.log(level, "%s %s %d %.2fms", method, path, status_code, duration_ms, extra={"extra_fields": extra_fields})


def log_error(
    error_type: str,
    message: str,
    context: Optional[Dict[str, Any]] = None,
    exception: Optional[Exception] = None
):
    """Log error with context."""
    extra_fields = {"type": "error", "error_type": error_type, **(context or {})}
    logger.error(message, exc_info=exception, extra={"extra_fields": extra_fields})
