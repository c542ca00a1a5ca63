"""
Centralized logging configuration.
Structured JSON logging for the audit mirror, performance timings and debugging.
"""
import logging
import logging.config
import json
import sys
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from pathlib import Path

ROOT_LOGGER = "affiliate_core"


class JSONFormatter(logging.Formatter):
    """
    Render log records as one JSON object per line.
    Structured keyword context passed to StructuredLogger is merged at top level.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            log_entry.update(extra_data)

        log_entry.update({
            "process_id": record.process,
            "thread_id": record.thread,
        })

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class StructuredLogger:
    """
    Wrapper around a standard logger that accepts keyword context.

    ``exc_info`` is forwarded to the stdlib logger; every other keyword becomes
    a structured field (None values are dropped).
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _log_with_extra(self, level: int, message: str, **kwargs):
        exc_info = kwargs.pop("exc_info", False)
        extra_data = {k: v for k, v in kwargs.items() if v is not None}
        self.logger.log(level, message, exc_info=exc_info, extra={"extra_data": extra_data})

    def info(self, message: str, **kwargs):
        self._log_with_extra(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log_with_extra(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log_with_extra(logging.ERROR, message, **kwargs)

    def debug(self, message: str, **kwargs):
        self._log_with_extra(logging.DEBUG, message, **kwargs)


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    enable_console: bool = True
) -> None:
    """
    Configure application logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for rotating JSON output
        enable_console: Whether to log to stdout
    """
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": JSONFormatter,
            },
            "standard": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S"
            }
        },
        "handlers": {},
        "loggers": {
            ROOT_LOGGER: {
                "level": log_level,
                "handlers": [],
                "propagate": False
            },
            "uvicorn": {
                "level": "INFO",
                "handlers": [],
                "propagate": False
            },
            "sqlalchemy.engine": {
                "level": "WARNING",
                "handlers": [],
                "propagate": False
            }
        },
        "root": {
            "level": log_level,
            "handlers": []
        }
    }

    targets = [config["loggers"][name]["handlers"] for name in (ROOT_LOGGER, "uvicorn", "sqlalchemy.engine")]
    targets.append(config["root"]["handlers"])

    if enable_console:
        config["handlers"]["console"] = {
            "class": "logging.StreamHandler",
            "stream": sys.stdout,
            "formatter": "standard",
            "level": log_level
        }
        for handlers in targets:
            handlers.append("console")

    if log_file:
        config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,  # 10MB
            "backupCount": 5,
            "formatter": "json",
            "level": log_level
        }
        for handlers in targets:
            handlers.append("file")

    logging.config.dictConfig(config)


def get_logger(name: str) -> StructuredLogger:
    """Return a structured logger namespaced under the package root."""
    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return StructuredLogger(name)
    return StructuredLogger(f"{ROOT_LOGGER}.{name}")


def log_business_event(
    event_type: str,
    details: Dict[str, Any],
    user_id: Optional[int] = None,
    request_id: Optional[str] = None
) -> None:
    """
    Mirror a business event (audit row, settlement, cascade step) to the log.

    Args:
        event_type: Event name, usually the audit action (e.g. 'ORDERS_FROZEN')
        details: Event-specific details
        user_id: Acting user ID if applicable
        request_id: Request ID for tracing
    """
    audit_logger = get_logger("audit")
    audit_logger.info(
        f"Business event: {event_type}",
        event_type=event_type,
        user_id=user_id,
        request_id=request_id,
        **details
    )


def log_performance(
    operation: str,
    duration_ms: float,
    additional_data: Optional[Dict[str, Any]] = None
) -> None:
    """Log an operation timing in milliseconds."""
    perf_logger = get_logger("performance")
    data: Dict[str, Any] = {"duration_ms": round(duration_ms, 2)}
    if additional_data:
        data.update(additional_data)

    perf_logger.info(
        f"Performance: {operation}",
        operation=operation,
        **data
    )
