"""
Centralized logging configuration.

Every module logs through ``get_logger(__name__)``; keyword arguments become
structured fields. Inside a queue task the worker binds the task id and action
with ``bind_log_context`` so handler, engine and client lines can be correlated
without passing ids around.
"""
import logging
import logging.config
import json
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Dict, Any, Iterator, Optional
from pathlib import Path

ROOT_LOGGER = "catalog_sync"

_log_context: ContextVar[Dict[str, Any]] = ContextVar("catalog_sync_log_context", default={})

# Third-party loggers kept below the service level.
_LIBRARY_LEVELS = {
    "sqlalchemy.engine": "WARNING",
    "aiohttp": "WARNING",
    "uvicorn": "INFO",
}


@contextmanager
def bind_log_context(**fields: Any) -> Iterator[None]:
    """Attach ``fields`` to every record logged in this context (thread or task)."""
    merged = {**_log_context.get(), **{k: v for k, v in fields.items() if v is not None}}
    token = _log_context.set(merged)
    try:
        yield
    finally:
        _log_context.reset(token)


def _record_fields(record: logging.LogRecord) -> Dict[str, Any]:
    fields = dict(getattr(record, "context", None) or {})
    fields.update(getattr(record, "extra_data", None) or {})
    return fields


class JSONFormatter(logging.Formatter):
    """One JSON object per line, used for the rotating log file."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
            "thread": record.threadName,
        }
        entry.update(_record_fields(record))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class KeyValueFormatter(logging.Formatter):
    """Console format: the standard prefix followed by ``key=value`` fields."""

    def __init__(self):
        super().__init__("%(asctime)s %(levelname)-7s %(name)s - %(message)s", "%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = _record_fields(record)
        if fields:
            line += " | " + " ".join(f"{k}={v}" for k, v in fields.items())
        return line


class StructuredLogger:
    """Thin wrapper over ``logging.Logger`` taking structured fields as keyword arguments."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _log(self, level: int, message: str, **kwargs):
        if not self.logger.isEnabledFor(level):
            return
        exc_info = kwargs.pop("exc_info", None)
        extra_data = {k: v for k, v in kwargs.items() if v is not None}
        self.logger.log(
            level,
            message,
            exc_info=exc_info,
            extra={"extra_data": extra_data, "context": _log_context.get()},
            stacklevel=3,
        )

    def debug(self, message: str, **kwargs):
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log(logging.ERROR, message, **kwargs)


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    enable_console: bool = True
) -> None:
    """
    Configure the service loggers. Safe to call more than once; the last call wins.

    Args:
        log_level: Level for the service loggers (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional path for JSON lines output (rotated at 10MB, 5 backups)
        enable_console: Whether to log human readable lines to stdout
    """
    level = log_level.upper()
    handlers: Dict[str, Dict[str, Any]] = {}
    if enable_console:
        handlers["console"] = {
            "class": "logging.StreamHandler",
            "stream": sys.stdout,
            "formatter": "keyvalue",
        }
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
            "encoding": "utf-8",
            "formatter": "json",
        }
    names = list(handlers)

    loggers: Dict[str, Dict[str, Any]] = {
        ROOT_LOGGER: {"level": level, "handlers": names, "propagate": False},
    }
    for name, lib_level in _LIBRARY_LEVELS.items():
        loggers[name] = {"level": lib_level, "handlers": names, "propagate": False}

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": JSONFormatter},
            "keyvalue": {"()": KeyValueFormatter},
        },
        "handlers": handlers,
        "loggers": loggers,
        "root": {"level": "WARNING", "handlers": names},
    })


def get_logger(name: str) -> StructuredLogger:
    """Structured logger under the ``catalog_sync`` hierarchy (``__name__`` is the usual argument)."""
    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return StructuredLogger(name)
    return StructuredLogger(f"{ROOT_LOGGER}.{name}")


def log_business_event(
    event_type: str,
    details: Dict[str, Any],
    task_id: Optional[str] = None,
    request_id: Optional[str] = None
) -> None:
    """
    Audit trail entry for state changes worth keeping (identity bound, subject parked,
    task dead-lettered, export saved).
    """
    get_logger("audit").info(
        f"Business event: {event_type}",
        event_type=event_type,
        task_id=task_id,
        request_id=request_id,
        **details
    )


def log_performance(
    operation: str,
    duration_ms: float,
    additional_data: Optional[Dict[str, Any]] = None
) -> None:
    data = dict(additional_data or {})
    data["duration_ms"] = round(duration_ms, 2)
    get_logger("performance").info(f"Performance: {operation}", operation=operation, **data)
