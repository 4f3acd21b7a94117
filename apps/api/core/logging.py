"""
Structured logging shared by the API and the recommendation worker.

Records carry the service name plus whatever is bound with log_context():
request_id on the API side, activity_id and task_id in the worker. JSON
output in production, a single text line otherwise.
"""
import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

from core.config import settings

_context: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})

_NOISY_LOGGERS = {
    "sqlalchemy.engine": logging.WARNING,
    "urllib3": logging.WARNING,
    "kombu": logging.WARNING,
    "celery": logging.INFO,
}


def current_context() -> Dict[str, Any]:
    return dict(_context.get())


@contextmanager
def log_context(**fields: Any) -> Iterator[Dict[str, Any]]:
    """Bind fields to every record logged inside the block (nests)."""
    merged = {**_context.get(), **{k: v for k, v in fields.items() if v is not None}}
    token = _context.set(merged)
    try:
        yield merged
    finally:
        _context.reset(token)


class ContextFilter(logging.Filter):
    """Copies the bound context and service name onto each record."""

    def __init__(self, service: str):
        super().__init__()
        self.service = service

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = self.service
        record.context = current_context()
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": getattr(record, "service", None),
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(getattr(record, "context", {}))

        # Per-call fields: logger.info(..., extra={"extra_fields": {...}})
        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            entry.update(extra_fields)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    def __init__(self):
        super().__init__("%(asctime)s - %(service)s - %(name)s - %(levelname)s - %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = getattr(record, "context", None)
        if context:
            line += " [" + " ".join(f"{k}={v}" for k, v in sorted(context.items())) + "]"
        return line


def setup_logging(service: str = "api", level: Optional[str] = None) -> logging.Logger:
    """
    Configure the root logger for one process.

    JSON when LOG_FORMAT=json or in production, text otherwise.
    """
    log_level = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)

    if settings.LOG_FORMAT == "json" or settings.is_production:
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = TextFormatter()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(formatter)
    handler.addFilter(ContextFilter(service))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for name, noisy_level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)

    return root_logger
