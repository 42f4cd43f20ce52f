"""JSON logging for the responder.

Every record is one JSON object on stdout. Request correlation ids carried in
a record's context (``request_id``, ``conversation_id``, ``dedup_key``) are
promoted to top-level keys so one pipeline run can be followed across
services; the rest of the context stays nested under ``context``.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

SERVICE_NAME = "aida-responder"
CORRELATION_FIELDS = ("request_id", "conversation_id", "dedup_key")
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine")


def split_context(context: Optional[Mapping[str, Any]]) -> tuple[Dict[str, Any], Dict[str, Any]]:
    """Separate correlation ids from the remaining context fields."""
    correlation: Dict[str, Any] = {}
    rest: Dict[str, Any] = {}
    for key, value in (context or {}).items():
        if key in CORRELATION_FIELDS:
            if value is not None:
                correlation[key] = value
        else:
            rest[key] = value
    return correlation, rest


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        correlation, context = split_context(getattr(record, "context", None))

        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "service": SERVICE_NAME,
            "logger": record.name,
            **correlation,
            "message": record.getMessage(),
        }
        if context:
            log_data["context"] = context
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Route all logging through a single JSON stdout handler."""
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"aida.{name}")


class LoggerAdapter(logging.LoggerAdapter):
    """Carries a request's correlation ids into every record it emits.

    Per-call fields go in ``context=`` and are merged over the adapter's own.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = kwargs.pop("context", None)
        if context or self.extra:
            kwargs["extra"] = {"context": {**self.extra, **(context or {})}}
        return msg, kwargs
