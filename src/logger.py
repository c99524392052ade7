"""
Structured logging setup for the takedown service.

Records are written to stdout as one JSON object per line. Cloud Logging
picks up ``severity`` and ``message`` from that shape, so queue runs in the
Cloud Function and API requests land with the right level and searchable
fields (``queue_item_id``, ``user_id``, ``batch_id`` ...).
"""

import logging
import os
import json
from typing import Any, Dict, Optional

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
DEBUG = os.environ.get("DEBUG", "false").lower() == "true"

if DEBUG:
    LOG_LEVEL = "DEBUG"

# Set by the Cloud Functions / Cloud Run runtime
SERVICE_NAME = os.environ.get("K_SERVICE", "productguard-takedown")

# Attributes every LogRecord carries; anything else came in through `extra`
RESERVED_ATTRS = frozenset({
    "args", "asctime", "created", "exc_info", "exc_text", "filename",
    "funcName", "id", "levelname", "levelno", "lineno", "module",
    "msecs", "message", "msg", "name", "pathname", "process",
    "processName", "relativeCreated", "stack_info", "thread", "threadName",
    "taskName",
})


class JsonFormatter(logging.Formatter):
    """
    Render a LogRecord as a single-line JSON object.

    Fields passed through ``extra`` become top-level keys; values that are not
    JSON-native (datetimes, UUIDs) are stringified.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_record: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "severity": record.levelname,
            "level": record.levelname,
            "service": SERVICE_NAME,
            "name": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in RESERVED_ATTRS:
                log_record[key] = value

        return json.dumps(log_record, default=str)


def get_logger(name: str) -> logging.Logger:
    """
    Return a logger writing JSON lines at the configured level.

    Handlers are attached once per logger name, so repeated calls from
    module imports are safe.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    return logger


# Base logger for the service layer
logger = get_logger("takedown_ai")


def _safe_extra(fields: Dict[str, Any]) -> Dict[str, Any]:
    # LogRecord refuses extras that shadow its own attributes
    return {(f"ctx_{k}" if k in RESERVED_ATTRS else k): v for k, v in fields.items()}


def log_with_context(
    level: int,
    msg: str,
    context: Optional[Dict[str, Any]] = None,
    **kwargs: Any
) -> None:
    """
    Log a message with context fields.

    Args:
        level: The logging level (e.g., logging.INFO).
        msg: The log message.
        context: Optional dictionary merged into the keyword fields.
        **kwargs: Fields emitted as top-level keys of the JSON record.
    """
    if context:
        kwargs.update(context)
    logger.log(level, msg, extra=_safe_extra(kwargs))


def info(msg: str, context: Optional[Dict[str, Any]] = None, **kwargs: Any) -> None:
    log_with_context(logging.INFO, msg, context, **kwargs)


def warning(msg: str, context: Optional[Dict[str, Any]] = None, **kwargs: Any) -> None:
    log_with_context(logging.WARNING, msg, context, **kwargs)


def exception(
    msg: str,
    exc: Optional[Exception] = None,
    context: Optional[Dict[str, Any]] = None,
    **kwargs: Any
) -> None:
    """
    Log an error with its traceback and the exception's type and message as fields.
    """
    if context:
        kwargs.update(context)
    if exc:
        kwargs["exception_type"] = type(exc).__name__
        kwargs["exception_message"] = str(exc)
        logger.error(msg, exc_info=exc, extra=_safe_extra(kwargs))
    else:
        logger.error(msg, extra=_safe_extra(kwargs))
