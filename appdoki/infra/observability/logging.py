"""Structured logging for appdoki.

Every record passes two filters before formatting:

- CorrelationIDFilter stamps the request's correlation id (a contextvar set
  by the HTTP middleware) onto the record.
- RedactionFilter scrubs credential material (JWTs, bearer values, client
  secrets, authorization codes, database passwords) from the message and
  the ``error`` field.

JSONFormatter renders one JSON document per line; a fixed set of ``extra``
attributes is promoted into the document.
"""

import contextvars
import json
import logging
import re
import sys
from datetime import UTC, datetime
from typing import Any

# Correlation ID for the current request (async-safe)
correlation_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id",
    default=None,
)

NO_CORRELATION_ID = "no-correlation-id"

# Extra record attributes promoted into the JSON document
STRUCTURED_FIELDS = (
    "user_sub",
    "user_id",
    "path",
    "method",
    "outcome",
    "error",
    "token_hash",
    "provider",
    "status_code",
)

# Third-party loggers that are only useful at WARNING and above
NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine")

_REDACTIONS: tuple[tuple[re.Pattern[str], str], ...] = (
    (
        re.compile(r"eyJ[A-Za-z0-9_-]*\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]*"),
        "[REDACTED_JWT]",
    ),
    (re.compile(r"(?i)\b(bearer)\s+[A-Za-z0-9._~+/=-]+"), r"\1 [REDACTED]"),
    (
        re.compile(r"(?i)\b(client_secret|code|refresh_token|access_token|id_token)=[^&\s,;]+"),
        r"\1=[REDACTED]",
    ),
    (re.compile(r"(?i)\b([a-z][a-z0-9+.-]*://[^:/@\s]+):[^@/\s]+@"), r"\1:***@"),
)


def redact_secrets(text: str) -> str:
    """Scrub credential material from a log string.

    Example:
        >>> redact_secrets("POST /token code=4/0Ab client_secret=s3cr3t")
        'POST /token code=[REDACTED] client_secret=[REDACTED]'
    """
    for pattern, replacement in _REDACTIONS:
        text = pattern.sub(replacement, text)
    return text


def set_correlation_id(correlation_id: str) -> None:
    correlation_id_var.set(correlation_id)


class CorrelationIDFilter(logging.Filter):
    """Inject the current correlation ID into every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get() or NO_CORRELATION_ID  # type: ignore
        return True


class RedactionFilter(logging.Filter):
    """Scrub credentials from the rendered message and the ``error`` field.

    The message is rendered once and args are cleared, so later handlers see
    the redacted text.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_secrets(message)
        if redacted != message:
            record.msg = redacted
            record.args = None

        error = getattr(record, "error", None)
        if isinstance(error, str):
            record.error = redact_secrets(error)  # type: ignore
        return True


class JSONFormatter(logging.Formatter):
    """Render log records as single-line JSON documents."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = self._base_fields(record)

        for name in STRUCTURED_FIELDS:
            if hasattr(record, name):
                log_entry[name] = getattr(record, name)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            log_entry["stack_info"] = record.stack_info

        return json.dumps(log_entry, default=str)

    @staticmethod
    def _base_fields(record: logging.LogRecord) -> dict[str, Any]:
        return {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", NO_CORRELATION_ID),
        }


TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(correlation_id)s - %(message)s"


def _build_handler(
    handler: logging.Handler, level: str, formatter: logging.Formatter
) -> logging.Handler:
    handler.setLevel(level)
    handler.addFilter(CorrelationIDFilter())
    handler.addFilter(RedactionFilter())
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: str | None = None,
) -> None:
    """Configure root logging for the service.

    Console output goes to stdout, as JSON or as single-line text. The
    optional log file is always JSON.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Whether console output is JSON
        log_file: Optional file path for an additional JSON log
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_formatter: logging.Formatter
    if json_format:
        console_formatter = JSONFormatter()
    else:
        console_formatter = logging.Formatter(fmt=TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    root_logger.addHandler(
        _build_handler(logging.StreamHandler(sys.stdout), level, console_formatter)
    )

    if log_file:
        root_logger.addHandler(
            _build_handler(logging.FileHandler(log_file), level, JSONFormatter())
        )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.info(
        "Logging configured",
        extra={"level": level, "json_format": json_format, "log_file": log_file},
    )


__all__ = [
    "correlation_id_var",
    "set_correlation_id",
    "redact_secrets",
    "CorrelationIDFilter",
    "RedactionFilter",
    "JSONFormatter",
    "setup_logging",
]
