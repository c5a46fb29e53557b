"""
Structured logging for VoiceCast services.

Provides JSON-formatted logging suitable for log aggregation systems,
and a colored console format for development.

Features:
- JSON output format for easy parsing (LOG_FORMAT=json)
- Request context (request_id, user, etc.)
- Redaction of credentials, payment secrets and contact details
- Configurable log level via LOG_LEVEL
"""

import json
import logging
import os
import re
import sys
import threading
from datetime import UTC, datetime
from typing import Any

# ============================================================
# Sensitive Data Redaction
# ============================================================

# Patterns for sensitive data that should be redacted in logs
SENSITIVE_PATTERNS = [
    # API keys, tokens and passwords in key=value or JSON form
    (re.compile(r"(api[_-]?key|apikey|token|secret|password|passwd|pwd)([\"']?\s*[:=]\s*[\"']?)([^\s\"',}{]+)", re.IGNORECASE), r"\1\2[REDACTED]"),
    # Bearer tokens
    (re.compile(r"(Bearer\s+)([^\s]+)", re.IGNORECASE), r"\1[REDACTED]"),
    # PayPal client credentials sent as Basic auth
    (re.compile(r"(Basic\s+)([A-Za-z0-9+/=]{16,})", re.IGNORECASE), r"\1[REDACTED]"),
    # PBKDF2 password hashes
    (re.compile(r"pbkdf2_sha256\$\d+\$[^\s\"',]+"), "[REDACTED_HASH]"),
    # Email addresses (partial redaction)
    (re.compile(r"([a-zA-Z0-9._%+-]+)@([a-zA-Z0-9.-]+\.[a-zA-Z]{2,})"), r"\1[...]@\2"),
    # Card numbers (basic pattern)
    (re.compile(r"\b(\d{4})[- ]?(\d{4})[- ]?(\d{4})[- ]?(\d{4})\b"), r"\1-****-****-\4"),
]

# Fields that should be completely redacted
REDACTED_FIELDS = {
    "password",
    "passwd",
    "pwd",
    "password_hash",
    "passwordhash",
    "secret",
    "client_secret",
    "api_key",
    "apikey",
    "token",
    "access_token",
    "refresh_token",
    "auth_token",
    "authtoken",
    "authorization",
    "credential",
    "credentials",
}


# LogRecord attributes that are not user-supplied extras
_RECORD_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName", "levelname",
    "levelno", "lineno", "module", "msecs", "pathname", "process",
    "processName", "relativeCreated", "stack_info", "exc_info", "exc_text",
    "thread", "threadName", "message", "taskName",
})


def redact_string(text: str) -> str:
    """
    Redact sensitive patterns from a string.

    Args:
        text: The string to redact

    Returns:
        String with sensitive patterns redacted
    """
    if not isinstance(text, str):
        return text

    for pattern, replacement in SENSITIVE_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def redact_sensitive_data(data: Any, depth: int = 0, max_depth: int = 10) -> Any:
    """
    Recursively redact sensitive data from log payloads.

    Dict keys are matched case-insensitively against REDACTED_FIELDS, so
    both ``authToken`` and ``auth_token`` are hidden.
    """
    if depth > max_depth:
        return "[MAX_DEPTH_EXCEEDED]"

    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            normalized = str(key).lower().replace("-", "_")
            if normalized in REDACTED_FIELDS:
                result[key] = "[REDACTED]"
            else:
                result[key] = redact_sensitive_data(value, depth + 1, max_depth)
        return result

    if isinstance(data, (list, tuple)):
        return [redact_sensitive_data(item, depth + 1, max_depth) for item in data]

    if isinstance(data, str):
        return redact_string(data)

    return data


def _record_extras(record: logging.LogRecord) -> dict[str, Any]:
    """Fields passed to a log call through ``extra=``."""
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRS
    }


# Thread-local storage for request context
_request_context = threading.local()


def set_request_context(**kwargs) -> None:
    """Set context values for the current request."""
    if not hasattr(_request_context, "data"):
        _request_context.data = {}
    _request_context.data.update(kwargs)


def clear_request_context() -> None:
    """Clear request context after request completes."""
    _request_context.data = {}


def get_request_context() -> dict[str, Any]:
    """Get current request context."""
    return getattr(_request_context, "data", {})


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter for structured logging.

    Output format:
    {
        "timestamp": "2026-03-02T10:30:00.000000+00:00",
        "level": "INFO",
        "service": "voicecast",
        "logger": "escrow",
        "message": "Escrow PAYPAL_ORDER_... pending -> held",
        "request_id": "abc123",
        ...
    }
    """

    def __init__(self, service: str = "voicecast", redact_sensitive: bool = True):
        super().__init__()
        self.service = service
        self.redact_sensitive = redact_sensitive

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        if self.redact_sensitive:
            message = redact_string(message)

        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "service": self.service,
            "logger": record.name,
            "message": message,
        }

        if record.levelno >= logging.WARNING:
            log_entry["location"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        context = get_request_context()
        if context:
            log_entry["context"] = (
                redact_sensitive_data(context) if self.redact_sensitive else context
            )

        extras = _record_extras(record)
        if self.redact_sensitive:
            extras = redact_sensitive_data(extras)
        log_entry.update(extras)

        return json.dumps(log_entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable console formatter with colors.

    For development use - shows colored, readable output. Extras are
    redacted the same way as in JSON output.
    """

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        reset = self.RESET

        timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
        msg = (
            f"{color}{timestamp} {record.levelname[0]} [{record.name}]{reset} "
            f"{redact_string(record.getMessage())}"
        )

        context = get_request_context()
        if context:
            ctx_str = " ".join(f"{k}={v}" for k, v in context.items())
            msg += f" {color}({ctx_str}){reset}"

        extras = redact_sensitive_data(_record_extras(record))
        if extras:
            msg += " [" + ", ".join(f"{k}={v}" for k, v in extras.items()) + "]"

        if record.exc_info:
            msg += "\n" + self.formatException(record.exc_info)

        return msg


def configure_logging(
    level: str = "INFO",
    json_output: bool | None = None,
    log_file: str | None = None,
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Use JSON format (defaults to LOG_FORMAT=json)
        log_file: Optional file path for log output (always JSON)
    """
    if json_output is None:
        json_output = os.getenv("LOG_FORMAT", "").lower() == "json"

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(JSONFormatter() if json_output else ConsoleFormatter())
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    # Reduce noise from third-party libraries
    for noisy in ("urllib3", "werkzeug", "redis"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: Logger name (typically __name__)
    """
    return logging.getLogger(name)


class LoggingContext:
    """
    Context manager for adding temporary context to logs.

    Usage:
        with LoggingContext(sweep_id="abc123", admin_id="admin_1"):
            logger.info("Sweeping pending messages")
    """

    def __init__(self, **kwargs):
        self.context = kwargs
        self.previous_context: dict[str, Any] = {}

    def __enter__(self):
        self.previous_context = get_request_context().copy()
        set_request_context(**self.context)
        return self

    def __exit__(self, _exc_type, _exc_val, _exc_tb):
        clear_request_context()
        if self.previous_context:
            set_request_context(**self.previous_context)
        return False


# Initialize default logging on import
if not logging.getLogger().handlers:
    configure_logging(level=os.getenv("LOG_LEVEL", "INFO"))
