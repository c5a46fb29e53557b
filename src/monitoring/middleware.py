"""
Flask middleware and decorators for request logging and metrics.

Provides:
- Request/response logging with timing
- Automatic metrics collection for all requests
- Request ID tracking (X-Request-ID)
- ``timed`` and ``counted`` decorators for service calls
"""

import logging
import re
import time
import uuid
from collections.abc import Callable
from functools import wraps

from flask import Flask, Response, g, request

from monitoring.logging import clear_request_context, set_request_context
from monitoring.metrics import metrics

logger = logging.getLogger("voicecast.request")

# Generated record ids such as PAYPAL_ORDER_1700000000000_AB12CD34 or msg_1700000000000_x1y2z3
_RECORD_ID = re.compile(r"^(?:[A-Za-z]+_)+\d{10,}_[A-Za-z0-9]+$")


def setup_request_logging(app: Flask) -> None:
    """
    Set up request logging middleware for a Flask app.

    Args:
        app: Flask application instance
    """

    @app.before_request
    def before_request():
        g.request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        g.start_time = time.perf_counter()

        set_request_context(
            request_id=g.request_id,
            method=request.method,
            path=request.path,
        )
        metrics.increment_gauge("http_requests_active")

    @app.after_request
    def after_request(response: Response) -> Response:
        _record_request_metrics(response.status_code)

        if hasattr(g, "request_id"):
            response.headers["X-Request-ID"] = g.request_id

        return response

    @app.teardown_request
    def teardown_request(exception=None):
        clear_request_context()
        metrics.decrement_gauge("http_requests_active")

        if exception:
            logger.error(
                "Request failed with exception",
                exc_info=exception,
                extra={
                    "request_id": getattr(g, "request_id", "unknown"),
                    "path": request.path,
                    "method": request.method,
                },
            )


def _record_request_metrics(status_code: int) -> None:
    """Record metrics and a log line for a completed request."""
    duration_ms = 0.0
    if hasattr(g, "start_time"):
        duration_ms = (time.perf_counter() - g.start_time) * 1000

    path = _normalize_path(request.path)
    metrics.increment(
        "http_requests_total",
        labels={"method": request.method, "path": path, "status": str(status_code)},
    )
    metrics.timing(
        "http_request_duration_ms",
        duration_ms,
        labels={"method": request.method, "path": path},
    )

    if status_code >= 500:
        level = logging.ERROR
    elif status_code >= 400:
        level = logging.WARNING
    else:
        level = logging.INFO

    logger.log(
        level,
        f"{request.method} {request.path} -> {status_code}",
        extra={
            "status_code": status_code,
            "duration_ms": round(duration_ms, 2),
            "request_id": getattr(g, "request_id", "unknown"),
        },
    )


def _normalize_path(path: str) -> str:
    """
    Normalize path for metrics labels.

    Replaces record ids and numeric segments with placeholders to prevent
    high cardinality in metrics.
    """
    parts = path.strip("/").split("/")
    normalized = []

    for part in parts:
        if part.isdigit():
            normalized.append(":id")
        elif _RECORD_ID.match(part):
            normalized.append(":record")
        elif len(part) == 36 and part.count("-") == 4:
            normalized.append(":uuid")
        else:
            normalized.append(part)

    return "/" + "/".join(normalized) if normalized else "/"


def timed(metric_name: str | None = None):
    """
    Decorator for timing function execution.

    Args:
        metric_name: Custom metric name (defaults to function name)

    Usage:
        @timed("message_delivery_ms")
        def deliver(payload):
            ...
    """

    def decorator(func: Callable) -> Callable:
        name = metric_name or f"function_{func.__name__}"

        @wraps(func)
        def wrapper(*args, **kwargs):
            with metrics.timer(name):
                return func(*args, **kwargs)

        return wrapper

    return decorator


def counted(metric_name: str | None = None, labels: dict[str, str] | None = None):
    """
    Decorator for counting calls that return without raising.

    Args:
        metric_name: Custom metric name (defaults to function name)
        labels: Additional labels for the counter

    Usage:
        @counted("moderation_flags_total")
        def flag(message_id, reason, admin_id):
            ...
    """

    def decorator(func: Callable) -> Callable:
        name = metric_name or f"function_{func.__name__}_total"

        @wraps(func)
        def wrapper(*args, **kwargs):
            result = func(*args, **kwargs)
            metrics.increment(name, labels=labels)
            return result

        return wrapper

    return decorator
