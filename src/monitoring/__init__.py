"""
Monitoring and metrics infrastructure for VoiceCast services.

This package provides:
- Application metrics collection (counters, gauges, histograms)
- Structured logging with JSON output and redaction
- Request timing middleware
- ``timed``/``counted`` decorators for service calls

Usage:
    from monitoring import metrics, get_logger

    metrics.increment("escrow_transitions_total", labels={"to": "held"})

    logger = get_logger(__name__)
    logger.info("Escrow captured", extra={"payment_id": payment_id})
"""

from monitoring.logging import LoggingContext, configure_logging, get_logger
from monitoring.metrics import MetricsCollector, metrics
from monitoring.middleware import counted, setup_request_logging, timed

__all__ = [
    "LoggingContext",
    "MetricsCollector",
    "metrics",
    "get_logger",
    "configure_logging",
    "setup_request_logging",
    "timed",
    "counted",
]
