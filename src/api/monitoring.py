"""
Monitoring and metrics API endpoints.

This blueprint provides:
- /metrics: Prometheus-compatible metrics endpoint
- /metrics/json: JSON format metrics
- /health: Basic health check
- /health/live: Kubernetes liveness probe
- /health/ready: Kubernetes readiness probe
"""

import logging
import time

from flask import Blueprint, Response, jsonify

from api.state import get_services
from monitoring import metrics
from storage import StorageError

logger = logging.getLogger(__name__)

# Create the blueprint
monitoring_bp = Blueprint('monitoring', __name__)

# Track startup time
_startup_time = time.time()


@monitoring_bp.route('/metrics', methods=['GET'])
def prometheus_metrics():
    """
    Prometheus-compatible metrics endpoint.

    Returns metrics in Prometheus text exposition format.
    """
    _update_dynamic_metrics()
    return Response(
        metrics.to_prometheus(),
        mimetype='text/plain; charset=utf-8'
    )


@monitoring_bp.route('/metrics/json', methods=['GET'])
def json_metrics():
    """Return all collected metrics as JSON."""
    _update_dynamic_metrics()
    return jsonify(metrics.get_all())


@monitoring_bp.route('/health', methods=['GET'])
def health():
    """
    Basic health check endpoint.

    Returns service status, storage usage, queue depth and circuit state.
    """
    services = get_services()
    storage = _check_storage()

    return jsonify({
        "status": "healthy" if storage["available"] else "degraded",
        "service": "VoiceCast API",
        "version": _get_version(),
        "uptime_seconds": time.time() - _startup_time,
        "checks": {
            "storage": storage,
            "pending_messages": {
                "queued": _pending_depth(),
                "max_retries": services.pending.max_retries,
            },
            "messaging_circuit": services.delivery.circuit.to_dict(),
        }
    })


@monitoring_bp.route('/health/live', methods=['GET'])
def liveness():
    """
    Kubernetes liveness probe.

    Returns 200 if the application is running.
    """
    return jsonify({"status": "alive"})


@monitoring_bp.route('/health/ready', methods=['GET'])
def readiness():
    """
    Kubernetes readiness probe.

    Returns 200 if the storage backend is reachable.
    """
    issues = []

    try:
        if not get_services().store.backend.is_available():
            issues.append("storage: not available")
    except StorageError as e:
        issues.append(f"storage: {e}")

    if issues:
        return jsonify({
            "status": "not_ready",
            "issues": issues,
        }), 503

    return jsonify({"status": "ready"})


def _get_version() -> str:
    """Get application version."""
    try:
        from importlib.metadata import PackageNotFoundError, version
        return version("voicecast-services")
    except PackageNotFoundError:
        return "0.1.0"


def _pending_depth() -> int:
    try:
        return len(get_services().store.get("pendingMessages", []))
    except StorageError:
        return -1


def _check_storage() -> dict:
    """Check storage backend status and quota usage."""
    store = get_services().store
    try:
        available = store.backend.is_available()
        return {
            "status": "ok" if available else "degraded",
            "available": available,
            "backend": store.backend.__class__.__name__,
            "usage": store.usage() if available else None,
        }
    except StorageError as e:
        return {
            "status": "error",
            "available": False,
            "error": str(e),
        }


def _update_dynamic_metrics():
    """Update gauges before export."""
    store = get_services().store
    try:
        if store.backend.is_available():
            metrics.set_gauge("storage_available", 1)
            usage = store.usage()
            metrics.set_gauge("storage_used_bytes", usage["used_bytes"])
            metrics.set_gauge("storage_keys", usage["key_count"])
            metrics.set_gauge("pending_messages", _pending_depth())
        else:
            metrics.set_gauge("storage_available", 0)
    except StorageError as e:
        logger.warning(f"Could not refresh storage gauges: {e}")
        metrics.set_gauge("storage_available", 0)
