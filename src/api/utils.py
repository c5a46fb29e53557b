"""
Shared utilities for the VoiceCast API.

This module contains common utilities, decorators, and helpers
used across all API blueprints.
"""

import secrets
from functools import wraps
from typing import Any

from flask import current_app, jsonify, request

# Bounded parameters - max values for list endpoints
MAX_RESULTS = 100
MAX_OFFSET = 100000


# ============================================================
# Validation Utilities
# ============================================================

def validate_pagination_params(
    limit: int,
    offset: int = 0,
    max_limit: int = MAX_RESULTS,
    max_offset: int = MAX_OFFSET
) -> tuple:
    """
    Bound pagination parameters.

    Returns:
        Tuple of (bounded_limit, bounded_offset)
    """
    bounded_limit = max(1, min(int(limit) if limit else max_limit, max_limit))
    bounded_offset = max(0, min(int(offset) if offset else 0, max_offset))
    return bounded_limit, bounded_offset


def validate_json_schema(
    data: dict[str, Any],
    required_fields: dict[str, type | tuple[type, ...]],
    optional_fields: dict[str, type | tuple[type, ...]] | None = None,
    max_lengths: dict[str, int] | None = None
) -> tuple:
    """
    Validate JSON payload against a simple schema.

    Args:
        data: The JSON data to validate
        required_fields: Dict mapping field names to expected types
        optional_fields: Dict mapping optional field names to expected types
        max_lengths: Dict mapping field names to maximum string lengths

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not isinstance(data, dict):
        return False, "Request body must be a JSON object"

    for field_name, expected_type in required_fields.items():
        if field_name not in data:
            return False, f"Missing required field: {field_name}"
        if not _is_instance(data[field_name], expected_type):
            return False, f"Field '{field_name}' must be of type {_type_name(expected_type)}"

    if optional_fields:
        for field_name, expected_type in optional_fields.items():
            if field_name in data and data[field_name] is not None:
                if not _is_instance(data[field_name], expected_type):
                    return False, f"Field '{field_name}' must be of type {_type_name(expected_type)}"

    if max_lengths:
        for field_name, max_len in max_lengths.items():
            if field_name in data and isinstance(data[field_name], str):
                if len(data[field_name]) > max_len:
                    return False, f"Field '{field_name}' exceeds maximum length of {max_len}"

    return True, None


def _is_instance(value: Any, expected: type | tuple[type, ...]) -> bool:
    # JSON booleans are not amounts
    if isinstance(value, bool) and expected in (int, float, (int, float)):
        return False
    return isinstance(value, expected)


def _type_name(expected: type | tuple[type, ...]) -> str:
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


def json_body() -> Any:
    """Request body as JSON, or None if it is missing or malformed."""
    return request.get_json(silent=True)


def error_response(message: str, status: int, **extra):
    return jsonify({"error": message, **extra}), status


# ============================================================
# Authentication Decorator
# ============================================================

def require_api_key(f):
    """Decorator to require API key authentication."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_app.config.get("VOICECAST_REQUIRE_AUTH", True):
            return f(*args, **kwargs)

        provided_key = request.headers.get('X-API-Key')

        if not provided_key:
            return jsonify({
                "error": "API key required",
                "hint": "Provide API key in X-API-Key header"
            }), 401

        api_key = current_app.config.get("VOICECAST_API_KEY")
        if not api_key:
            return jsonify({
                "error": "Server API key not configured",
                "hint": "Set VOICECAST_API_KEY environment variable"
            }), 503

        if not secrets.compare_digest(provided_key, api_key):
            return jsonify({"error": "Invalid API key"}), 403

        return f(*args, **kwargs)
    return decorated_function
