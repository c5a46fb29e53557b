"""
Shared helpers for persisted marketplace records.

Every record written by a service is a camelCase JSON object carrying a
``schemaVersion``. Services validate records as they read them and upgrade
older shapes in place.
"""

import secrets
import string
import time
from datetime import UTC, datetime
from typing import Any

SCHEMA_VERSION = 1

_UPPER_ALNUM = string.ascii_uppercase + string.digits
_LOWER_ALNUM = string.ascii_lowercase + string.digits


class RecordValidationError(ValueError):
    """Raised when a stored record does not match its expected shape."""

    def __init__(self, kind: str, record_id: Any, problem: str):
        super().__init__(f"Invalid {kind} record {record_id!r}: {problem}")
        self.kind = kind
        self.record_id = record_id
        self.problem = problem


def utc_now() -> datetime:
    return datetime.now(UTC)


def utc_now_iso() -> str:
    """Current time as an ISO-8601 UTC timestamp."""
    return utc_now().isoformat()


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO timestamp, accepting the trailing ``Z`` browsers emit."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def generate_id(prefix: str, suffix_length: int = 9, uppercase: bool = False) -> str:
    """
    Build a record id of the form ``<prefix>_<epoch ms>_<random suffix>``.

    Args:
        prefix: Record type prefix (``msg``, ``PAYPAL_ORDER``, ...)
        suffix_length: Length of the random part
        uppercase: Use an uppercase alphabet for the suffix
    """
    alphabet = _UPPER_ALNUM if uppercase else _LOWER_ALNUM
    suffix = "".join(secrets.choice(alphabet) for _ in range(suffix_length))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


def require_fields(kind: str, record: Any, fields: tuple[str, ...]) -> None:
    """
    Check that ``record`` is a dict containing every name in ``fields``.

    Raises:
        RecordValidationError: If the record is malformed
    """
    if not isinstance(record, dict):
        raise RecordValidationError(kind, None, f"expected object, got {type(record).__name__}")
    missing = [name for name in fields if name not in record]
    if missing:
        raise RecordValidationError(kind, record.get("id"), f"missing {', '.join(missing)}")
