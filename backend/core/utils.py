"""
Utility functions for the workflow execution engine.

Includes:
- UTC datetime helpers
- ID generation
- Dot-path lookup into nested dicts
"""

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4


def utc_now() -> datetime:
    """
    Get the current UTC datetime.

    Returns:
        Current datetime in UTC timezone
    """
    return datetime.now(timezone.utc)


def new_id(prefix: str = "") -> str:
    """Generate a UUID string, optionally prefixed (``"exec_<uuid>"``)."""
    value = str(uuid4())
    return f"{prefix}_{value}" if prefix else value


def isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp (or pass a datetime through)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


_MISSING = object()


def resolve_path(data: Any, path: str, default: Any = None) -> Any:
    """Resolve a dot-notation path like ``'steps.approve.decision'``.

    Dict keys are tried as-is first, then with ``_``/``-`` swapped so
    ``step_1`` also finds ``step-1``. List segments must be integer indices.
    Missing segments return ``default``.
    """
    if not path:
        return default

    current = data
    for part in path.split("."):
        if isinstance(current, dict):
            value = current.get(part, _MISSING)
            if value is _MISSING:
                alt = part.replace("_", "-") if "_" in part else part.replace("-", "_")
                value = current.get(alt, _MISSING)
            if value is _MISSING:
                return default
            current = value
        elif isinstance(current, (list, tuple)):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                return default
        else:
            return default

    return current
