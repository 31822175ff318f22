"""Model-level validation utilities for data integrity.

Provides reusable validators that enforce business rules at the ORM level,
preventing invalid data from reaching the database regardless of which
service writes the data.
"""

import re
from decimal import Decimal

HHMM_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def non_negative(key: str, value):
    """Validate that a numeric value is >= 0."""
    if value is not None:
        v = Decimal(str(value)) if not isinstance(value, Decimal) else value
        if v < 0:
            raise ValueError(f"{key} cannot be negative, got {value}")
    return value


def positive(key: str, value):
    """Validate that a numeric value is > 0."""
    if value is not None:
        v = Decimal(str(value)) if not isinstance(value, Decimal) else value
        if v <= 0:
            raise ValueError(f"{key} must be positive, got {value}")
    return value


def validate_list(key: str, value):
    """Validate that a JSON column value is a list (or None)."""
    if value is not None and not isinstance(value, list):
        raise ValueError(f"{key} must be a list, got {type(value).__name__}")
    return value


def validate_weekdays(key: str, value):
    """Validate a list of weekday numbers, 0=Sunday .. 6=Saturday."""
    validate_list(key, value)
    for day in value or []:
        if not isinstance(day, int) or isinstance(day, bool) or not 0 <= day <= 6:
            raise ValueError(f"{key} entries must be integers 0..6, got {day!r}")
    return value


def validate_time_windows(key: str, value):
    """Validate a list of {"from": "HH:MM", "to": "HH:MM"} windows."""
    validate_list(key, value)
    for i, window in enumerate(value or []):
        if not isinstance(window, dict):
            raise ValueError(f"{key}[{i}] must be a dict, got {type(window).__name__}")
        for edge in ("from", "to"):
            if not HHMM_RE.match(str(window.get(edge, ""))):
                raise ValueError(f"{key}[{i}].{edge} must be HH:MM, got {window.get(edge)!r}")
    return value
