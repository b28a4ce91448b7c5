"""Shared utility functions for blueprints and services.

as_utc:          attach UTC to naive datetimes read back from SQLite
utcnow:          timezone-aware "now"
parse_datetime:  request payload → aware datetime (raises ValueError)
parse_int:       request payload → int or None (raises ValueError)
"""
import logging
from datetime import date, datetime, time, timezone

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value):
    """Return *value* as an aware UTC datetime.

    SQLite drops tzinfo on ``DateTime(timezone=True)`` columns, so anything
    read back naive is assumed to have been written as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value):
    """Parse an ISO date or datetime string to an aware UTC datetime.

    Returns None for empty input. A bare date maps to midnight UTC.
    Raises ValueError on anything unparseable so blueprints can answer 400.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(text))
    except ValueError as exc:
        raise ValueError(
            f"Invalid datetime {value!r}. Use ISO 8601 (YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS)."
        ) from exc


def parse_int(value, field):
    """Coerce a payload value to int. None/empty passes through."""
    if value in (None, ""):
        return None
    if isinstance(value, bool):
        raise ValueError(f"{field} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{field} must be an integer") from exc
