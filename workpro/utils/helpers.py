"""Shared datetime and parsing helpers used across services and blueprints."""
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime | None) -> datetime | None:
    """Normalise a datetime to UTC-aware regardless of whether SQLite stored it naive.

    SQLite's DateTime columns return naive datetimes; PostgreSQL returns tz-aware.
    All comparisons against ``utcnow()`` must go through this helper so the same
    code works in both environments.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_datetime(value):
    """Parse an ISO-8601 string (``Z`` suffix allowed) to a UTC-aware datetime.

    Returns None for empty input. Raises ValueError on anything unparsable so
    request contracts can turn it into a field error.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(text))
    except ValueError as exc:
        raise ValueError(f"Invalid datetime {value!r}. Use ISO-8601.") from exc
