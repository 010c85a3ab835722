"""Small parsing helpers shared by services and blueprints."""

from __future__ import annotations

from datetime import date, datetime, time, timezone


def parse_date(val) -> date | None:
    """Parse an ISO-8601 date (or datetime) string into a ``date``.

    Returns None for empty or unparseable input.
    """
    if not val:
        return None
    if isinstance(val, datetime):
        return val.date()
    if isinstance(val, date):
        return val
    try:
        return datetime.fromisoformat(str(val).replace("Z", "+00:00")).date()
    except (ValueError, TypeError):
        return None


def parse_datetime(val) -> datetime | None:
    """Parse an ISO-8601 string into an aware UTC ``datetime``.

    Naive values are assumed to be UTC. Returns None for empty or
    unparseable input.
    """
    if not val:
        return None
    if isinstance(val, datetime):
        dt = val
    elif isinstance(val, date):
        dt = datetime.combine(val, time.min)
    else:
        try:
            dt = datetime.fromisoformat(str(val).replace("Z", "+00:00"))
        except (ValueError, TypeError):
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def as_utc(dt: datetime | None) -> datetime | None:
    """Normalise a DB datetime to aware UTC (SQLite returns naive values)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def date_window(start, end) -> tuple[datetime | None, datetime | None]:
    """Build an inclusive ``[start, end]`` creation-time window.

    A bare ``end`` date (no time part) covers the whole of that day.
    """
    start_dt = parse_datetime(start)
    end_dt = parse_datetime(end)
    if end_dt is not None and _is_bare_date(end):
        end_dt = datetime.combine(end_dt.date(), time.max, tzinfo=timezone.utc)
    return start_dt, end_dt


def _is_bare_date(val) -> bool:
    if isinstance(val, datetime):
        return False
    if isinstance(val, date):
        return True
    return isinstance(val, str) and len(val.strip()) == 10


def as_int(value, default=None):
    """Coerce to int, returning ``default`` for empty/invalid values."""
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
