import re
from datetime import datetime, timedelta, timezone
from typing import Callable, Union

from dateutil.parser import parse

Clock = Callable[[], datetime]

_DURATION_RE = re.compile(r"^(\d+)(h|d)$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_ts(ts: datetime) -> datetime:
    """
    Ensure datetime is timezone-aware UTC.
    Defaults to UTC if naive.
    """
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def coerce_datetime(value: Union[datetime, str, int, float]) -> datetime:
    """
    Accept a datetime, an ISO8601 string, or epoch milliseconds.
    """
    if isinstance(value, datetime):
        return normalize_ts(value)
    if isinstance(value, bool):
        raise ValueError("Invalid timestamp")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str):
        return normalize_ts(parse(value))
    raise ValueError("Invalid timestamp")


def parse_duration(value: Union[str, timedelta]) -> timedelta:
    """
    Parse '<n>h' or '<n>d' into a timedelta.
    """
    if isinstance(value, timedelta):
        if value <= timedelta(0):
            raise ValueError("Duration must be positive")
        return value

    match = _DURATION_RE.match(value or "")
    if not match:
        raise ValueError(f"Invalid duration: {value!r} (expected e.g. '12h' or '7d')")

    amount = int(match.group(1))
    if amount <= 0:
        raise ValueError("Duration must be positive")

    if match.group(2) == "h":
        return timedelta(hours=amount)
    return timedelta(days=amount)


def isoformat(ts):
    return normalize_ts(ts).isoformat() if ts is not None else None


def parse_time_arg(raw, name: str):
    """Parse an optional timestamp request argument; bad input is a ValidationError."""
    from cms_core.domain.exceptions import ValidationError

    if raw is None or raw == "":
        return None
    try:
        return coerce_datetime(raw)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f"Invalid {name} timestamp")
