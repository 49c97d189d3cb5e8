"""
time_utils.py — UTC helpers shared by models, services and schemas.

All timestamps are timezone-aware UTC inside the application. Some database
backends (SQLite) hand back naive datetimes for DateTime(timezone=True)
columns; as_utc() normalises those before any comparison.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (aware)."""
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Naive values are interpreted as UTC; aware values are converted."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalise to aware UTC.

    - None / "" -> None
    - "YYYY-MM-DDTHH:MM:SS" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC

    Raises ValueError on malformed input, including offsets that push the
    value outside the representable datetime range.
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z") or s.endswith("z"):
        s = s[:-1] + "+00:00"

    # A '+' in a query string decodes to a space.
    if " " in s[10:] and "+" not in s:
        head, _, tail = s.rpartition(" ")
        if tail[:2].isdigit() and ":" in tail and len(tail) <= 5:
            s = f"{head}+{tail}"

    try:
        return as_utc(datetime.fromisoformat(s))
    except OverflowError as exc:
        raise ValueError(f"Datetime out of range: {value!r}") from exc


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """
    Serialises a datetime as ISO-8601 UTC with microseconds and a trailing 'Z'.

    Microseconds are kept: the value is fed back by polling clients as an
    exclusive lower bound, so truncation would redeliver events.
    """
    if dt is None:
        return None
    return as_utc(dt).isoformat(timespec="microseconds").replace("+00:00", "Z")
