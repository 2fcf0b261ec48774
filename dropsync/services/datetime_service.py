"""Datetime parsing: lax input -> strict output."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pendulum

# Strict output format: YYYY-MM-DD HH:MM:SS.ffffff±TZ
STRICT_FORMAT = "%Y-%m-%d %H:%M:%S.%f%z"


def parse_datetime(value: str | datetime, default_tz: str = "UTC") -> datetime:
    """Parse a lax datetime string into a strict timezone-aware datetime.

    Accepts the strict storage format, Dropbox's ``2015-05-12T15:50:38Z``
    timestamps and other ISO 8601 variants. Missing timezone defaults to
    default_tz.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            tz = pendulum.timezone(default_tz)
            value = value.replace(tzinfo=tz)  # type: ignore[arg-type]
        return value

    parsed = pendulum.parse(value.strip(), tz=default_tz, strict=False)
    if not isinstance(parsed, pendulum.DateTime):
        # pendulum.parse returns Date for date-only strings
        parsed = pendulum.datetime(
            parsed.year, parsed.month, parsed.day, tz=default_tz  # type: ignore[union-attr]
        )
    return parsed  # type: ignore[return-value]


def format_datetime(dt: datetime) -> str:
    """Format a datetime to the strict output format."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.strftime(STRICT_FORMAT)


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(timezone.utc)


def is_due(expires_at: str | None, skew_seconds: int, now: datetime | None = None) -> bool:
    """Return True when ``now + skew`` has reached a stored expiry timestamp.

    An unknown or unparsable expiry is never due.
    """
    if not expires_at:
        return False
    try:
        expiry = parse_datetime(expires_at)
    except ValueError:
        return False
    current = now or now_utc()
    return current + timedelta(seconds=skew_seconds) >= expiry
