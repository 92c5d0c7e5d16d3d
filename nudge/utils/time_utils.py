"""Time helpers shared by the client, store and sync service."""

from __future__ import annotations

import calendar
from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def months_ago(months: int, now: datetime | None = None) -> datetime:
    """Return ``now`` shifted back by calendar months.

    The day is clamped to the length of the target month, so 31 May minus
    three months is 28/29 February.
    """
    now = now or utc_now()
    month_index = now.year * 12 + (now.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(now.day, calendar.monthrange(year, month)[1])
    return now.replace(year=year, month=month, day=day)


def parse_datetime(value: datetime | str) -> datetime:
    """Parse an ISO-8601 string (``Z`` suffix allowed); naive values are taken as UTC."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def to_unix_seconds(value: datetime | str | int | float) -> int:
    if isinstance(value, (int, float)):
        return int(value)
    return int(parse_datetime(value).timestamp())


def to_iso(value: datetime) -> str:
    """Format as the ISO-8601 UTC form Strava uses for ``start_date``."""
    return parse_datetime(value).astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
