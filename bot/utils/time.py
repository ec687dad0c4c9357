from __future__ import annotations

from datetime import UTC, datetime, timedelta

_DURATION_UNITS = {
    "s": "seconds",
    "m": "minutes",
    "h": "hours",
    "d": "days",
    "w": "weeks",
}


def utc_now() -> datetime:
    return datetime.now(UTC)


def as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def format_utc(dt: datetime) -> str:
    return as_utc(dt).strftime("%Y-%m-%d %H:%M:%S UTC")


def parse_relative_duration(value: str) -> timedelta:
    value = value.strip().lower()
    if not value:
        raise ValueError("Empty duration")
    unit = value[-1]
    if unit not in _DURATION_UNITS:
        raise ValueError("Invalid duration unit. Use s, m, h, d, w.")
    amount = int(value[:-1])
    return timedelta(**{_DURATION_UNITS[unit]: amount})
