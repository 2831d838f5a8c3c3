from __future__ import annotations

import threading
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Mapping


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # Drivers without timezone support hand back naive values that were written as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return as_utc(value).isoformat().replace("+00:00", "Z")


def parse(value: Any) -> datetime | None:
    # Accept ISO strings (with or without Z), dates and datetimes.
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return as_utc(datetime.fromisoformat(text))
    raise TypeError(f"Cannot parse datetime from {type(value).__name__}")


def serialize_row(row: Mapping[str, Any]) -> dict[str, Any]:
    # Render datetimes as ISO strings; nested JSON is left as stored.
    out: dict[str, Any] = {}
    for key, value in row.items():
        if isinstance(value, datetime):
            out[key] = to_iso(value)
        else:
            out[key] = value
    return out


class MonotonicClock:
    """UTC clock whose readings strictly increase within a process."""

    def __init__(self, time_provider: Callable[[], datetime] | None = None) -> None:
        self._time_provider = time_provider or _utc_now
        self._last: datetime | None = None
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            current = as_utc(self._time_provider())
            if self._last is not None and current <= self._last:
                current = self._last + timedelta(microseconds=1)
            self._last = current
            return current

    def __call__(self) -> datetime:
        return self.now()
