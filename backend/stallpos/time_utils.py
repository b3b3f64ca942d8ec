from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def epoch_millis() -> int:
    return int(time.time() * 1000)


def from_epoch_seconds(value: Optional[int]) -> Optional[datetime]:
    """Provider timestamps are unix seconds; normalize to UTC-naive."""
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def seconds_since(dt: Optional[datetime], now: Optional[datetime] = None) -> float:
    """
    Elapsed seconds between dt and now (both UTC).

    Aware datetimes are converted to UTC-naive first so rows read back from
    SQLite (naive) and Postgres (aware) compare the same way.
    """
    if dt is None:
        return 0.0
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    now = now or utcnow()
    return (now - dt).total_seconds()


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")
