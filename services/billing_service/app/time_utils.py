"""Time helpers shared by the wallet, ledger and reset services."""

from __future__ import annotations

from datetime import datetime, time, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """Return the current timezone-aware UTC datetime."""
    return datetime.now(tz=timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Normalize a datetime read from storage to aware UTC.

    SQLite hands back naive values; they are stored as UTC wall-clock time.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@lru_cache(maxsize=16)
def _zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def reset_boundary(now: datetime, tz_name: str) -> datetime:
    """Return the most recent local midnight in ``tz_name`` as aware UTC.

    A wallet whose ``last_token_reset`` is older than this instant is stale.
    """
    zone = _zone(tz_name)
    local_now = as_utc(now).astimezone(zone)
    local_midnight = datetime.combine(local_now.date(), time.min, tzinfo=zone)
    return local_midnight.astimezone(timezone.utc)
