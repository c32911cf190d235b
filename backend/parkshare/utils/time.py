from datetime import datetime, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo


@lru_cache
def display_zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def to_utc_naive(dt: datetime) -> datetime:
    """Storage form: naive UTC. Rejects naive input instead of guessing a zone."""
    if dt.tzinfo is None:
        raise ValueError("datetime must be timezone-aware")
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def utc_naive_to_zone(dt: datetime, zone_name: str) -> datetime:
    return dt.replace(tzinfo=timezone.utc).astimezone(display_zone(zone_name))


def utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
