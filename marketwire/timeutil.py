from datetime import datetime, timezone
from typing import Optional

from dateutil import tz


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_local(value: datetime, time_zone: str) -> datetime:
    """Convert to the display timezone; naive values are treated as UTC"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    zone = tz.gettz(time_zone)
    if zone is None:
        raise ValueError(f"Unknown timezone: {time_zone}")
    return value.astimezone(zone)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.astimezone(timezone.utc).isoformat() if value else None


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
