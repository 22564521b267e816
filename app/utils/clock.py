import time
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def now_ms() -> int:
    """Wall clock in epoch milliseconds, the unit used by the realtime registry."""
    return int(time.time() * 1000)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from backends that drop tzinfo."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_ms(value: Optional[datetime]) -> Optional[int]:
    value = as_utc(value)
    if value is None:
        return None
    return int(value.timestamp() * 1000)
