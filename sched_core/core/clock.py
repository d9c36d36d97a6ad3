from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo)"""
    if value is None:
        return value
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def hour_bucket(value: datetime) -> str:
    """UTC hour bucket, e.g. 2026-03-01T14"""
    return ensure_utc(value).strftime("%Y-%m-%dT%H")


def epoch_ms(value: datetime) -> int:
    return int(ensure_utc(value).timestamp() * 1000)
