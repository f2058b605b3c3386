from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp; SQLite drops tzinfo so every stored datetime is naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def minutes_after(start: datetime, minutes: int | None, *, buffer_seconds: int = 0) -> datetime:
    return start + timedelta(minutes=minutes or 0, seconds=buffer_seconds)
