from datetime import datetime, timezone


def utcnow() -> datetime:
    # Mongo keeps millisecond precision; match it so locally held copies compare equal
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_storage(value: datetime) -> datetime:
    """Naive UTC, the form pymongo returns when the client is not tz aware."""
    return ensure_utc(value).replace(tzinfo=None)
