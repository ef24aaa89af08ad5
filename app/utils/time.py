"""Clock helpers. All persisted timestamps are naive UTC."""

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Current time as a naive UTC datetime, matching the DateTime columns."""
    return datetime.now(UTC).replace(tzinfo=None)


def isoformat(value: datetime | None) -> str | None:
    """ISO-8601 string with a trailing Z for naive UTC values."""
    if value is None:
        return None
    if value.tzinfo is not None:
        return value.isoformat()
    return value.isoformat() + "Z"


def from_timestamp(ts: float) -> datetime:
    """POSIX timestamp to naive UTC."""
    return datetime.fromtimestamp(ts, UTC).replace(tzinfo=None)
