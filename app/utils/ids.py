"""Identifier helpers."""

import uuid


def parse_uuid(value) -> uuid.UUID | None:
    """UUID from a string or UUID, None when the value is not a valid id."""
    if isinstance(value, uuid.UUID):
        return value
    if value is None:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None
