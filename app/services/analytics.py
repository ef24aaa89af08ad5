# app/services/analytics.py
"""
In-process analytics event buffer.

Lifecycle events (export requested/completed, retention deletions) are
appended here and drained by whatever sink is wired up downstream. The
analytics-event retention policy trims the buffer by age.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from app.utils.time import utcnow

logger = logging.getLogger(__name__)


class AnalyticsEventType(str, Enum):
    EXPORT_REQUESTED = "export_requested"
    EXPORT_COMPLETED = "export_completed"
    EXPORT_FAILED = "export_failed"
    PROJECT_DELETED_BY_RETENTION = "project_deleted_by_retention"


@dataclass
class AnalyticsEvent:
    event_type: str
    user_id: str | None
    properties: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)


_events: list[AnalyticsEvent] = []
_lock = threading.Lock()


def track_event(
    event_type: AnalyticsEventType | str,
    user_id: str | None = None,
    properties: dict[str, Any] | None = None,
    timestamp: datetime | None = None,
) -> AnalyticsEvent:
    """Append an event to the buffer."""
    event = AnalyticsEvent(
        event_type=event_type.value if isinstance(event_type, AnalyticsEventType) else event_type,
        user_id=str(user_id) if user_id else None,
        properties=properties or {},
        timestamp=timestamp or utcnow(),
    )
    with _lock:
        _events.append(event)
    logger.debug(f"Analytics event: {event.event_type}", extra={"event": event.event_type})
    return event


def get_events(event_type: str | None = None) -> list[AnalyticsEvent]:
    """Snapshot of buffered events, optionally filtered by type."""
    with _lock:
        events = list(_events)
    if event_type:
        events = [e for e in events if e.event_type == event_type]
    return events


def clear_events_before(cutoff: datetime) -> int:
    """Drop events older than cutoff. Returns the number removed."""
    global _events
    with _lock:
        kept = [e for e in _events if e.timestamp >= cutoff]
        removed = len(_events) - len(kept)
        _events = kept
    return removed


def reset_events() -> None:
    """Empty the buffer (for testing)."""
    with _lock:
        _events.clear()
