"""
Operator activity feed: a bounded, process-local ring of call and ticket events.
Served by GET /activity; the newest MAX_EVENTS are kept.
"""

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from triage.models import TicketStatus, utcnow

MAX_EVENTS = 200


class EventType(str, Enum):
    CALL_STARTED = "call_started"
    CALL_ENDED = "call_ended"
    CALL_ESCALATED = "call_escalated"
    TICKET_CREATED = "ticket_created"
    TECHNICIAN_DISPATCHED = "technician_dispatched"
    DISPATCH_FAILED = "dispatch_failed"
    TICKET_COMPLETED = "ticket_completed"
    TICKET_CANCELLED = "ticket_cancelled"
    TICKET_ESCALATED = "ticket_escalated"

    @classmethod
    def for_closed(cls, status: TicketStatus) -> "EventType":
        return cls.TICKET_COMPLETED if status == TicketStatus.COMPLETED else cls.TICKET_CANCELLED


@dataclass(frozen=True)
class ActivityEvent:
    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict[str, Any]:
        return {"at": self.at.isoformat(), "type": self.type.value, "data": dict(self.data)}


_feed: deque[ActivityEvent] = deque(maxlen=MAX_EVENTS)
_lock = threading.Lock()


def emit(event_type: EventType, **data: Any) -> None:
    with _lock:
        _feed.append(ActivityEvent(type=event_type, data=data))


def get_recent(limit: int = 100) -> list[dict[str, Any]]:
    """Newest last."""
    with _lock:
        events = list(_feed)[-limit:] if limit > 0 else []
    return [e.as_dict() for e in events]


def clear() -> None:
    with _lock:
        _feed.clear()
