"""
In-memory call, ticket, notification and property stores.

Each store owns its records behind a lock; callers get copies, so a record
is only changed through update(). Swap these for a database-backed
implementation with the same methods.
"""

import logging
import threading
from typing import Any, Optional

from triage.errors import InvalidTransition, NotFoundError
from triage.models import (
    CallSession,
    DeliveryStatus,
    NotificationRecord,
    Property,
    Ticket,
    TicketStatus,
    can_transition,
    utcnow,
)

logger = logging.getLogger(__name__)


class CallStore:
    def __init__(self) -> None:
        self._calls: dict[str, CallSession] = {}
        self._lock = threading.Lock()

    def create(self, session: CallSession) -> CallSession:
        with self._lock:
            self._calls[session.id] = session.model_copy(deep=True)
        return session

    def get(self, call_id: str) -> CallSession:
        with self._lock:
            session = self._calls.get(call_id)
            if session is None:
                raise NotFoundError(f"Call {call_id} not found")
            return session.model_copy(deep=True)

    def save(self, session: CallSession) -> None:
        with self._lock:
            if session.id not in self._calls:
                raise NotFoundError(f"Call {session.id} not found")
            self._calls[session.id] = session.model_copy(deep=True)

    def list_all(self) -> list[CallSession]:
        with self._lock:
            return [c.model_copy(deep=True) for c in self._calls.values()]


class TicketStore:
    def __init__(self) -> None:
        self._tickets: dict[str, Ticket] = {}
        self._lock = threading.Lock()

    def create(self, ticket: Ticket) -> Ticket:
        with self._lock:
            self._tickets[ticket.id] = ticket.model_copy(deep=True)
        logger.info("Ticket %s created (%s %s).", ticket.id, ticket.urgency.value, ticket.category.value)
        return ticket

    def get(self, ticket_id: str) -> Ticket:
        with self._lock:
            ticket = self._tickets.get(ticket_id)
            if ticket is None:
                raise NotFoundError(f"Ticket {ticket_id} not found")
            return ticket.model_copy(deep=True)

    def update(self, ticket_id: str, **fields: Any) -> Ticket:
        """Apply field changes; a status change must follow the ticket lifecycle."""
        with self._lock:
            ticket = self._tickets.get(ticket_id)
            if ticket is None:
                raise NotFoundError(f"Ticket {ticket_id} not found")
            status = fields.get("status")
            if status is not None and status != ticket.status and not can_transition(ticket.status, status):
                raise InvalidTransition(
                    f"Ticket {ticket_id} cannot move from {ticket.status.value} to {status.value}"
                )
            updated = ticket.model_copy(update={**fields, "updated_at": utcnow()}, deep=True)
            self._tickets[ticket_id] = updated
            return updated.model_copy(deep=True)

    def list_all(self, status: Optional[TicketStatus] = None) -> list[Ticket]:
        """Tickets newest first, optionally filtered by status."""
        with self._lock:
            tickets = [t.model_copy(deep=True) for t in self._tickets.values()]
        if status is not None:
            tickets = [t for t in tickets if t.status == status]
        return sorted(tickets, key=lambda t: t.created_at, reverse=True)


class NotificationLog:
    """Append-only audit trail of outbound notifications."""

    def __init__(self) -> None:
        self._records: list[NotificationRecord] = []
        self._lock = threading.Lock()

    def append(self, record: NotificationRecord) -> None:
        with self._lock:
            self._records.append(record.model_copy(deep=True))

    def for_ticket(self, ticket_id: str) -> list[NotificationRecord]:
        with self._lock:
            return [r.model_copy() for r in self._records if r.ticket_id == ticket_id]

    def failed_count(self, ticket_id: str) -> int:
        return sum(1 for r in self.for_ticket(ticket_id) if r.status == DeliveryStatus.FAILED)

    def recent(self, limit: int = 100) -> list[NotificationRecord]:
        with self._lock:
            return [r.model_copy() for r in self._records[-limit:]]


# Properties known at startup (VIP flag drives escalation).
MOCK_PROPERTIES = [
    Property(id="prop-1", address="123 Main St", vip=False),
    Property(id="prop-2", address="456 Oak Ave", vip=True),
]


class PropertyDirectory:
    def __init__(self, properties: Optional[list[Property]] = None) -> None:
        self._properties = {p.id: p for p in (properties if properties is not None else MOCK_PROPERTIES)}
        self._lock = threading.Lock()

    def get(self, property_id: str) -> Optional[Property]:
        with self._lock:
            return self._properties.get(property_id)

    def upsert(self, prop: Property) -> None:
        with self._lock:
            self._properties[prop.id] = prop

    def is_vip(self, property_id: str) -> bool:
        prop = self.get(property_id)
        return bool(prop and prop.vip)
