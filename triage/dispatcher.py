"""
Dispatch engine: reserve the best available technician for a ticket and notify
both parties.

"No technician" is an expected business outcome and comes back as a failed
DispatchResult. Only contract violations (unknown ticket or call, ticket not in
Created) raise.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional

from triage import activity
from triage.activity import EventType
from triage.errors import (
    InvalidTransition,
    NoTechnicianAvailable,
    NotificationDeliveryFailure,
    TriageError,
    ValidationError,
)
from triage.models import (
    Classification,
    DeliveryStatus,
    DispatchResult,
    NotificationRecord,
    Technician,
    Ticket,
    TicketStatus,
    Urgency,
    utcnow,
)
from triage.notifier import NotificationSender, technician_message, tenant_message
from triage.registry import TechnicianRegistry
from triage.scoring import rank_technicians
from triage.stores import CallStore, NotificationLog, PropertyDirectory, TicketStore

logger = logging.getLogger(__name__)


class DispatchEngine:
    def __init__(
        self,
        registry: TechnicianRegistry,
        tickets: TicketStore,
        calls: CallStore,
        notifications: NotificationLog,
        sender: NotificationSender,
        properties: Optional[PropertyDirectory] = None,
    ) -> None:
        self.registry = registry
        self.tickets = tickets
        self.calls = calls
        self.notifications = notifications
        self.sender = sender
        self.properties = properties or PropertyDirectory()

    def classification_for(self, ticket: Ticket) -> Classification:
        """Classification recorded on the originating call."""
        call = self.calls.get(ticket.call_id)
        if call.classification is None:
            raise ValidationError(f"Call {call.id} was never classified")
        return call.classification

    async def _find_candidates(self, ticket: Ticket, required: list[str]) -> list[Technician]:
        """Skill-matched candidates best first; for emergencies, fall back to any technician by response time."""
        matched = await asyncio.to_thread(self.registry.query_available, required)
        if matched:
            return [t for t, _ in rank_technicians(matched, required, ticket.urgency)]
        if ticket.urgency != Urgency.EMERGENCY:
            raise NoTechnicianAvailable(f"No technicians available with skills: {', '.join(required)}")
        anyone = await asyncio.to_thread(self.registry.query_available, None)
        if not anyone:
            raise NoTechnicianAvailable("No technicians available for emergency dispatch")
        logger.warning(
            "No %s technician for emergency ticket %s; falling back to fastest available.",
            "/".join(required), ticket.id,
        )
        return sorted(anyone, key=lambda t: (t.response_time_minutes, t.id))

    async def _reserve_first(self, ticket: Ticket, candidates: list[Technician]) -> Technician:
        """Reserve candidates in rank order; losing a race moves on to the next one."""
        for tech in candidates:
            if await asyncio.to_thread(self.registry.try_reserve, tech.id):
                return tech
            logger.info("Technician %s taken before ticket %s could reserve; trying next.", tech.id, ticket.id)
        raise NoTechnicianAvailable("All matching technicians were reserved by other dispatches")

    async def _notify(self, ticket: Ticket, recipient: str, message: str) -> NotificationRecord:
        """Send one SMS and record it, whatever the outcome."""
        try:
            status = await self.sender.send(recipient, message)
        except Exception as e:
            logger.warning("%s", NotificationDeliveryFailure(f"Ticket {ticket.id} to {recipient}: {e}"))
            status = DeliveryStatus.FAILED
        record = NotificationRecord(ticket_id=ticket.id, recipient=recipient, message=message, status=status)
        self.notifications.append(record)
        return record

    async def dispatch(self, ticket: Ticket) -> DispatchResult:
        """Reserve, assign and notify. Raises only for unknown ids or a ticket that is not Created."""
        current = self.tickets.get(ticket.id)
        if current.status != TicketStatus.CREATED:
            raise InvalidTransition(f"Ticket {current.id} is {current.status.value}, not Created")
        try:
            classification = self.classification_for(current)
            required = list(classification.required_skills) or [current.category.value]
            candidates = await self._find_candidates(current, required)
            tech = await self._reserve_first(current, candidates)
        except NoTechnicianAvailable as e:
            logger.warning("Dispatch failed for ticket %s: %s", current.id, e)
            activity.emit(EventType.DISPATCH_FAILED, ticket_id=current.id, reason=str(e))
            return DispatchResult(success=False, ticket_id=current.id, message=str(e))

        try:
            assigned = self.tickets.update(
                current.id, status=TicketStatus.DISPATCHED, assigned_technician_id=tech.id
            )
        except TriageError:
            # Ticket moved on (e.g. cancelled) while we were reserving; give the technician back.
            await asyncio.to_thread(self.registry.release, tech.id)
            raise

        eta = eta_for(tech)
        prop = self.properties.get(assigned.property_id)
        await self._notify(assigned, tech.phone, technician_message(assigned, classification, prop))
        await self._notify(assigned, assigned.tenant_phone, tenant_message(assigned, tech, eta))

        reserved = await asyncio.to_thread(self.registry.get, tech.id) or tech
        logger.info("Ticket %s dispatched to %s (ETA %s).", assigned.id, tech.id, eta.isoformat())
        activity.emit(EventType.TECHNICIAN_DISPATCHED, ticket_id=assigned.id, technician_id=tech.id)
        return DispatchResult(
            success=True,
            ticket_id=assigned.id,
            technician=reserved,
            message=f"Technician {tech.name} dispatched successfully",
            eta=eta,
        )

    async def dispatch_batch(self, tickets: Iterable[Ticket]) -> list[DispatchResult]:
        """Dispatch independent tickets concurrently; results keep the input order."""
        tickets = list(tickets)
        results = await asyncio.gather(*(self.dispatch(t) for t in tickets), return_exceptions=True)
        out = []
        for ticket, result in zip(tickets, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.error("Batch dispatch of ticket %s failed: %s", ticket.id, result)
                out.append(DispatchResult(success=False, ticket_id=ticket.id, message=str(result)))
            else:
                out.append(result)
        return out

    async def _close(self, ticket_id: str, status: TicketStatus) -> Ticket:
        ticket = self.tickets.update(ticket_id, status=status)
        if ticket.assigned_technician_id:
            await asyncio.to_thread(self.registry.release, ticket.assigned_technician_id)
        activity.emit(EventType.for_closed(status), ticket_id=ticket_id)
        return ticket

    async def start_work(self, ticket_id: str) -> Ticket:
        return self.tickets.update(ticket_id, status=TicketStatus.IN_PROGRESS)

    async def complete(self, ticket_id: str) -> Ticket:
        """Job done: close the ticket and release the technician."""
        return await self._close(ticket_id, TicketStatus.COMPLETED)

    async def cancel(self, ticket_id: str) -> Ticket:
        return await self._close(ticket_id, TicketStatus.CANCELLED)


def eta_for(technician: Technician, now: Optional[datetime] = None) -> datetime:
    return (now or utcnow()) + timedelta(minutes=technician.response_time_minutes)
