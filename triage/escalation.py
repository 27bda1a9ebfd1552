"""
Escalation policy: decide whether an aging or risky ticket needs a human.

escalation_reasons / should_escalate are pure; EscalationMonitor gathers
their inputs from the stores and runs the periodic sweep.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional

from triage import activity
from triage.activity import EventType
from triage.config import (
    EMERGENCY_UNASSIGNED_MINUTES,
    ESCALATION_NUMBER,
    MAX_FAILED_NOTIFICATIONS,
    SAFETY_RISK_UNASSIGNED_MINUTES,
)
from triage.errors import TriageError
from triage.models import (
    Classification,
    DeliveryStatus,
    NotificationRecord,
    Ticket,
    TicketStatus,
    Urgency,
    utcnow,
)
from triage.notifier import NotificationSender, escalation_message
from triage.stores import CallStore, NotificationLog, PropertyDirectory, TicketStore

logger = logging.getLogger(__name__)


def escalation_reasons(
    ticket: Ticket,
    classification: Optional[Classification] = None,
    vip: bool = False,
    notifications: Iterable[NotificationRecord] = (),
    now: Optional[datetime] = None,
) -> list[str]:
    """Names of the escalation rules that fire for this ticket."""
    now = now or utcnow()
    age = now - ticket.created_at
    unassigned = ticket.status == TicketStatus.CREATED
    reasons = []
    if (
        ticket.urgency == Urgency.EMERGENCY
        and unassigned
        and age > timedelta(minutes=EMERGENCY_UNASSIGNED_MINUTES)
    ):
        reasons.append("emergency_unassigned")
    if vip and unassigned:
        reasons.append("vip_unassigned")
    if (
        classification is not None
        and classification.safety_risk
        and unassigned
        and age > timedelta(minutes=SAFETY_RISK_UNASSIGNED_MINUTES)
    ):
        reasons.append("safety_risk_unassigned")
    failed = sum(1 for n in notifications if n.status == DeliveryStatus.FAILED)
    if failed > MAX_FAILED_NOTIFICATIONS:
        reasons.append("notification_failures")
    return reasons


def should_escalate(
    ticket: Ticket,
    classification: Optional[Classification] = None,
    vip: bool = False,
    notifications: Iterable[NotificationRecord] = (),
    now: Optional[datetime] = None,
) -> bool:
    return bool(escalation_reasons(ticket, classification, vip, notifications, now))


class EscalationMonitor:
    """Evaluates tickets against the policy and alerts the on-call manager."""

    def __init__(
        self,
        tickets: TicketStore,
        calls: CallStore,
        properties: PropertyDirectory,
        notifications: NotificationLog,
        sender: NotificationSender,
        on_call: str = ESCALATION_NUMBER,
    ) -> None:
        self.tickets = tickets
        self.calls = calls
        self.properties = properties
        self.notifications = notifications
        self.sender = sender
        self.on_call = on_call

    def reasons(self, ticket_id: str, now: Optional[datetime] = None) -> list[str]:
        ticket = self.tickets.get(ticket_id)
        try:
            classification = self.calls.get(ticket.call_id).classification
        except TriageError:
            classification = None
        return escalation_reasons(
            ticket,
            classification=classification,
            vip=self.properties.is_vip(ticket.property_id),
            notifications=self.notifications.for_ticket(ticket.id),
            now=now,
        )

    def evaluate(self, ticket_id: str, now: Optional[datetime] = None) -> bool:
        """evaluateEscalation: True if any rule fires. Raises NotFoundError for an unknown ticket."""
        return bool(self.reasons(ticket_id, now))

    async def sweep(self, now: Optional[datetime] = None) -> list[str]:
        """Escalate every open, not-yet-escalated ticket that the policy flags. Returns their ids."""
        escalated = []
        for ticket in self.tickets.list_all():
            if ticket.status.is_terminal or ticket.escalated_at is not None:
                continue
            reasons = self.reasons(ticket.id, now)
            if not reasons:
                continue
            logger.warning("Escalating ticket %s: %s", ticket.id, ", ".join(reasons))
            message = escalation_message(ticket, reasons)
            try:
                status = await self.sender.send(self.on_call, message)
            except Exception as e:
                logger.warning("Escalation alert for ticket %s failed: %s", ticket.id, e)
                status = DeliveryStatus.FAILED
            self.notifications.append(
                NotificationRecord(
                    ticket_id=ticket.id,
                    recipient=self.on_call,
                    message=message,
                    status=status,
                )
            )
            self.tickets.update(ticket.id, escalated_at=now or utcnow())
            activity.emit(EventType.TICKET_ESCALATED, ticket_id=ticket.id, reasons=reasons)
            escalated.append(ticket.id)
        return escalated

    async def run_forever(self, interval_seconds: float) -> None:
        """Background sweep loop; cancelled on shutdown."""
        logger.info("Escalation sweep every %ss.", interval_seconds)
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Escalation sweep failed")
