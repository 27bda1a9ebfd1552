"""
Outbound SMS notifications for dispatches and escalations.

LoggingSender only logs (local development and tests). WebhookSender POSTs
each message as JSON to NOTIFY_WEBHOOK_URL, e.g. an SMS gateway bridge.
Senders report a DeliveryStatus and never raise for delivery problems.
"""

import asyncio
import json
import logging
import ssl
import urllib.request
from datetime import datetime, timedelta
from typing import Any, Optional, Protocol

from triage.config import NOTIFY_WEBHOOK_URL
from triage.models import Classification, DeliveryStatus, Property, Technician, Ticket, Urgency

logger = logging.getLogger(__name__)

ARRIVAL_WINDOW_MINUTES = 30

URGENCY_LABELS = {
    Urgency.EMERGENCY: "[EMERGENCY]",
    Urgency.HIGH: "[HIGH]",
    Urgency.MEDIUM: "[MEDIUM]",
    Urgency.LOW: "[LOW]",
}


class NotificationSender(Protocol):
    async def send(self, recipient: str, message: str) -> DeliveryStatus: ...


class LoggingSender:
    """Logs messages instead of delivering them."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def send(self, recipient: str, message: str) -> DeliveryStatus:
        self.sent.append((recipient, message))
        logger.info("SMS to %s: %s", recipient, message.replace("\n", " | "))
        return DeliveryStatus.SENT


def _do_post(url: str, payload: dict[str, Any]) -> None:
    """Synchronous POST (run in thread)."""
    data = json.dumps(payload).encode("utf-8")
    req = urllib.request.Request(
        url,
        data=data,
        headers={"Content-Type": "application/json"},
        method="POST",
    )
    ctx = ssl.create_default_context()
    urllib.request.urlopen(req, timeout=5, context=ctx)


class WebhookSender:
    """POSTs {"to": ..., "body": ...} to a webhook. Any error counts as a failed delivery."""

    def __init__(self, url: str = NOTIFY_WEBHOOK_URL) -> None:
        self.url = url

    async def send(self, recipient: str, message: str) -> DeliveryStatus:
        payload = {"to": recipient, "body": message, "channel": "sms"}
        try:
            await asyncio.to_thread(_do_post, self.url, payload)
        except Exception as e:
            logger.warning("Webhook delivery to %s failed: %s", recipient, e)
            return DeliveryStatus.FAILED
        return DeliveryStatus.SENT


def build_sender() -> NotificationSender:
    if NOTIFY_WEBHOOK_URL:
        return WebhookSender(NOTIFY_WEBHOOK_URL)
    return LoggingSender()


def _location(ticket: Ticket, prop: Optional[Property]) -> str:
    where = prop.address if prop and prop.address else ticket.property_id
    return f"{where} Unit {ticket.unit}"


def technician_message(
    ticket: Ticket,
    classification: Classification,
    prop: Optional[Property] = None,
) -> str:
    """Dispatch SMS for the technician: issue, location, tenant contact, estimate, accept prompt."""
    label = URGENCY_LABELS.get(ticket.urgency, "")
    return "\n".join([
        f"{label} {ticket.urgency.value} DISPATCH",
        f"Issue: {ticket.title}",
        f"Location: {_location(ticket, prop)}",
        f"Tenant: {ticket.tenant_phone}",
        f"Description: {ticket.description}",
        f"Est. Time: {classification.time_estimate:g}h",
        "Reply YES to accept or NO to decline",
    ])


def tenant_message(ticket: Ticket, technician: Technician, eta: datetime) -> str:
    """Confirmation SMS for the tenant: technician, arrival window, reference number."""
    window_end = eta + timedelta(minutes=ARRIVAL_WINDOW_MINUTES)
    return (
        f"Your maintenance request has been received and assigned to {technician.name}. "
        f"They will arrive between {eta:%I:%M %p} and {window_end:%I:%M %p} UTC. "
        f"They will call you at {ticket.tenant_phone} when they're on the way. "
        f"Reference #: {ticket.reference}"
    )


def escalation_message(ticket: Ticket, reasons: list[str]) -> str:
    return (
        f"ESCALATION: ticket {ticket.reference} ({ticket.urgency.value} {ticket.category.value}) "
        f"at {ticket.property_id} Unit {ticket.unit} is still {ticket.status.value}. "
        f"Reasons: {', '.join(reasons)}. Tenant: {ticket.tenant_phone}"
    )
