"""Builders for technicians and tickets used across the test modules."""

from typing import Optional

from triage.classifier import classify
from triage.models import CallSession, Classification, Technician, Ticket


def make_tech(tech_id: str, skills: list[str], **kw) -> Technician:
    fields = dict(
        id=tech_id,
        name=f"Tech {tech_id}",
        phone=f"+1555{tech_id}",
        skills=skills,
        available=True,
        rating=4.5,
        response_time_minutes=30,
        hourly_rate=80,
        emergency_rate=120,
    )
    fields.update(kw)
    return Technician(**fields)


def make_ticket(
    svc,
    text: str = "My kitchen sink pipe is leaking",
    classification: Optional[Classification] = None,
    property_id: str = "prop-1",
) -> Ticket:
    """Store a classified call and a Created ticket for it, as the agent does."""
    classification = classification or classify(text)
    call = svc.calls.create(
        CallSession(caller_phone="+15550100", property_id=property_id, unit="101", classification=classification)
    )
    ticket = Ticket(
        call_id=call.id,
        title=f"{classification.urgency.value}: {classification.description}",
        description=classification.description,
        category=classification.category,
        urgency=classification.urgency,
        property_id=property_id,
        unit="101",
        tenant_phone=call.caller_phone,
    )
    return svc.tickets.create(ticket)
