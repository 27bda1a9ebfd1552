"""REST API for the maintenance triage engine (transport and scheduler entry points)."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from triage import activity
from triage.classifier import classify
from triage.config import ESCALATION_SWEEP_SECONDS
from triage.errors import CallEnded, NotFoundError, ValidationError
from triage.models import (
    CallSession,
    Classification,
    DispatchResult,
    NotificationRecord,
    Technician,
    Ticket,
    TicketStatus,
    TurnResult,
)
from triage.services import Services, build_services

logger = logging.getLogger(__name__)

_services: Optional[Services] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _services
    _services = build_services()
    sweeper = None
    if ESCALATION_SWEEP_SECONDS > 0:
        sweeper = asyncio.create_task(_services.escalation.run_forever(ESCALATION_SWEEP_SECONDS))
    try:
        yield
    finally:
        if sweeper is not None:
            sweeper.cancel()
        _services = None


app = FastAPI(
    title="Maintenance Triage Engine",
    description="Tenant call triage, technician dispatch and escalation.",
    version="0.1.0",
    lifespan=lifespan,
)


def services() -> Services:
    if _services is None:
        raise HTTPException(status_code=503, detail="Services not ready")
    return _services


@app.exception_handler(NotFoundError)
async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
async def _invalid(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(CallEnded)
async def _call_ended(request: Request, exc: CallEnded) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


# --- Calls ---


class StartCallRequest(BaseModel):
    caller_phone: str = Field(..., description="Caller id (E.164)")
    property_id: Optional[str] = None
    unit: Optional[str] = None
    call_id: Optional[str] = Field(None, description="Transport call id (e.g. Twilio CallSid)")


class UtteranceRequest(BaseModel):
    text: Optional[str] = Field(None, description="Recognized speech; omit on first contact")


@app.post("/calls", response_model=TurnResult, status_code=201)
async def start_call(payload: StartCallRequest) -> TurnResult:
    """Answer a call: open a session and return the greeting."""
    svc = services()
    session = svc.agent.start_call(
        payload.caller_phone, property_id=payload.property_id, unit=payload.unit, call_id=payload.call_id
    )
    return await svc.agent.handle_utterance(session.id, None)


@app.post("/calls/{call_id}/utterances", response_model=TurnResult)
async def post_utterance(call_id: str, payload: UtteranceRequest) -> TurnResult:
    """handleUtterance: one caller turn -> response text, next action, follow-ups."""
    return await services().agent.handle_utterance(call_id, payload.text)


@app.post("/calls/{call_id}/reprompt", response_model=TurnResult)
async def reprompt(call_id: str) -> TurnResult:
    """Caller was silent until the transport's timeout."""
    return services().agent.reprompt(call_id)


@app.post("/calls/{call_id}/hangup", response_model=CallSession)
async def hangup(call_id: str) -> CallSession:
    """Caller hung up. Runs on the event loop: it cancels the in-flight classification task."""
    return services().agent.hangup(call_id)


@app.get("/calls/{call_id}", response_model=CallSession)
def get_call(call_id: str) -> CallSession:
    return services().calls.get(call_id)


# --- Tickets ---


class BatchDispatchRequest(BaseModel):
    ticket_ids: list[str] = Field(..., description="Tickets to dispatch concurrently")


class EscalationDecision(BaseModel):
    ticket_id: str
    escalate: bool
    reasons: list[str] = Field(default_factory=list)


@app.get("/tickets", response_model=list[Ticket])
def list_tickets(status: Optional[TicketStatus] = None) -> list[Ticket]:
    return services().tickets.list_all(status=status)


@app.get("/tickets/{ticket_id}", response_model=Ticket)
def get_ticket(ticket_id: str) -> Ticket:
    return services().tickets.get(ticket_id)


@app.post("/tickets/{ticket_id}/dispatch", response_model=DispatchResult)
async def dispatch_ticket(ticket_id: str) -> DispatchResult:
    """Retry dispatch for a ticket still in Created (e.g. nobody was free during the call)."""
    svc = services()
    return await svc.dispatcher.dispatch(svc.tickets.get(ticket_id))


@app.post("/tickets/dispatch/batch", response_model=list[DispatchResult])
async def dispatch_batch(payload: BatchDispatchRequest) -> list[DispatchResult]:
    """Dispatch several tickets concurrently. Unknown ids come back as failed results."""
    svc = services()
    tickets = []
    for tid in payload.ticket_ids:
        try:
            tickets.append(svc.tickets.get(tid))
        except NotFoundError:
            tickets.append(Ticket.model_construct(id=tid))
    return await svc.dispatcher.dispatch_batch(tickets)


@app.post("/tickets/{ticket_id}/start", response_model=Ticket)
async def start_ticket(ticket_id: str) -> Ticket:
    return await services().dispatcher.start_work(ticket_id)


@app.post("/tickets/{ticket_id}/complete", response_model=Ticket)
async def complete_ticket(ticket_id: str) -> Ticket:
    """Technician finished: close the ticket and return them to the pool."""
    return await services().dispatcher.complete(ticket_id)


@app.post("/tickets/{ticket_id}/cancel", response_model=Ticket)
async def cancel_ticket(ticket_id: str) -> Ticket:
    return await services().dispatcher.cancel(ticket_id)


@app.get("/tickets/{ticket_id}/escalation", response_model=EscalationDecision)
def evaluate_escalation(ticket_id: str) -> EscalationDecision:
    """evaluateEscalation for one ticket (the scheduler's entry point)."""
    reasons = services().escalation.reasons(ticket_id)
    return EscalationDecision(ticket_id=ticket_id, escalate=bool(reasons), reasons=reasons)


@app.post("/escalations/sweep")
async def sweep_escalations() -> dict:
    """Run one escalation sweep now (normally done in the background)."""
    escalated = await services().escalation.sweep()
    return {"escalated": escalated}


@app.get("/tickets/{ticket_id}/notifications", response_model=list[NotificationRecord])
def ticket_notifications(ticket_id: str) -> list[NotificationRecord]:
    svc = services()
    svc.tickets.get(ticket_id)
    return svc.notifications.for_ticket(ticket_id)


# --- Technicians ---


@app.get("/technicians", response_model=list[Technician])
def list_technicians(available_only: bool = False) -> list[Technician]:
    registry = services().registry
    return registry.query_available() if available_only else registry.list_all()


@app.post("/technicians", response_model=Technician)
def register_technician(technician: Technician) -> Technician:
    """Register or update a technician."""
    registry = services().registry
    registry.register(technician)
    return registry.get(technician.id) or technician


@app.post("/technicians/{technician_id}/release", response_model=Technician)
def release_technician(technician_id: str) -> Technician:
    registry = services().registry
    registry.release(technician_id)
    return registry.get(technician_id)


# --- Misc ---


class ClassifyRequest(BaseModel):
    text: str = Field(..., description="Text to classify")


@app.post("/classify", response_model=Classification)
def classify_text(payload: ClassifyRequest) -> Classification:
    """Run the keyword classifier only; no call or ticket is created."""
    return classify(payload.text)


@app.get("/notifications", response_model=list[NotificationRecord])
def recent_notifications(limit: int = 100) -> list[NotificationRecord]:
    if limit < 1 or limit > 500:
        limit = 100
    return services().notifications.recent(limit=limit)


@app.get("/activity")
def get_activity(limit: int = 100) -> dict:
    """Recent activity events (calls, tickets, dispatches, escalations)."""
    if limit < 1 or limit > 200:
        limit = 100
    return {"events": activity.get_recent(limit=limit)}


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}
