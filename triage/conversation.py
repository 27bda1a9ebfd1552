"""
Conversation agent: the per-call state machine.

    New -> Gathering -> Classified -> {Continuing, Dispatching, Escalating} -> Terminated

Each call is processed one turn at a time (a lock per session). Every turn
runs the classifier, picks a scripted scenario and decides the next action:
ask one round of follow-up questions, create a ticket and dispatch, or hand the
caller to a human. Any unexpected failure ends in the fixed apology and a
transfer to the backup line, so the caller is never left in silence.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from triage import activity
from triage.activity import EventType
from triage.classifier import TIME_ESTIMATE_HOURS, DEFAULT_TIME_ESTIMATE_HOURS, classify_async, estimate_cost
from triage.config import (
    BACKUP_LINE,
    DEFAULT_PROPERTY_ID,
    DEFAULT_UNIT,
    ESCALATION_NUMBER,
    LOW_CONFIDENCE_THRESHOLD,
)
from triage.dispatcher import DispatchEngine
from triage.errors import CallEnded, ValidationError
from triage.models import (
    CallSession,
    CallState,
    Category,
    Classification,
    NextAction,
    Ticket,
    TranscriptTurn,
    TurnResult,
    Urgency,
    utcnow,
)
from triage.scenarios import (
    APOLOGY,
    DEFAULT_REINFORCED_RESPONSE,
    EMERGENCY_FALLBACK_RESPONSE,
    FALLBACK_CONFIDENCE,
    FALLBACK_SCENARIO,
    FOLLOW_UP_DISPATCH_RESPONSE,
    GREETING,
    REPROMPT,
    Scenario,
    is_reinforcing,
    match_scenario,
    scenario_for_key,
)
from triage.stores import CallStore, TicketStore

logger = logging.getLogger(__name__)

MAX_FOLLOW_UP_ROUNDS = 1

Classify = Callable[[str], Awaitable[Classification]]


def with_urgency(classification: Classification, urgency: Urgency) -> Classification:
    """Copy of a classification moved to another tier, with tier-derived fields kept consistent."""
    if urgency == classification.urgency:
        return classification.model_copy(deep=True)
    serious = urgency in (Urgency.EMERGENCY, Urgency.HIGH)
    return classification.model_copy(
        update={
            "urgency": urgency,
            "estimated_cost": estimate_cost(classification.category, urgency),
            "time_estimate": TIME_ESTIMATE_HOURS.get(urgency, DEFAULT_TIME_ESTIMATE_HOURS),
            "safety_risk": classification.safety_risk or urgency == Urgency.EMERGENCY,
            "property_damage": classification.property_damage or serious,
            "follow_up_required": classification.follow_up_required or serious,
        },
        deep=True,
    )


class ConversationAgent:
    def __init__(
        self,
        calls: CallStore,
        tickets: TicketStore,
        dispatcher: DispatchEngine,
        classify: Classify = classify_async,
    ) -> None:
        self.calls = calls
        self.tickets = tickets
        self.dispatcher = dispatcher
        self._classify = classify
        self._locks: dict[str, asyncio.Lock] = {}
        self._pending: dict[str, asyncio.Task] = {}

    # --- lifecycle ---

    def start_call(
        self,
        caller_phone: str,
        property_id: Optional[str] = None,
        unit: Optional[str] = None,
        call_id: Optional[str] = None,
    ) -> CallSession:
        """Open a session in state New. The greeting is produced by the first handle_utterance."""
        fields = {"caller_phone": caller_phone, "property_id": property_id or DEFAULT_PROPERTY_ID, "unit": unit or DEFAULT_UNIT}
        if call_id:
            fields["id"] = call_id
        session = self.calls.create(CallSession(**fields))
        logger.info("Call %s started from %s.", session.id, caller_phone)
        activity.emit(EventType.CALL_STARTED, call_id=session.id, caller_phone=caller_phone)
        return session

    def hangup(self, session_id: str, reason: str = "hangup") -> CallSession:
        """Caller hung up: cancel any classification in flight. No ticket is created for this turn."""
        session = self.calls.get(session_id)
        if session.state == CallState.TERMINATED:
            return session
        task = self._pending.pop(session_id, None)
        if task is not None and not task.done():
            task.cancel()
            logger.info("Call %s hung up during classification; cancelled.", session_id)
        self._terminate(session)
        self.calls.save(session)
        activity.emit(EventType.CALL_ENDED, call_id=session_id, reason=reason)
        return session

    def reprompt(self, session_id: str) -> TurnResult:
        """Caller said nothing before the timeout: ask again without changing state."""
        session = self.calls.get(session_id)
        if session.state == CallState.TERMINATED:
            raise CallEnded(f"Call {session_id} has ended")
        return self._result(session, REPROMPT, NextAction.CONTINUE)

    # --- turns ---

    async def handle_utterance(self, session_id: str, utterance: Optional[str]) -> TurnResult:
        """
        Process one caller turn and return what to say and do next.

        Raises NotFoundError for an unknown session, CallEnded for a terminated
        one (including a hangup while this turn was being classified) and
        ValidationError for an empty utterance after the greeting.
        """
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        async with lock:
            session = self.calls.get(session_id)
            if session.state == CallState.TERMINATED:
                raise CallEnded(f"Call {session_id} has ended")
            text = (utterance or "").strip()
            if session.state == CallState.NEW:
                if not text:
                    return self._greet(session)
                session.state = CallState.GATHERING
            if not text:
                raise ValidationError("Utterance is empty")

            session.turns.append(TranscriptTurn(speaker="tenant", text=text))
            try:
                if session.state == CallState.CONTINUING:
                    return await self._follow_up(session, text)
                return await self._first_report(session, text)
            except CallEnded:
                raise
            except asyncio.CancelledError:
                if self.calls.get(session_id).state == CallState.TERMINATED:
                    raise CallEnded(f"Call {session_id} hung up mid-turn") from None
                raise
            except Exception:
                logger.exception("Turn failed for call %s; transferring to backup line.", session_id)
                return self._apologize(session)

    async def _run_classification(self, session_id: str, text: str) -> Classification:
        task = asyncio.ensure_future(self._classify(text))
        self._pending[session_id] = task
        try:
            return await task
        finally:
            self._pending.pop(session_id, None)

    def _ensure_live(self, session_id: str) -> None:
        if self.calls.get(session_id).state == CallState.TERMINATED:
            raise CallEnded(f"Call {session_id} hung up mid-turn")

    async def _first_report(self, session: CallSession, text: str) -> TurnResult:
        classified = await self._run_classification(session.id, text)
        self._ensure_live(session.id)
        scenario = match_scenario(text)
        session.scenario = scenario.key.value
        if scenario is FALLBACK_SCENARIO:
            classification = classified.model_copy(
                update={"confidence": min(classified.confidence, FALLBACK_CONFIDENCE)}
            )
            if classification.urgency == Urgency.EMERGENCY:
                next_action, response = NextAction.DISPATCH, EMERGENCY_FALLBACK_RESPONSE
            elif classification.confidence < LOW_CONFIDENCE_THRESHOLD:
                next_action, response = NextAction.CONTINUE, scenario.response
            else:
                next_action, response = NextAction.DISPATCH, FOLLOW_UP_DISPATCH_RESPONSE
        else:
            classification = scenario.classification.model_copy(deep=True)
            next_action, response = scenario.next_action, scenario.response
        session.classification = classification
        session.state = CallState.CLASSIFIED
        logger.info(
            "Call %s classified: scenario=%s %s %s -> %s.",
            session.id, scenario.key.value, classification.urgency.value,
            classification.category.value, next_action.value,
        )

        if next_action == NextAction.CONTINUE:
            return self._ask_follow_up(session, scenario, response)
        if next_action == NextAction.ESCALATE:
            return self._escalate(session, response, ESCALATION_NUMBER)
        return await self._dispatch(session, response)

    def _ask_follow_up(self, session: CallSession, scenario: Scenario, response: str) -> TurnResult:
        unused = [q for q in scenario.follow_ups if q not in session.follow_ups_asked]
        if not unused or session.follow_up_rounds >= MAX_FOLLOW_UP_ROUNDS:
            return self._escalate(session, response, ESCALATION_NUMBER)
        question = unused[0]
        session.follow_ups_asked.append(question)
        session.follow_ups_pending = unused[1:]
        session.state = CallState.CONTINUING
        return self._result(session, f"{response} {question}", NextAction.CONTINUE, follow_ups=unused)

    async def _follow_up(self, session: CallSession, reply: str) -> TurnResult:
        """
        One clarification round, then dispatch with the classification already
        given. The reply only raises urgency through a reinforcing phrase; a
        general issue may still pick up the category the tenant now names.
        """
        scenario = scenario_for_key(session.scenario)
        current = session.classification
        refined = await self._run_classification(session.id, session.tenant_transcript())
        self._ensure_live(session.id)
        session.follow_up_rounds += 1

        if current is None:
            base = refined
        elif current.category == Category.GENERAL and refined.category != Category.GENERAL:
            # Category only: keywords in the reply ("no fire") must not move the tier.
            base = current.model_copy(
                update={
                    "category": refined.category,
                    "required_skills": list(refined.required_skills),
                    "keywords": list(refined.keywords),
                    "estimated_cost": estimate_cost(refined.category, current.urgency),
                    "description": f"{current.urgency.value} {refined.category.value} issue requiring attention",
                    "preventive_maintenance": list(refined.preventive_maintenance),
                },
                deep=True,
            )
        else:
            base = current

        if is_reinforcing(reply):
            urgency = base.urgency.upgraded()
            classification = with_urgency(base, urgency).model_copy(
                update={
                    "property_damage": True,
                    "follow_up_required": True,
                    "description": f"{base.description} - tenant reports it is urgent",
                }
            )
            response = scenario.reinforced_response or DEFAULT_REINFORCED_RESPONSE
        else:
            classification = base.model_copy(deep=True)
            response = FOLLOW_UP_DISPATCH_RESPONSE
        session.classification = classification
        session.follow_ups_pending = []
        session.state = CallState.CLASSIFIED
        logger.info("Call %s follow-up: %s -> %s.", session.id,
                    current.urgency.value if current else "-", classification.urgency.value)
        return await self._dispatch(session, response)

    async def _dispatch(self, session: CallSession, response: str) -> TurnResult:
        session.state = CallState.DISPATCHING
        c = session.classification
        ticket = Ticket(
            call_id=session.id,
            title=f"{c.urgency.value}: {c.description}",
            description=c.description,
            category=c.category,
            urgency=c.urgency,
            property_id=session.property_id,
            unit=session.unit,
            tenant_phone=session.caller_phone,
        )
        self.tickets.create(ticket)
        session.ticket_id = ticket.id
        self.calls.save(session)
        activity.emit(EventType.TICKET_CREATED, ticket_id=ticket.id, call_id=session.id, urgency=c.urgency.value)

        result = await self.dispatcher.dispatch(ticket)
        if result.success and result.technician is not None:
            ack = (
                f"{result.technician.name} has been dispatched and should arrive by "
                f"{result.eta:%I:%M %p} UTC. You'll get a text message with the details."
            )
        else:
            ack = (
                "I've logged your request and a technician will be assigned shortly. "
                "You'll get a text message with updates."
            )
        self._terminate(session)
        return self._result(session, f"{response} {ack}", NextAction.DISPATCH, dispatch=result)

    def _escalate(self, session: CallSession, response: str, destination: str) -> TurnResult:
        session.state = CallState.ESCALATING
        logger.info("Call %s handed to a human at %s.", session.id, destination)
        activity.emit(EventType.CALL_ESCALATED, call_id=session.id, transfer_to=destination)
        self._terminate(session)
        return self._result(session, response, NextAction.ESCALATE, transfer_to=destination)

    def _apologize(self, session: CallSession) -> TurnResult:
        return self._escalate(session, APOLOGY, BACKUP_LINE)

    def _greet(self, session: CallSession) -> TurnResult:
        session.state = CallState.GATHERING
        return self._result(session, GREETING, NextAction.CONTINUE)

    def _terminate(self, session: CallSession) -> None:
        session.state = CallState.TERMINATED
        session.ended_at = utcnow()
        self._locks.pop(session.id, None)

    def _result(self, session: CallSession, text: str, action: NextAction, **extra) -> TurnResult:
        """Record the agent's reply on the transcript, persist the session and build the turn result."""
        session.turns.append(TranscriptTurn(speaker="agent", text=text))
        self.calls.save(session)
        return TurnResult(
            session_id=session.id,
            response_text=text,
            next_action=action,
            state=session.state,
            classification=session.classification,
            ticket_id=session.ticket_id,
            **extra,
        )
