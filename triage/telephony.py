"""
Telephony driver: runs one call against the conversation agent.

The transport (Twilio, a SIP bridge, the console simulator) implements
TelephonySession; run_call owns the turn loop: greet, wait for speech with a
bounded timeout, re-prompt on silence, speak each reply, and finish by ending
the call or transferring it to a human.
"""

import logging
from typing import Optional, Protocol

from triage.config import ESCALATION_NUMBER, MAX_REPROMPTS, UTTERANCE_TIMEOUT_SECONDS
from triage.conversation import ConversationAgent
from triage.errors import CallEnded
from triage.models import CallSession, CallState, NextAction
from triage.scenarios import CLOSING, TRANSFER_NOTICE

logger = logging.getLogger(__name__)


class TelephonySession(Protocol):
    async def get_next_utterance(self, timeout: float) -> Optional[str]:
        """Next caller utterance, or None on timeout. Raises CallEnded when the caller hangs up."""
        ...

    async def speak(self, text: str) -> None: ...

    async def transfer_to_human(self, destination: str) -> None: ...

    async def end_call(self) -> None: ...


async def run_call(
    agent: ConversationAgent,
    telephony: TelephonySession,
    caller_phone: str,
    property_id: Optional[str] = None,
    unit: Optional[str] = None,
    timeout: float = UTTERANCE_TIMEOUT_SECONDS,
    max_reprompts: int = MAX_REPROMPTS,
) -> CallSession:
    """Drive a call to completion and return the final session record."""
    session = agent.start_call(caller_phone, property_id=property_id, unit=unit)
    greeting = await agent.handle_utterance(session.id, None)
    await telephony.speak(greeting.response_text)

    silences = 0
    while True:
        try:
            utterance = await telephony.get_next_utterance(timeout)
        except CallEnded:
            agent.hangup(session.id)
            break

        if utterance is None or not utterance.strip():
            silences += 1
            if silences > max_reprompts:
                logger.info("Call %s silent after %d re-prompts; transferring.", session.id, max_reprompts)
                await telephony.speak(TRANSFER_NOTICE)
                await telephony.transfer_to_human(ESCALATION_NUMBER)
                agent.hangup(session.id, reason="silence")
                break
            await telephony.speak(agent.reprompt(session.id).response_text)
            continue
        silences = 0

        try:
            result = await agent.handle_utterance(session.id, utterance)
        except CallEnded:
            break
        await telephony.speak(result.response_text)

        if result.next_action == NextAction.ESCALATE:
            await telephony.transfer_to_human(result.transfer_to or ESCALATION_NUMBER)
            break
        if result.state == CallState.TERMINATED:
            await telephony.speak(CLOSING)
            await telephony.end_call()
            break

    return agent.calls.get(session.id)


class ScriptedTelephonySession:
    """
    In-memory transport that plays back a fixed list of caller utterances.
    None in the script is a silent turn (timeout); running out of script is a hangup.
    Everything the agent says or does is recorded for inspection.
    """

    def __init__(self, utterances: list[Optional[str]]) -> None:
        self._script = list(utterances)
        self.spoken: list[str] = []
        self.transferred_to: Optional[str] = None
        self.ended = False

    async def get_next_utterance(self, timeout: float) -> Optional[str]:
        if not self._script:
            raise CallEnded("caller hung up")
        return self._script.pop(0)

    async def speak(self, text: str) -> None:
        self.spoken.append(text)

    async def transfer_to_human(self, destination: str) -> None:
        self.transferred_to = destination

    async def end_call(self) -> None:
        self.ended = True
