#!/usr/bin/env python3
"""
Simulate a tenant call against the triage engine in the terminal.
Usage:
  python scripts/simulate_call.py                      # interactive: type what the tenant says
  python scripts/simulate_call.py "My toilet won't flush" "it's overflowing"
(Run from project root with venv activated.)
"""

import asyncio
import logging
import os
import sys
from typing import Optional

# Add project root for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from triage.errors import CallEnded
from triage.services import build_services
from triage.telephony import ScriptedTelephonySession, run_call


class ConsoleTelephonySession:
    """Reads tenant speech from stdin; EOF (Ctrl-D) hangs up. Blank input counts as silence."""

    async def get_next_utterance(self, timeout: float) -> Optional[str]:
        try:
            line = await asyncio.to_thread(input, "tenant> ")
        except EOFError:
            raise CallEnded("caller hung up") from None
        return line or None

    async def speak(self, text: str) -> None:
        print(f"agent> {text}")

    async def transfer_to_human(self, destination: str) -> None:
        print(f"[transferring call to {destination}]")

    async def end_call(self) -> None:
        print("[call ended]")


async def main(script: list[str]) -> int:
    svc = build_services()
    if script:
        telephony = ScriptedTelephonySession(script)
    else:
        telephony = ConsoleTelephonySession()
    session = await run_call(svc.agent, telephony, caller_phone="+15550100")
    if script:
        for line in telephony.spoken:
            print(f"agent> {line}")
    print(f"Call {session.id} finished in state {session.state.value}.")
    if session.ticket_id:
        ticket = svc.tickets.get(session.ticket_id)
        print(f"Ticket {ticket.id}: {ticket.title} [{ticket.status.value}] -> {ticket.assigned_technician_id}")
    return 0


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    sys.exit(asyncio.run(main(sys.argv[1:])))
