"""Builds the collaborator graph (stores, registry, sender, engines) from configuration."""

import logging
from dataclasses import dataclass
from typing import Optional

from triage.config import REGISTRY_BACKEND
from triage.conversation import ConversationAgent
from triage.dispatcher import DispatchEngine
from triage.escalation import EscalationMonitor
from triage.notifier import NotificationSender, build_sender
from triage.registry import (
    InMemoryTechnicianRegistry,
    RedisTechnicianRegistry,
    TechnicianRegistry,
    seed_mock_technicians,
)
from triage.stores import CallStore, NotificationLog, PropertyDirectory, TicketStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    calls: CallStore
    tickets: TicketStore
    notifications: NotificationLog
    properties: PropertyDirectory
    registry: TechnicianRegistry
    sender: NotificationSender
    dispatcher: DispatchEngine
    agent: ConversationAgent
    escalation: EscalationMonitor


def build_registry(backend: str = REGISTRY_BACKEND) -> TechnicianRegistry:
    if backend == "redis":
        return RedisTechnicianRegistry()
    if backend != "memory":
        logger.warning("Unknown REGISTRY_BACKEND %r; using in-memory registry.", backend)
    return InMemoryTechnicianRegistry()


def build_services(
    registry: Optional[TechnicianRegistry] = None,
    sender: Optional[NotificationSender] = None,
    seed: bool = True,
) -> Services:
    calls = CallStore()
    tickets = TicketStore()
    notifications = NotificationLog()
    properties = PropertyDirectory()
    registry = registry if registry is not None else build_registry()
    sender = sender if sender is not None else build_sender()
    if seed:
        seed_mock_technicians(registry)
    dispatcher = DispatchEngine(registry, tickets, calls, notifications, sender, properties)
    return Services(
        calls=calls,
        tickets=tickets,
        notifications=notifications,
        properties=properties,
        registry=registry,
        sender=sender,
        dispatcher=dispatcher,
        agent=ConversationAgent(calls, tickets, dispatcher),
        escalation=EscalationMonitor(tickets, calls, properties, notifications, sender),
    )
