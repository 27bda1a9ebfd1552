"""
Scripted scenario library for the conversation agent.

SCENARIOS is an ordered table of (trigger phrases, scenario) evaluated top to
bottom; the first scenario with a trigger that appears in the utterance wins.
Unmatched utterances get FALLBACK_SCENARIO, which is kept out of the table.
New scenarios are added as rows, not as branches in the agent.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from triage.models import Category, Classification, CostEstimate, NextAction, Urgency


class ScenarioKey(str, Enum):
    FLOODING = "flooding"
    GAS = "gas"
    NO_HEAT = "no heat"
    ELECTRICAL = "electrical"
    TOILET = "toilet"
    FALLBACK = "default"


@dataclass(frozen=True)
class Scenario:
    key: ScenarioKey
    triggers: tuple[str, ...]
    response: str
    next_action: NextAction
    # None means "use the classifier's output" (fallback only).
    classification: Optional[Classification] = None
    follow_ups: tuple[str, ...] = field(default_factory=tuple)
    reinforced_response: str = ""

    def matches(self, text: str) -> bool:
        lowered = text.lower()
        return any(t in lowered for t in self.triggers)


GREETING = (
    "Thank you for calling the maintenance emergency line. "
    "I can help you right away. Please describe what's happening."
)
REPROMPT = "I didn't catch that. Please describe the maintenance issue you're having."
APOLOGY = (
    "I'm sorry, I'm having trouble processing your request. "
    "Let me transfer you to our backup line."
)
TRANSFER_NOTICE = "Let me transfer you to a property manager who can help further."
CLOSING = "Thank you for calling. Goodbye!"
EMERGENCY_FALLBACK_RESPONSE = (
    "That sounds like an emergency. Please move somewhere safe and keep clear of the problem area. "
    "I'm dispatching a technician right now."
)
DEFAULT_REINFORCED_RESPONSE = (
    "Thanks for letting me know, that makes this urgent. I'm dispatching a technician right away."
)
FOLLOW_UP_DISPATCH_RESPONSE = (
    "Thank you for the details. I'm creating a maintenance request and dispatching a technician."
)

# Phrases in a follow-up reply that raise urgency by one tier.
REINFORCING_PHRASES = (
    "only bathroom",
    "only toilet",
    "overflowing",
    "getting worse",
    "spreading",
    "can't stop",
    "won't stop",
)


SCENARIOS: list[Scenario] = [
    Scenario(
        key=ScenarioKey.FLOODING,
        triggers=("flood", "water everywhere"),
        response=(
            "I understand there is flooding in your home, and that is an emergency. "
            "If it is safe to do so, please turn off the water main and stay away from outlets near the water. "
            "I'm dispatching a plumber to you right now."
        ),
        next_action=NextAction.DISPATCH,
        classification=Classification(
            category=Category.PLUMBING,
            urgency=Urgency.EMERGENCY,
            confidence=0.98,
            keywords=["emergency", "flood", "water"],
            estimated_cost=CostEstimate(min=300, max=1000),
            required_skills=["plumbing", "water_damage"],
            time_estimate=3.0,
            description="Active flooding requiring immediate attention",
            safety_risk=True,
            property_damage=True,
            follow_up_required=True,
            preventive_maintenance=["Inspect supply lines annually", "Install water leak sensors"],
        ),
    ),
    Scenario(
        key=ScenarioKey.GAS,
        triggers=("smell gas", "smells like gas", "gas smell", "gas leak"),
        response=(
            "A gas smell is a safety emergency. Please leave the building now without switching "
            "any lights or appliances on or off, and call the gas utility once you are outside. "
            "I'm connecting you to our on-call manager."
        ),
        next_action=NextAction.ESCALATE,
        classification=Classification(
            category=Category.GENERAL,
            urgency=Urgency.EMERGENCY,
            confidence=0.97,
            keywords=["gas", "smell"],
            estimated_cost=CostEstimate(min=150, max=500),
            required_skills=["general"],
            time_estimate=1.0,
            description="Suspected gas leak",
            safety_risk=True,
            property_damage=True,
            follow_up_required=True,
            preventive_maintenance=["Annual gas appliance inspection"],
        ),
    ),
    Scenario(
        key=ScenarioKey.NO_HEAT,
        triggers=("no heat", "freezing", "heating is out", "heat is out"),
        response=(
            "I'm sorry you're without heat. That's urgent, and I'm dispatching an HVAC technician now. "
            "Until they arrive, keep interior doors closed and only use space heaters if you can do so safely."
        ),
        next_action=NextAction.DISPATCH,
        classification=Classification(
            category=Category.HVAC,
            urgency=Urgency.HIGH,
            confidence=0.95,
            keywords=["cold", "heat", "hvac"],
            estimated_cost=CostEstimate(min=150, max=500),
            required_skills=["hvac"],
            time_estimate=2.0,
            description="No heat in the unit",
            safety_risk=True,
            property_damage=False,
            follow_up_required=True,
            preventive_maintenance=["Annual HVAC inspection"],
        ),
    ),
    Scenario(
        key=ScenarioKey.ELECTRICAL,
        triggers=("sparks", "sparking", "electrical", "burning smell"),
        response=(
            "Electrical problems can be dangerous. Please stay away from that outlet or switch, "
            "don't touch any exposed wires, and switch that circuit off at the breaker if you can reach it safely. "
            "I'm dispatching an electrician right away."
        ),
        next_action=NextAction.DISPATCH,
        classification=Classification(
            category=Category.ELECTRICAL,
            urgency=Urgency.EMERGENCY,
            confidence=0.97,
            keywords=["electrical", "outlet", "sparks"],
            estimated_cost=CostEstimate(min=100, max=400),
            required_skills=["electrical"],
            time_estimate=2.0,
            description="Electrical safety hazard",
            safety_risk=True,
            property_damage=True,
            follow_up_required=True,
            preventive_maintenance=["Electrical system inspection"],
        ),
    ),
    Scenario(
        key=ScenarioKey.TOILET,
        triggers=("toilet",),
        response="I'm sorry your toilet is giving you trouble.",
        next_action=NextAction.CONTINUE,
        classification=Classification(
            category=Category.PLUMBING,
            urgency=Urgency.MEDIUM,
            confidence=0.85,
            keywords=["bathroom", "plumbing", "toilet"],
            estimated_cost=CostEstimate(min=75, max=250),
            required_skills=["plumbing"],
            time_estimate=1.5,
            description="Toilet malfunction",
            preventive_maintenance=["Regular toilet maintenance"],
        ),
        follow_ups=(
            "Is this your only bathroom, and is water overflowing onto the floor?",
            "Can you reach the shut-off valve behind the toilet?",
        ),
        reinforced_response=(
            "I understand, that makes this urgent. I'm dispatching a plumber now. "
            "Please turn off the valve behind the toilet if you can reach it."
        ),
    ),
]

FALLBACK_SCENARIO = Scenario(
    key=ScenarioKey.FALLBACK,
    triggers=(),
    response="I understand you're having a maintenance issue.",
    next_action=NextAction.CONTINUE,
    follow_ups=(
        "Can you describe what's happening in a bit more detail?",
        "Is there any immediate danger or water damage?",
    ),
)
FALLBACK_CONFIDENCE = 0.70


def match_scenario(text: str) -> Scenario:
    """First scenario whose trigger appears in the text (case-insensitive), else the fallback."""
    for scenario in SCENARIOS:
        if scenario.matches(text):
            return scenario
    return FALLBACK_SCENARIO


def scenario_for_key(key: Optional[str]) -> Scenario:
    for scenario in SCENARIOS:
        if scenario.key.value == key:
            return scenario
    return FALLBACK_SCENARIO


def is_reinforcing(reply: str) -> bool:
    lowered = reply.lower()
    return any(p in lowered for p in REINFORCING_PHRASES)
