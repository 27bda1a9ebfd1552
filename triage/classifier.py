"""Deterministic keyword classifier: urgency tier, category, cost and risk flags."""

import asyncio
import re

from triage.config import CLASSIFIER_LATENCY_MS
from triage.models import Category, Classification, CostEstimate, TenantVulnerability, Urgency

CONFIDENCE = 0.85

# Urgency tiers, checked highest first; plain case-insensitive substrings.
URGENCY_KEYWORDS = [
    (Urgency.EMERGENCY, ["flood", "gas", "fire", "sparks", "electrical smell", "sewage"]),
    (Urgency.HIGH, ["no heat", "no hot water", "only toilet", "broken lock"]),
    (Urgency.MEDIUM, ["leak", "drip", "broken", "not working"]),
]

# Category keywords (case-insensitive). First match wins in order: plumbing, electrical, hvac, appliance.
# "ac" and "air" need word boundaries, otherwise "back" or "repair" would read as HVAC.
CATEGORY_PATTERNS = [
    (Category.PLUMBING, [r"toilet", r"sink", r"pipe", r"flood", r"leak"]),
    (Category.ELECTRICAL, [r"electrical", r"outlet", r"light", r"power"]),
    (Category.HVAC, [r"heat", r"\bac\b", r"\bair\b", r"temperature"]),
    (Category.APPLIANCE, [r"appliance", r"fridge", r"stove", r"washer"]),
]

# USD (min, max) per category and urgency tier.
COST_TABLE = {
    Category.PLUMBING: {Urgency.LOW: (50, 150), Urgency.MEDIUM: (100, 300), Urgency.HIGH: (200, 500), Urgency.EMERGENCY: (300, 1000)},
    Category.ELECTRICAL: {Urgency.LOW: (75, 200), Urgency.MEDIUM: (150, 350), Urgency.HIGH: (250, 600), Urgency.EMERGENCY: (400, 1200)},
    Category.HVAC: {Urgency.LOW: (100, 250), Urgency.MEDIUM: (200, 400), Urgency.HIGH: (300, 700), Urgency.EMERGENCY: (500, 1500)},
    Category.APPLIANCE: {Urgency.LOW: (50, 150), Urgency.MEDIUM: (100, 250), Urgency.HIGH: (150, 400), Urgency.EMERGENCY: (200, 600)},
    Category.GENERAL: {Urgency.LOW: (50, 100), Urgency.MEDIUM: (75, 200), Urgency.HIGH: (100, 300), Urgency.EMERGENCY: (150, 500)},
    Category.SECURITY: {Urgency.LOW: (100, 200), Urgency.MEDIUM: (150, 300), Urgency.HIGH: (200, 500), Urgency.EMERGENCY: (300, 800)},
}

TIME_ESTIMATE_HOURS = {Urgency.EMERGENCY: 1.0, Urgency.HIGH: 2.0}
DEFAULT_TIME_ESTIMATE_HOURS = 3.0

VULNERABILITY_PATTERNS = [
    (TenantVulnerability.ELDERLY, r"\b(?:elderly|grandmother|grandfather|grandma|grandpa|senior|in my (?:70s|80s|90s))\b"),
    (TenantVulnerability.DISABLED, r"\b(?:disabled|disability|wheelchair|oxygen|can't walk|cannot walk)\b"),
    (TenantVulnerability.CHILDREN, r"\b(?:baby|babies|infant|newborn|toddler|kids|children|child)\b"),
]

PREVENTIVE_MAINTENANCE = {
    Category.PLUMBING: ["Inspect supply lines and shut-off valves annually", "Install water leak sensors"],
    Category.ELECTRICAL: ["Schedule an electrical panel inspection", "Test GFCI outlets monthly"],
    Category.HVAC: ["Replace HVAC filters every three months", "Book an annual HVAC service"],
    Category.APPLIANCE: ["Clean appliance vents and coils twice a year"],
}

_category_res = [
    (category, [re.compile(p, re.IGNORECASE) for p in patterns])
    for category, patterns in CATEGORY_PATTERNS
]
_vulnerability_res = [(v, re.compile(p, re.IGNORECASE)) for v, p in VULNERABILITY_PATTERNS]


def _match_urgency(text: str) -> tuple[Urgency, list[str]]:
    """Highest tier whose keywords appear in the text, with the keywords that matched."""
    lowered = text.lower()
    for urgency, keywords in URGENCY_KEYWORDS:
        hits = [k for k in keywords if k in lowered]
        if hits:
            return urgency, hits
    return Urgency.LOW, []


def _match_category(text: str) -> tuple[Category, list[str]]:
    for category, regexes in _category_res:
        hits = []
        for regex in regexes:
            m = regex.search(text)
            if m:
                hits.append(m.group(0).lower())
        if hits:
            return category, hits
    return Category.GENERAL, []


def _match_vulnerability(text: str) -> TenantVulnerability:
    for vulnerability, regex in _vulnerability_res:
        if regex.search(text):
            return vulnerability
    return TenantVulnerability.NONE


def estimate_cost(category: Category, urgency: Urgency) -> CostEstimate:
    low, high = COST_TABLE[category][urgency]
    return CostEstimate(min=low, max=high)


def classify(transcript: str) -> Classification:
    """
    Classify a tenant's description. Total over any input: unmatched text
    falls back to LOW / general. Same text, same result.
    """
    text = transcript or ""
    urgency, urgency_hits = _match_urgency(text)
    category, category_hits = _match_category(text)
    return Classification(
        category=category,
        urgency=urgency,
        confidence=CONFIDENCE,
        keywords=sorted(set(urgency_hits + category_hits)),
        estimated_cost=estimate_cost(category, urgency),
        required_skills=[category.value],
        time_estimate=TIME_ESTIMATE_HOURS.get(urgency, DEFAULT_TIME_ESTIMATE_HOURS),
        description=f"{urgency.value} {category.value} issue requiring attention",
        safety_risk=urgency == Urgency.EMERGENCY,
        property_damage=urgency in (Urgency.EMERGENCY, Urgency.HIGH),
        tenant_vulnerability=_match_vulnerability(text),
        follow_up_required=urgency in (Urgency.EMERGENCY, Urgency.HIGH),
        preventive_maintenance=list(PREVENTIVE_MAINTENANCE.get(category, [])),
    )


async def classify_async(transcript: str) -> Classification:
    """
    Awaitable entry point used by the conversation agent. A remote model would
    be called here and raise ClassificationUnavailable on transient failure;
    the keyword classifier only simulates latency (CLASSIFIER_LATENCY_MS).
    """
    if CLASSIFIER_LATENCY_MS > 0:
        await asyncio.sleep(CLASSIFIER_LATENCY_MS / 1000)
    return classify(transcript)
