"""
Weighted technician scoring for dispatch.

score = rating
      + (60 - response_time_minutes) / 12
      + 2 * |matched skills|
      + 3                     if EMERGENCY and response_time_minutes <= 20
      - avg_rate / 50         if not EMERGENCY, avg_rate = (hourly + emergency) / 2

Ranking is deterministic: higher score first, then lower response time, then
lower technician id. Scores are rounded to 6 decimals so float noise cannot
split a tie.
"""

import logging
from typing import Iterable

import numpy as np

from triage.models import Technician, Urgency

logger = logging.getLogger(__name__)

RESPONSE_TIME_BASELINE_MINUTES = 60
RESPONSE_TIME_DIVISOR = 12
SKILL_MATCH_WEIGHT = 2.0
FAST_EMERGENCY_MINUTES = 20
FAST_EMERGENCY_BONUS = 3.0
RATE_PENALTY_DIVISOR = 50


def matched_skills(technician: Technician, required_skills: Iterable[str]) -> list[str]:
    required = {s.lower() for s in required_skills}
    return sorted(s for s in technician.skills if s in required)


def compute_scores(
    technicians: list[Technician],
    required_skills: Iterable[str],
    urgency: Urgency,
) -> np.ndarray:
    """Score every candidate; index i of the result belongs to technicians[i]."""
    required = list(required_skills)
    rating = np.array([t.rating for t in technicians], dtype=np.float64)
    response = np.array([t.response_time_minutes for t in technicians], dtype=np.float64)
    matches = np.array([len(matched_skills(t, required)) for t in technicians], dtype=np.float64)
    scores = rating + (RESPONSE_TIME_BASELINE_MINUTES - response) / RESPONSE_TIME_DIVISOR
    scores += SKILL_MATCH_WEIGHT * matches
    if urgency == Urgency.EMERGENCY:
        scores += np.where(response <= FAST_EMERGENCY_MINUTES, FAST_EMERGENCY_BONUS, 0.0)
    else:
        avg_rate = np.array([(t.hourly_rate + t.emergency_rate) / 2 for t in technicians], dtype=np.float64)
        scores -= avg_rate / RATE_PENALTY_DIVISOR
    return np.round(scores, 6)


def rank_technicians(
    technicians: list[Technician],
    required_skills: Iterable[str],
    urgency: Urgency,
) -> list[tuple[Technician, float]]:
    """Candidates best first, each with its score."""
    if not technicians:
        return []
    scores = compute_scores(technicians, required_skills, urgency)
    response = np.array([t.response_time_minutes for t in technicians], dtype=np.float64)
    id_rank = np.argsort(np.argsort(np.array([t.id for t in technicians])))
    # np.lexsort sorts by the last key first.
    order = np.lexsort((id_rank, response, -scores))
    ranked = [(technicians[i], float(scores[i])) for i in order]
    logger.debug("Ranked candidates: %s", [(t.id, s) for t, s in ranked])
    return ranked


def select_best_technician(
    technicians: list[Technician],
    required_skills: Iterable[str],
    urgency: Urgency,
) -> Technician | None:
    ranked = rank_technicians(technicians, required_skills, urgency)
    return ranked[0][0] if ranked else None
