"""
Purpose: Ranking model (the "who is best" layer).
What it does:
Takes a pickup point and one courier snapshot and produces a fitness score in
[0, 100] with a per-factor breakdown:

distance   = max(0, 100 - (distance_km / 10) * 100)
load       = 100 (idle) | 70 (one order) | 30 (two or more)
rating     = ((rating - 3.0) / 2.0) * 100, clamped to [0, 100]
experience = min(100, 20 + (lifetime_deliveries / 100) * 80)

Rule: pure functions only. No directory access, no I/O.
Eligibility (online, radius, capacity...) is decided in selection.py, not here.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from .geo import haversine_km
from .models import CourierPresence, LatLon
from .policy import EligibilityPolicy, default_eligibility_policy


@dataclass(frozen=True)
class ScoreResult:
    fitness: float
    distance_km: float
    breakdown: Dict[str, float]


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def distance_score(distance_km: float, policy: EligibilityPolicy) -> float:
    return max(0.0, 100.0 - (distance_km / policy.distance_zero_score_km) * 100.0)


def load_score(current_count: int) -> float:
    if current_count <= 0:
        return 100.0
    if current_count == 1:
        return 70.0
    return 30.0


def rating_score(rating: float, policy: EligibilityPolicy) -> float:
    return _clamp(((float(rating) - policy.rating_floor) / policy.rating_span) * 100.0)


def experience_score(lifetime_deliveries: int, policy: EligibilityPolicy) -> float:
    base = policy.experience_base
    return min(
        100.0,
        base + (lifetime_deliveries / policy.experience_full_deliveries) * (100.0 - base),
    )


def score_at_distance(
    distance_km: float,
    courier: CourierPresence,
    policy: Optional[EligibilityPolicy] = None,
) -> ScoreResult:
    """
    Score a courier whose distance to the pickup is already known.
    """
    policy = policy or default_eligibility_policy()

    breakdown = {
        "distance": distance_score(distance_km, policy),
        "load": load_score(courier.current_count),
        "rating": rating_score(courier.rating, policy),
        "experience": experience_score(courier.lifetime_deliveries, policy),
    }
    weights = policy.weights
    fitness = sum(breakdown[name] * weights[name] for name in breakdown)

    return ScoreResult(fitness=_clamp(fitness), distance_km=distance_km, breakdown=breakdown)


def score(
    pickup: LatLon,
    courier: CourierPresence,
    policy: Optional[EligibilityPolicy] = None,
) -> ScoreResult:
    """
    Fitness of `courier` for an order picked up at `pickup`.

    Raises ValueError if the courier has no known location; callers filter
    those out first.
    """
    location = courier.location
    if location is None:
        raise ValueError(f"Courier {courier.id} has no known location")

    return score_at_distance(haversine_km(pickup, location), courier, policy)
