"""
Purpose: Business rules for choosing the best courier for a pickup.
What it does:
Accepts a pickup point and a pool of courier snapshots, filters out
ineligible couriers (hard gates), and ranks the remaining ones by fitness.
"""

import logging
from typing import Iterable, List, Optional, Tuple

from .geo import haversine_km, is_valid_coordinate
from .models import CourierPresence, LatLon, RankedCandidate
from .policy import EligibilityPolicy, default_eligibility_policy
from .scoring import score_at_distance

logger = logging.getLogger(__name__)


def eligible_distance_km(
    pickup: LatLon,
    courier: CourierPresence,
    policy: EligibilityPolicy,
) -> Optional[float]:
    """
    Returns the courier's distance to the pickup if they pass every hard gate,
    otherwise None.

    Gates: online, accepting orders, known location, rating floor,
    spare capacity, pickup radius.
    """
    if not courier.online or not courier.available_for_orders:
        return None

    if not is_valid_coordinate(courier.location):
        return None

    if float(courier.rating) < policy.min_rating:
        return None

    if not courier.has_capacity:
        return None

    distance_km = haversine_km(pickup, courier.location)
    if distance_km > policy.max_pickup_distance_km:
        return None

    return distance_km


def filter_eligible_couriers(
    pickup: LatLon,
    couriers: Iterable[CourierPresence],
    policy: Optional[EligibilityPolicy] = None,
) -> List[Tuple[CourierPresence, float]]:
    """
    Returns (courier, distance_km) for every courier that passes the gates.
    Bad presence data makes that single courier ineligible.
    """
    policy = policy or default_eligibility_policy()
    eligible = []

    for courier in couriers:
        try:
            distance_km = eligible_distance_km(pickup, courier, policy)
        except (TypeError, ValueError) as exc:
            logger.debug("Skipping courier %s with malformed presence: %s", courier.id, exc)
            continue

        if distance_km is not None:
            eligible.append((courier, distance_km))

    return eligible


def rank_candidates(
    pickup: LatLon,
    couriers: Iterable[CourierPresence],
    policy: Optional[EligibilityPolicy] = None,
    exclude: Iterable[str] = (),
) -> List[RankedCandidate]:
    """
    Filter, score and sort couriers for one pickup point.

    Ordering is deterministic: fitness descending, then distance ascending,
    then courier id.
    """
    policy = policy or default_eligibility_policy()
    excluded = set(exclude)

    ranked: List[RankedCandidate] = []
    pool = [courier for courier in couriers if courier.id not in excluded]

    for courier, distance_km in filter_eligible_couriers(pickup, pool, policy):
        try:
            result = score_at_distance(distance_km, courier, policy)
        except (TypeError, ValueError, ZeroDivisionError) as exc:
            logger.debug("Could not score courier %s: %s", courier.id, exc)
            continue

        ranked.append(
            RankedCandidate(
                courier_id=courier.id,
                fitness=result.fitness,
                distance_km=result.distance_km,
                breakdown=result.breakdown,
            )
        )

    ranked.sort(key=lambda candidate: (-candidate.fitness, candidate.distance_km, candidate.courier_id))
    return ranked
