"""
Purpose: Central configuration for courier eligibility and scoring.
What it does:

Stores all tunable thresholds/weights for choosing who gets an offer:

MIN_RATING = 4.0
MAX_PICKUP_DISTANCE_KM = 15
WEIGHTS = distance 0.40, load 0.25, rating 0.20, experience 0.15

Rule: No logic here, just parameters so you can tune without rewriting code.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict


@dataclass(frozen=True)
class EligibilityPolicy:
    """
    Central configuration for the eligibility gate and the fitness score.
    """

    # --- Hard eligibility gates ---
    min_rating: float = 4.0
    max_pickup_distance_km: float = 15.0

    # --- Distance sub-score ---
    # Distance at which the distance sub-score reaches 0 (linear from 100 at 0 km).
    distance_zero_score_km: float = 10.0

    # --- Rating sub-score ---
    # rating_floor maps to 0, rating_floor + rating_span maps to 100.
    rating_floor: float = 3.0
    rating_span: float = 2.0

    # --- Experience sub-score ---
    experience_base: float = 20.0
    experience_full_deliveries: int = 100

    # --- Composite weights ---
    weight_distance: float = 0.40
    weight_load: float = 0.25
    weight_rating: float = 0.20
    weight_experience: float = 0.15

    @property
    def weights(self) -> Dict[str, float]:
        return {
            "distance": self.weight_distance,
            "load": self.weight_load,
            "rating": self.weight_rating,
            "experience": self.weight_experience,
        }

    def validate(self) -> None:
        """
        Basic sanity checks.
        """
        if not 0 <= self.min_rating <= 5:
            raise ValueError("min_rating must be within [0, 5]")

        if self.max_pickup_distance_km <= 0:
            raise ValueError("max_pickup_distance_km must be > 0")

        if self.distance_zero_score_km <= 0:
            raise ValueError("distance_zero_score_km must be > 0")

        if self.rating_span <= 0:
            raise ValueError("rating_span must be > 0")

        if self.experience_full_deliveries <= 0:
            raise ValueError("experience_full_deliveries must be > 0")

        if any(weight < 0 for weight in self.weights.values()):
            raise ValueError("score weights must be >= 0")

        if abs(sum(self.weights.values()) - 1.0) > 1e-9:
            raise ValueError("score weights must sum to 1.0")


def default_eligibility_policy() -> EligibilityPolicy:
    """
    Convenience factory for the default policy.
    """
    p = EligibilityPolicy()
    p.validate()
    return p
