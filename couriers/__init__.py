"""
Couriers domain package.

Public API:
- Domain models: CourierPresence, RankedCandidate, LoadUpdate
- Geo Scorer: score, ScoreResult
- Ranking: rank_candidates
- Partner Directory: PartnerDirectory, InMemoryPartnerDirectory
"""
from .models import CourierPresence, RankedCandidate, LoadUpdate, LatLon
from .policy import EligibilityPolicy, default_eligibility_policy
from .scoring import score, ScoreResult
from .selection import rank_candidates
from .directory import PartnerDirectory, InMemoryPartnerDirectory, CourierNotFoundError

__all__ = [
    "CourierPresence",
    "RankedCandidate",
    "LoadUpdate",
    "LatLon",
    "EligibilityPolicy",
    "default_eligibility_policy",
    "score",
    "ScoreResult",
    "rank_candidates",
    "PartnerDirectory",
    "InMemoryPartnerDirectory",
    "CourierNotFoundError",
]
