"""
Purpose: Data models for the offer ledger.
What it does:
Defines the time-boxed Offer of one order to one courier and the enums used by
courier responses and ledger results.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional


class OfferState(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"
    SUPERSEDED = "superseded"


class Decision(str, Enum):
    """What the courier tapped in the app."""
    ACCEPT = "accept"
    REJECT = "reject"


class RespondResult(str, Enum):
    SUCCESS = "success"
    STALE = "stale"


@dataclass(frozen=True)
class Offer:
    id: str
    request_id: str
    order_id: str
    courier_id: str
    state: OfferState
    issued_at: datetime
    expires_at: datetime

    # Cascade round of the dispatch lifetime this offer was issued in.
    round: int = 0

    # Ranking context at issue time, kept for operational debugging.
    rank: int = 0
    distance_km: Optional[float] = None
    fitness: Optional[float] = None
    breakdown: Dict[str, float] = field(default_factory=dict)

    estimated_earnings: Optional[float] = None
    responded_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None

    def is_live(self, now: datetime) -> bool:
        return self.state == OfferState.PENDING and now < self.expires_at
