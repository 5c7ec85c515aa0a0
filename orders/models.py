"""
Purpose: Domain models for the Orders capability, as seen by dispatch.
What it does:
- Defines core data structures:
- Order (id, restaurant, pickup/dropoff coords, fees, status)
- DispatchRequest (one dispatch lifetime of an order: state, round, assigned courier)

Defines enums/constants:
- OrderStatus = READY | ASSIGNED | DELIVERED | CANCELLED
- DispatchState = UNASSIGNED | OFFERING | ASSIGNED | EXHAUSTED
- ExhaustedReason = NO_CANDIDATES | MAX_ROUNDS | CANCELLED | OFFER_CONFLICT

Rule: Models only. Transitions live in dispatch/state_machines.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple
import uuid

LatLon = Tuple[float, float]


class OrderStatus(Enum):
    READY = "ready"
    ASSIGNED = "assigned"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class DispatchState(str, Enum):
    UNASSIGNED = "unassigned"
    OFFERING = "offering"
    ASSIGNED = "assigned"
    EXHAUSTED = "exhausted"

    @property
    def is_terminal(self) -> bool:
        return self in (DispatchState.ASSIGNED, DispatchState.EXHAUSTED)


class ExhaustedReason(str, Enum):
    NO_CANDIDATES = "no_candidates"
    MAX_ROUNDS = "max_rounds"
    CANCELLED = "cancelled"
    OFFER_CONFLICT = "offer_conflict"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Order:
    """
    The parts of an order the dispatcher reads.
    A missing pickup (restaurant without coordinates) is a configuration error.
    """

    id: str
    pickup_coordinates: Optional[LatLon]
    dropoff_coordinates: Optional[LatLon] = None
    restaurant_id: Optional[str] = None

    delivery_fee: float = 0.0
    tip: float = 0.0

    created_at: datetime = field(default_factory=_utcnow)
    status: OrderStatus = OrderStatus.READY

    @property
    def estimated_earnings(self) -> float:
        return round(self.delivery_fee + self.tip, 2)


@dataclass(frozen=True)
class DispatchRequest:
    """
    One dispatch lifetime for an order.

    Frozen: every change goes through the request store's compare-and-set,
    which swaps in a new instance.
    """

    id: str
    order_id: str
    pickup: LatLon
    created_at: datetime
    state: DispatchState = DispatchState.UNASSIGNED
    assigned_courier_id: Optional[str] = None
    round: int = 0

    active_offer_id: Optional[str] = None
    exhausted_reason: Optional[ExhaustedReason] = None
    updated_at: Optional[datetime] = None

    # Set once the assigned courier's load has been given back
    # (delivery completed or order cancelled after assignment).
    load_released: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @staticmethod
    def new(order_id: str, pickup: LatLon, now: Optional[datetime] = None) -> DispatchRequest:
        now = now or _utcnow()
        return DispatchRequest(
            id=str(uuid.uuid4()),
            order_id=order_id,
            pickup=pickup,
            created_at=now,
            updated_at=now,
        )
