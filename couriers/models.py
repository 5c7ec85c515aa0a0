"""
Purpose: Core data models for the couriers domain.
What it does:
Defines the presence record of a delivery partner (online flag, last known
location, rating, workload) and the ranked candidate produced for dispatch,
without relying on any storage backend.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Tuple

LatLon = Tuple[float, float]

DEFAULT_MAX_CAPACITY = 3


class LoadUpdate(str, Enum):
    """
    Result of a conditional change to a courier's concurrent-order count.
    """
    SUCCESS = "success"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class CourierPresence:
    """
    A point-in-time snapshot of one courier.

    The courier's own client writes `online`, `available_for_orders` and the
    location fields. `current_count` is written by the dispatcher only.
    """
    id: str
    online: bool = False
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    rating: float = 0.0
    lifetime_deliveries: int = 0
    current_count: int = 0
    max_capacity: int = DEFAULT_MAX_CAPACITY

    # Paused couriers stay online (location still streams) but get no offers.
    available_for_orders: bool = True
    last_online_at: Optional[datetime] = None
    last_ping_at: Optional[datetime] = None

    @property
    def location(self) -> Optional[LatLon]:
        if self.latitude is None or self.longitude is None:
            return None
        return (self.latitude, self.longitude)

    @property
    def has_capacity(self) -> bool:
        return self.current_count < self.max_capacity

    @classmethod
    def new(
        cls,
        courier_id: str,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
        *,
        online: bool = False,
        rating: float = 0.0,
        lifetime_deliveries: int = 0,
        current_count: int = 0,
        max_capacity: int = DEFAULT_MAX_CAPACITY,
        now: Optional[datetime] = None,
    ) -> CourierPresence:
        if max_capacity < 0:
            raise ValueError(f"Courier {courier_id} max_capacity must be >= 0")
        if not 0 <= current_count <= max_capacity:
            raise ValueError(
                f"Courier {courier_id} current_count {current_count} outside [0, {max_capacity}]"
            )

        has_location = lat is not None and lng is not None
        return cls(
            id=courier_id,
            online=online,
            latitude=lat,
            longitude=lng,
            rating=rating,
            lifetime_deliveries=lifetime_deliveries,
            current_count=current_count,
            max_capacity=max_capacity,
            last_online_at=now if online else None,
            last_ping_at=now if has_location else None,
        )


@dataclass(frozen=True)
class RankedCandidate:
    """
    An eligible courier with the score it earned for one pickup point.
    This is what the dispatcher consumes to decide who gets the next offer.
    """
    courier_id: str
    fitness: float
    distance_km: float
    breakdown: Dict[str, float] = field(default_factory=dict)
