"""
Purpose: Partner Directory, the read/write store of courier presence.
What it does:
- Exposes the interface the dispatcher depends on (`PartnerDirectory`), so a
  database-backed or fake directory can be injected.
- Ships an in-memory implementation where every write is a single-row
  compare-and-set: a row is read, checked and replaced under the row mutex,
  and nothing is held across calls.

Field ownership:
- courier client: online, available_for_orders, latitude/longitude
- dispatcher: current_count (increment_load / decrement_load only)
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from .models import CourierPresence, LatLon, LoadUpdate, RankedCandidate
from .policy import EligibilityPolicy, default_eligibility_policy
from .selection import rank_candidates

logger = logging.getLogger(__name__)


class CourierNotFoundError(LookupError):
    """Raised when a courier id is not registered in the directory."""
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PartnerDirectory(ABC):
    """
    What the dispatcher needs from courier presence storage.
    """

    @abstractmethod
    def list_eligible(self, pickup: LatLon, exclude: Iterable[str] = ()) -> List[RankedCandidate]:
        """Ranked eligible couriers, best first. Empty is a normal result."""

    @abstractmethod
    def increment_load(self, courier_id: str) -> LoadUpdate:
        """Conditional +1 on current_count; CONFLICT if capacity would be exceeded."""

    @abstractmethod
    def decrement_load(self, courier_id: str) -> None:
        """-1 on current_count, floored at zero."""

    @abstractmethod
    def get(self, courier_id: str) -> CourierPresence:
        """Snapshot of one courier. Raises CourierNotFoundError."""


class InMemoryPartnerDirectory(PartnerDirectory):
    """
    Thread-safe in-memory directory.
    """

    def __init__(
        self,
        couriers: Iterable[CourierPresence] = (),
        policy: Optional[EligibilityPolicy] = None,
    ):
        self.policy = policy or default_eligibility_policy()
        self._rows: Dict[str, CourierPresence] = {}
        self._mutex = threading.Lock()

        for courier in couriers:
            self.register(courier)

    # --- Onboarding / reads ---

    def register(self, courier: CourierPresence) -> None:
        """
        Add a courier. Registering an existing id is a no-op (couriers are never deleted).
        """
        with self._mutex:
            if courier.id in self._rows:
                return
            self._rows[courier.id] = courier

    def get(self, courier_id: str) -> CourierPresence:
        with self._mutex:
            return self._row(courier_id)

    def snapshot(self) -> List[CourierPresence]:
        with self._mutex:
            return list(self._rows.values())

    def list_eligible(self, pickup: LatLon, exclude: Iterable[str] = ()) -> List[RankedCandidate]:
        # Rank a consistent snapshot; ranking itself runs outside the mutex.
        return rank_candidates(pickup, self.snapshot(), policy=self.policy, exclude=exclude)

    # --- Courier-owned fields ---

    def set_online(self, courier_id: str, online: bool, now: Optional[datetime] = None) -> CourierPresence:
        now = now or _utcnow()
        with self._mutex:
            row = self._row(courier_id)
            changes = {"online": bool(online)}
            if online:
                changes["last_online_at"] = now
            updated = replace(row, **changes)
            self._rows[courier_id] = updated
        logger.info("Courier %s is now %s", courier_id, "online" if online else "offline")
        return updated

    def set_available(self, courier_id: str, available: bool) -> CourierPresence:
        with self._mutex:
            updated = replace(self._row(courier_id), available_for_orders=bool(available))
            self._rows[courier_id] = updated
        return updated

    def update_location(
        self,
        courier_id: str,
        lat: float,
        lng: float,
        now: Optional[datetime] = None,
    ) -> CourierPresence:
        now = now or _utcnow()
        with self._mutex:
            updated = replace(
                self._row(courier_id),
                latitude=float(lat),
                longitude=float(lng),
                last_ping_at=now,
            )
            self._rows[courier_id] = updated
        return updated

    # --- Dispatcher-owned field ---

    def increment_load(self, courier_id: str) -> LoadUpdate:
        with self._mutex:
            row = self._row(courier_id)
            if row.current_count >= row.max_capacity:
                logger.info(
                    "Load increment refused for courier %s (%s/%s)",
                    courier_id, row.current_count, row.max_capacity,
                )
                return LoadUpdate.CONFLICT
            self._rows[courier_id] = replace(row, current_count=row.current_count + 1)
            return LoadUpdate.SUCCESS

    def decrement_load(self, courier_id: str) -> None:
        with self._mutex:
            row = self._row(courier_id)
            if row.current_count <= 0:
                logger.warning("Load decrement for idle courier %s ignored", courier_id)
                return
            self._rows[courier_id] = replace(row, current_count=row.current_count - 1)

    # --- Internal ---

    def _row(self, courier_id: str) -> CourierPresence:
        try:
            return self._rows[courier_id]
        except KeyError:
            raise CourierNotFoundError(f"Courier {courier_id} is not registered") from None
