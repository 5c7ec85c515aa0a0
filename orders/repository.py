"""
Purpose: Storage for orders and their dispatch lifetimes.
What it does:
- OrderBook: the dispatcher's read model of orders (pickup point, fees, status).
- DispatchRequestStore: owns DispatchRequest rows and their only write path,
  compare_and_set(), which applies a change only if the row is still in the
  expected state (and round). Concurrent writers therefore serialize to a
  single winner without any lock held across calls.

Rule: Store owns persistence + conditional writes, dispatch owns decisions.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from .models import DispatchRequest, DispatchState, LatLon, Order, OrderStatus


class ActiveRequestExistsError(Exception):
    """Raised when an order already has a non-terminal dispatch request."""

    def __init__(self, existing: DispatchRequest):
        super().__init__(f"Order {existing.order_id} already has live dispatch request {existing.id}")
        self.existing = existing


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderBook:
    """
    In-memory order lookup used by the dispatcher.
    """

    def __init__(self, orders: Iterable[Order] = ()):
        self._orders: Dict[str, Order] = {}
        self._mutex = threading.Lock()
        for order in orders:
            self.add(order)

    def add(self, order: Order) -> None:
        with self._mutex:
            #idempotency : dont double insert
            self._orders.setdefault(order.id, order)

    def get(self, order_id: str) -> Optional[Order]:
        with self._mutex:
            return self._orders.get(order_id)

    def set_status(self, order_id: str, status: OrderStatus) -> None:
        with self._mutex:
            order = self._orders.get(order_id)
            if order:
                order.status = status


class DispatchRequestStore:
    """
    In-memory DispatchRequest table with conditional updates.

    Invariant: at most one non-terminal request per order.
    """

    def __init__(self):
        self._rows: Dict[str, DispatchRequest] = {}
        self._live_by_order: Dict[str, str] = {}
        self._history_by_order: Dict[str, List[str]] = {}
        self._mutex = threading.Lock()

    # --- Public API ---

    def create(self, order_id: str, pickup: LatLon, now: Optional[datetime] = None) -> DispatchRequest:
        """
        Open a new dispatch lifetime for an order.
        Raises ActiveRequestExistsError if one is already live.
        """
        with self._mutex:
            live_id = self._live_by_order.get(order_id)
            if live_id is not None:
                raise ActiveRequestExistsError(self._rows[live_id])

            request = DispatchRequest.new(order_id, pickup, now=now)
            self._rows[request.id] = request
            self._live_by_order[order_id] = request.id
            self._history_by_order.setdefault(order_id, []).append(request.id)
            return request

    def get(self, request_id: str) -> Optional[DispatchRequest]:
        with self._mutex:
            return self._rows.get(request_id)

    def live_for_order(self, order_id: str) -> Optional[DispatchRequest]:
        with self._mutex:
            request_id = self._live_by_order.get(order_id)
            return self._rows.get(request_id) if request_id else None

    def latest_for_order(self, order_id: str) -> Optional[DispatchRequest]:
        with self._mutex:
            history = self._history_by_order.get(order_id)
            return self._rows[history[-1]] if history else None

    def all(self) -> List[DispatchRequest]:
        with self._mutex:
            return list(self._rows.values())

    def compare_and_set(
        self,
        request_id: str,
        expected_states: Iterable[DispatchState],
        *,
        expected_round: Optional[int] = None,
        expected_fields: Optional[Dict[str, object]] = None,
        now: Optional[datetime] = None,
        **changes,
    ) -> Optional[DispatchRequest]:
        """
        Apply `changes` only if the row's state is one of `expected_states`
        (and its round equals `expected_round`, and every `expected_fields`
        entry matches, when given).

        Returns the updated row, or None when the precondition failed.
        """
        expected = set(expected_states)
        with self._mutex:
            current = self._rows.get(request_id)
            if current is None or current.state not in expected:
                return None
            if expected_round is not None and current.round != expected_round:
                return None
            for name, value in (expected_fields or {}).items():
                if getattr(current, name) != value:
                    return None

            updated = replace(current, updated_at=now or _utcnow(), **changes)
            self._rows[request_id] = updated

            if updated.is_terminal and self._live_by_order.get(updated.order_id) == request_id:
                del self._live_by_order[updated.order_id]

            return updated
