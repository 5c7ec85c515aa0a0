"""
Purpose: The Offer Ledger (concurrency-control core of dispatch).
What it does:
Records every (order, courier, state, expiry) offer and exposes the atomic
conditional transitions the dispatcher and the expiry sweeper race through:

- issue():         create a pending offer, refuse if the order already has an open one
- respond():       pending -> accepted/rejected, only for the right courier, only once
- expire_stale():  pending -> expired for every offer past its deadline (idempotent)
- supersede_open(): pending -> superseded when the order is settled another way

Every transition is a single-row compare-and-set executed under the ledger
mutex; the mutex is never held across calls, so there is no global dispatch lock.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import Counter
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set

from .errors import ConflictError
from .models import Decision, Offer, OfferState, RespondResult
from .state_machines.offer_state import DECLINED_STATES, OPEN_STATES, can_transition, transition_offer

logger = logging.getLogger(__name__)

DEFAULT_OFFER_TTL = timedelta(seconds=45)


class OfferLedger:
    """
    In-memory, append-only offer table.
    Offers are never deleted; only their state moves forward. Sweeps and
    round exclusions read the pending and declined indexes, not the full table.
    """

    def __init__(self):
        self._offers: Dict[str, Offer] = {}
        self._by_order: Dict[str, List[str]] = {}
        self._pending: Set[str] = set()
        self._declined_by_request: Dict[str, Set[str]] = {}
        self._mutex = threading.Lock()

    # --- Writes ---

    def issue(
        self,
        request_id: str,
        order_id: str,
        courier_id: str,
        now: datetime,
        ttl: timedelta = DEFAULT_OFFER_TTL,
        *,
        round_number: int = 0,
        rank: int = 0,
        distance_km: Optional[float] = None,
        fitness: Optional[float] = None,
        breakdown: Optional[Dict[str, float]] = None,
        estimated_earnings: Optional[float] = None,
    ) -> Offer:
        """
        Create a pending offer expiring at now + ttl.
        Raises ConflictError if the order already has a pending/accepted offer.
        """
        if ttl.total_seconds() <= 0:
            raise ValueError("Offer ttl must be positive")

        with self._mutex:
            for offer_id in self._by_order.get(order_id, []):
                existing = self._offers[offer_id]
                if existing.state in OPEN_STATES:
                    raise ConflictError(
                        f"Order {order_id} already has open offer {existing.id} ({existing.state.value})"
                    )

            offer = Offer(
                id=str(uuid.uuid4()),
                request_id=request_id,
                order_id=order_id,
                courier_id=courier_id,
                state=OfferState.PENDING,
                issued_at=now,
                expires_at=now + ttl,
                round=round_number,
                rank=rank,
                distance_km=distance_km,
                fitness=fitness,
                breakdown=dict(breakdown or {}),
                estimated_earnings=estimated_earnings,
            )
            self._put(offer)
            self._by_order.setdefault(order_id, []).append(offer.id)
            return offer

    def respond(
        self,
        offer_id: str,
        courier_id: str,
        decision: Decision,
        now: datetime,
        reason: Optional[str] = None,
    ) -> RespondResult:
        """
        pending -> accepted | rejected.

        STALE (and nothing changes) if the offer is unknown, no longer pending,
        past its deadline, or belongs to another courier.
        """
        decision = Decision(decision)
        target = OfferState.ACCEPTED if decision == Decision.ACCEPT else OfferState.REJECTED

        with self._mutex:
            offer = self._offers.get(offer_id)
            if offer is None or offer.courier_id != courier_id:
                return RespondResult.STALE

            # A response after the deadline loses even if the sweeper has not run yet.
            if not offer.is_live(now):
                return RespondResult.STALE

            changes = {"rejection_reason": reason} if target == OfferState.REJECTED else {}
            self._put(transition_offer(offer, target, now, **changes))
            return RespondResult.SUCCESS

    def void_acceptance(self, offer_id: str, now: datetime, reason: str) -> bool:
        """
        accepted -> rejected, for an acceptance that could not be honoured.
        """
        return self._conditional(offer_id, OfferState.ACCEPTED, OfferState.REJECTED, now, rejection_reason=reason)

    def expire_stale(self, now: datetime) -> List[str]:
        """
        Bulk pending -> expired for every offer with expires_at <= now.
        Returns only the ids this call expired; a second run returns [].
        """
        expired: List[str] = []
        with self._mutex:
            for offer_id in sorted(self._pending, key=lambda pending_id: self._offers[pending_id].expires_at):
                offer = self._offers[offer_id]
                if offer.expires_at <= now:
                    self._put(transition_offer(offer, OfferState.EXPIRED, now))
                    expired.append(offer_id)

        if expired:
            logger.debug("Expired %d stale offers", len(expired))
        return expired

    def supersede_open(self, order_id: str, now: datetime, keep: Optional[str] = None) -> List[str]:
        """
        pending -> superseded for every offer of the order except `keep`.
        """
        superseded: List[str] = []
        with self._mutex:
            for offer_id in self._by_order.get(order_id, []):
                offer = self._offers[offer_id]
                if offer_id == keep or offer.state != OfferState.PENDING:
                    continue
                self._put(transition_offer(offer, OfferState.SUPERSEDED, now))
                superseded.append(offer_id)
        return superseded

    def supersede(self, offer_id: str, now: datetime) -> bool:
        """
        pending -> superseded for a single offer.
        """
        return self._conditional(offer_id, OfferState.PENDING, OfferState.SUPERSEDED, now)

    # --- Reads ---

    def get(self, offer_id: str) -> Optional[Offer]:
        with self._mutex:
            return self._offers.get(offer_id)

    def offers_for_order(self, order_id: str) -> List[Offer]:
        with self._mutex:
            return [self._offers[offer_id] for offer_id in self._by_order.get(order_id, [])]

    def offered_couriers(self, request_id: str) -> Set[str]:
        """
        Couriers that declined (rejected or let expire) an offer of this dispatch lifetime.
        """
        with self._mutex:
            return set(self._declined_by_request.get(request_id, ()))

    def pending_for_courier(self, courier_id: str, now: datetime) -> List[Offer]:
        """
        The courier's offer inbox: live pending offers, newest first.
        """
        with self._mutex:
            pending = [self._offers[offer_id] for offer_id in self._pending]
        live = [offer for offer in pending if offer.courier_id == courier_id and offer.is_live(now)]
        return sorted(live, key=lambda offer: offer.issued_at, reverse=True)

    def pending_count_by_order(self) -> Dict[str, int]:
        with self._mutex:
            return dict(Counter(
                self._offers[offer_id].order_id for offer_id in self._pending
            ))

    # --- Internal ---

    def _conditional(self, offer_id: str, expected: OfferState, target: OfferState, now: datetime, **changes) -> bool:
        with self._mutex:
            offer = self._offers.get(offer_id)
            if offer is None or offer.state != expected or not can_transition(expected, target):
                return False
            self._put(transition_offer(offer, target, now, **changes))
            return True

    def _put(self, offer: Offer) -> None:
        # Caller holds the mutex. Declined states are final, so the index only grows.
        self._offers[offer.id] = offer
        if offer.state == OfferState.PENDING:
            self._pending.add(offer.id)
        else:
            self._pending.discard(offer.id)
        if offer.state in DECLINED_STATES:
            self._declined_by_request.setdefault(offer.request_id, set()).add(offer.courier_id)
