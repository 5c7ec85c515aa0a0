"""
Purpose: Orchestrator / decision pipeline (the "glue").
What it does:
Accepts an order that is ready for a courier, ranks eligible couriers through
the Partner Directory, and offers the order to one courier at a time through
the Offer Ledger, cascading to the next candidate on rejection or expiry until
someone accepts or the round budget runs out.

Per order the lifecycle is a small state machine:

    unassigned -> offering (re-entered every round) -> assigned | exhausted

Every write is a compare-and-set on a single row (offer, request or courier
load), so courier responses, the expiry sweeper and cancellations can run on
different threads without a global lock.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional

from couriers.directory import CourierNotFoundError, PartnerDirectory
from couriers.geo import is_valid_coordinate
from couriers.models import LoadUpdate, RankedCandidate
from notifications.base import NullNotifier, Notifier
from orders.models import DispatchRequest, DispatchState, ExhaustedReason, Order, OrderStatus
from orders.repository import ActiveRequestExistsError, DispatchRequestStore, OrderBook

from . import events
from .errors import ConflictError, DispatchConfigurationError, ErrorChannel, LoggingErrorChannel
from .ledger import OfferLedger
from .models import Decision, Offer, RespondResult
from .policy import DispatchPolicy, default_dispatch_policy
from .state_machines.request_state import ACTIVE_STATES, sources_for

logger = logging.getLogger(__name__)


class ResponseOutcome(str, Enum):
    """What a courier response ended up doing."""
    STALE = "stale"            # late/duplicate/wrong courier: nothing changed
    ASSIGNED = "assigned"      # order now belongs to the courier
    REJECTED = "rejected"      # cascaded to the next candidate
    VOIDED = "voided"          # accept lost the capacity race, cascaded
    CANCELLED = "cancelled"    # accept arrived after the order was cancelled


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DispatchCoordinator:
    """
    Coordinates the transaction of an order to a courier using sequential, time-boxed offers.
    """

    def __init__(
        self,
        directory: PartnerDirectory,
        orders: OrderBook,
        *,
        ledger: Optional[OfferLedger] = None,
        requests: Optional[DispatchRequestStore] = None,
        notifier: Optional[Notifier] = None,
        error_channel: Optional[ErrorChannel] = None,
        policy: Optional[DispatchPolicy] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.directory = directory
        self.orders = orders
        self.ledger = ledger or OfferLedger()
        self.requests = requests or DispatchRequestStore()
        self.notifier = notifier or NullNotifier()
        self.error_channel = error_channel or LoggingErrorChannel()
        self.policy = policy or default_dispatch_policy()
        self.clock = clock

        self.policy.validate()

    # --- Entry points ---

    def dispatch(self, order_id: str) -> Optional[DispatchRequest]:
        """
        Start dispatching an order. Returns its dispatch request (already
        offering, or exhausted when nobody is eligible), or None when dispatch
        could not be attempted and the problem went to the error channel.
        """
        order = self.orders.get(order_id)
        if order is None:
            self._report_configuration_error(f"Order {order_id} not found", order_id)
            return None

        if order.status == OrderStatus.CANCELLED:
            logger.warning("Order %s is cancelled, not dispatching", order_id)
            return None

        if order.status in (OrderStatus.ASSIGNED, OrderStatus.DELIVERED):
            logger.info("Order %s is already %s, not dispatching", order_id, order.status.value)
            return self.requests.latest_for_order(order_id)

        if not is_valid_coordinate(order.pickup_coordinates):
            self._report_configuration_error(
                f"Order {order_id} has no pickup location (restaurant {order.restaurant_id})", order_id
            )
            return None

        try:
            request = self.requests.create(order_id, tuple(order.pickup_coordinates), now=self.clock())
        except ActiveRequestExistsError as exc:
            logger.info("Order %s is already being dispatched (request %s)", order_id, exc.existing.id)
            return exc.existing

        return self.run_round(request)

    def run_round(self, request: DispatchRequest) -> DispatchRequest:
        """
        Offer the order to the best courier not yet tried in this dispatch lifetime.
        """
        current = self.requests.get(request.id)
        if current is None or current.is_terminal:
            return current

        if current.round >= self.policy.max_rounds:
            return self._exhaust(current, ExhaustedReason.MAX_ROUNDS)

        excluded = self.ledger.offered_couriers(current.id)
        candidates = self.directory.list_eligible(current.pickup, exclude=excluded)

        events.emit(
            events.ROUND_STARTED,
            order_id=current.order_id,
            request_id=current.id,
            round=current.round,
            candidates=len(candidates),
            excluded=sorted(excluded),
        )

        if not candidates:
            return self._exhaust(current, ExhaustedReason.NO_CANDIDATES)

        order = self.orders.get(current.order_id)
        offer = self._issue(current, candidates[0], order)
        if offer is None:
            # Nothing would ever expire or answer for this request.
            return self._exhaust(current, ExhaustedReason.OFFER_CONFLICT)

        now = self.clock()
        updated = self.requests.compare_and_set(
            current.id,
            ACTIVE_STATES,
            expected_round=current.round,
            now=now,
            state=DispatchState.OFFERING,
            active_offer_id=offer.id,
        )

        if updated is None:
            # The request moved on while we were issuing: cancelled, or the
            # courier already answered and the cascade/assignment ran.
            latest = self.requests.get(current.id)
            if latest is None or latest.is_terminal:
                self.ledger.supersede(offer.id, now)
            return latest

        events.emit(
            events.OFFER_ISSUED,
            order_id=offer.order_id,
            request_id=offer.request_id,
            offer_id=offer.id,
            courier_id=offer.courier_id,
            round=offer.round,
            fitness=round(offer.fitness, 2),
            distance_km=round(offer.distance_km, 3),
            breakdown=offer.breakdown,
            alternatives=[candidate.courier_id for candidate in candidates[1:4]],
        )

        if not self.policy.require_explicit_accept:
            # Auto-assignment: accept on the courier's behalf through the normal accept path.
            self.respond_to_offer(offer.id, offer.courier_id, Decision.ACCEPT)
            return self.requests.get(current.id)

        self._safely(self.notifier.notify, offer.courier_id, self._offer_payload(offer, order))
        return updated

    def respond_to_offer(
        self,
        offer_id: str,
        courier_id: str,
        decision: Decision,
        reason: Optional[str] = None,
    ) -> ResponseOutcome:
        """
        Courier answered an offer. Exactly one of accept/reject/expire wins per offer;
        the losers get STALE and change nothing.
        """
        decision = Decision(decision)
        result = self.ledger.respond(offer_id, courier_id, decision, self.clock(), reason=reason)

        events.emit(
            events.OFFER_RESPONDED,
            offer_id=offer_id,
            courier_id=courier_id,
            decision=decision.value,
            result=result.value,
        )

        if result == RespondResult.STALE:
            logger.info("Stale %s from courier %s for offer %s ignored", decision.value, courier_id, offer_id)
            return ResponseOutcome.STALE

        offer = self.ledger.get(offer_id)
        if decision == Decision.REJECT:
            self._cascade(offer)
            return ResponseOutcome.REJECTED

        return self._handle_acceptance(offer)

    on_offer_response = respond_to_offer

    def on_offer_expired(self, offer: Offer) -> Optional[DispatchRequest]:
        """
        Called by the expiry sweeper for every offer it timed out.
        The courier is not told; the offer just disappears from their inbox.
        """
        events.emit(
            events.OFFER_EXPIRED,
            order_id=offer.order_id,
            request_id=offer.request_id,
            offer_id=offer.id,
            courier_id=offer.courier_id,
            round=offer.round,
        )
        return self._cascade(offer)

    def cancel(self, order_id: str) -> Optional[DispatchRequest]:
        """
        The order was cancelled upstream. Stops any ongoing dispatch; if a
        courier was already assigned their load is given back.
        """
        self.orders.set_status(order_id, OrderStatus.CANCELLED)
        request = self.requests.latest_for_order(order_id)
        if request is None:
            return None

        if request.state in ACTIVE_STATES:
            exhausted = self._exhaust(request, ExhaustedReason.CANCELLED, check_round=False)
            if exhausted is not None and exhausted.state == DispatchState.EXHAUSTED:
                return exhausted
            request = self.requests.get(request.id)

        if request.state == DispatchState.ASSIGNED:
            return self._release_load(request)

        return request

    def complete_delivery(self, order_id: str) -> Optional[DispatchRequest]:
        """
        The assigned courier delivered the order; frees one unit of their capacity.
        """
        request = self.requests.latest_for_order(order_id)
        if request is None or request.state != DispatchState.ASSIGNED:
            logger.warning("Delivery completed for order %s without an assigned courier", order_id)
            return request

        if request.load_released:
            logger.warning("Order %s was already closed, delivery ignored", order_id)
            return request

        self.orders.set_status(order_id, OrderStatus.DELIVERED)
        return self._release_load(request)

    def pending_offers(self, courier_id: str) -> List[Offer]:
        """
        Live offers waiting on the courier, newest first.
        """
        return self.ledger.pending_for_courier(courier_id, self.clock())

    # --- Cascade helpers ---

    def _handle_acceptance(self, offer: Offer) -> ResponseOutcome:
        now = self.clock()

        try:
            load = self.directory.increment_load(offer.courier_id)
        except CourierNotFoundError as exc:
            self._report_configuration_error(str(exc), offer.order_id, courier_id=offer.courier_id)
            load = LoadUpdate.CONFLICT

        if load == LoadUpdate.CONFLICT:
            self.ledger.void_acceptance(offer.id, now, reason="courier_at_capacity")
            events.emit(
                events.ACCEPT_VOIDED,
                order_id=offer.order_id,
                offer_id=offer.id,
                courier_id=offer.courier_id,
            )
            self._cascade(offer)
            return ResponseOutcome.VOIDED

        assigned = self.requests.compare_and_set(
            offer.request_id,
            sources_for(DispatchState.ASSIGNED),
            expected_round=offer.round,
            now=now,
            state=DispatchState.ASSIGNED,
            assigned_courier_id=offer.courier_id,
            active_offer_id=offer.id,
        )

        if assigned is None:
            # Cancelled between the accept and now: give the capacity back.
            self.directory.decrement_load(offer.courier_id)
            self.ledger.void_acceptance(offer.id, now, reason="order_no_longer_available")
            logger.info("Accept of offer %s arrived after order %s closed", offer.id, offer.order_id)
            return ResponseOutcome.CANCELLED

        self.ledger.supersede_open(offer.order_id, now, keep=offer.id)
        self.orders.set_status(offer.order_id, OrderStatus.ASSIGNED)

        events.emit(
            events.REQUEST_ASSIGNED,
            order_id=assigned.order_id,
            request_id=assigned.id,
            courier_id=offer.courier_id,
            round=assigned.round,
            fitness=round(offer.fitness, 2) if offer.fitness is not None else None,
            breakdown=offer.breakdown,
        )

        self._safely(self.notifier.notify_order_assigned, offer.order_id, offer.courier_id)
        if not self.policy.require_explicit_accept:
            order = self.orders.get(offer.order_id)
            self._safely(self.notifier.notify, offer.courier_id, self._offer_payload(offer, order, kind="assignment"))

        return ResponseOutcome.ASSIGNED

    def _cascade(self, offer: Offer) -> Optional[DispatchRequest]:
        """
        Move the request past the round `offer` belonged to and run the next one.
        Only the first caller for a given round gets through.
        """
        request = self.requests.get(offer.request_id)
        if request is None or request.is_terminal:
            return request

        advanced = self.requests.compare_and_set(
            request.id,
            sources_for(DispatchState.OFFERING),
            expected_round=offer.round,
            now=self.clock(),
            state=DispatchState.OFFERING,
            round=offer.round + 1,
            active_offer_id=None,
        )
        if advanced is None:
            return self.requests.get(request.id)

        return self.run_round(advanced)

    def _issue(self, request: DispatchRequest, candidate: RankedCandidate, order: Optional[Order]) -> Optional[Offer]:
        attempts = 1 + self.policy.issue_conflict_retries
        last_error: Optional[ConflictError] = None

        for attempt in range(1, attempts + 1):
            try:
                return self.ledger.issue(
                    request.id,
                    request.order_id,
                    candidate.courier_id,
                    self.clock(),
                    self.policy.offer_ttl,
                    round_number=request.round,
                    rank=1,
                    distance_km=candidate.distance_km,
                    fitness=candidate.fitness,
                    breakdown=candidate.breakdown,
                    estimated_earnings=order.estimated_earnings if order else None,
                )
            except ConflictError as exc:
                last_error = exc
                logger.error(
                    "Open offer conflict for order %s (attempt %d/%d): %s",
                    request.order_id, attempt, attempts, exc,
                )

        self.error_channel.report(
            last_error,
            order_id=request.order_id,
            context={"request_id": request.id, "courier_id": candidate.courier_id, "round": request.round},
        )
        return None

    def _exhaust(
        self,
        request: DispatchRequest,
        reason: ExhaustedReason,
        check_round: bool = True,
    ) -> Optional[DispatchRequest]:
        now = self.clock()
        exhausted = self.requests.compare_and_set(
            request.id,
            sources_for(DispatchState.EXHAUSTED),
            expected_round=request.round if check_round else None,
            now=now,
            state=DispatchState.EXHAUSTED,
            exhausted_reason=reason,
            active_offer_id=None,
        )
        if exhausted is None:
            return self.requests.get(request.id)

        self.ledger.supersede_open(request.order_id, now)

        events.emit(
            events.REQUEST_EXHAUSTED,
            order_id=exhausted.order_id,
            request_id=exhausted.id,
            reason=reason.value,
            rounds=exhausted.round,
        )

        if reason != ExhaustedReason.CANCELLED:
            self._safely(self.notifier.notify_order_unassigned, exhausted.order_id, reason.value)

        return exhausted

    def _release_load(self, request: DispatchRequest) -> DispatchRequest:
        released = self.requests.compare_and_set(
            request.id,
            {DispatchState.ASSIGNED},
            expected_fields={"load_released": False},
            now=self.clock(),
            load_released=True,
        )
        if released is None:
            return self.requests.get(request.id)

        try:
            self.directory.decrement_load(released.assigned_courier_id)
        except CourierNotFoundError as exc:
            self._report_configuration_error(str(exc), released.order_id, courier_id=released.assigned_courier_id)
        return released

    # --- Collaborators ---

    def _offer_payload(self, offer: Offer, order: Optional[Order], kind: str = "order_offer") -> dict:
        payload = {
            "type": kind,
            "offer_id": offer.id,
            "order_id": offer.order_id,
            "expires_at": offer.expires_at.isoformat(),
            "distance_km": round(offer.distance_km, 2) if offer.distance_km is not None else None,
            "estimated_earnings": offer.estimated_earnings,
        }
        if order is not None and order.pickup_coordinates:
            payload["pickup_lat"], payload["pickup_lng"] = order.pickup_coordinates
        return payload

    def _safely(self, send: Callable, *args) -> None:
        try:
            send(*args)
        except Exception:
            logger.exception("Notification %s failed for %s", getattr(send, "__name__", send), args[:1])

    def _report_configuration_error(self, message: str, order_id: Optional[str], **context) -> None:
        error = DispatchConfigurationError(message, order_id=order_id)
        logger.error("[DISPATCH] %s", message)
        self.error_channel.report(error, order_id=order_id, context=context)
