import logging

import pytest

from dispatch import events
from dispatch.dispatcher import ResponseOutcome
from dispatch.errors import ConflictError, DispatchConfigurationError, ErrorChannel
from dispatch.models import Decision, OfferState
from dispatch.state_machines.request_state import ACTIVE_STATES
from dispatch.sweeper import ExpirySweeper
from orders.models import DispatchState, ExhaustedReason, Order, OrderStatus

from conftest import PICKUP, FakeDirectory, ranked


def offer_id_for(notifier, courier_id, index=-1):
    return notifier.offers_to(courier_id)[index]["offer_id"]


def test_cascade_reject_expire_accept(make_coordinator, three_couriers_directory, notifier, clock):
    """
    Candidates scored [90, 70, 50]: first rejects, second times out,
    third accepts.
    """
    directory = three_couriers_directory
    coordinator = make_coordinator(directory)

    request = coordinator.dispatch("order-1")
    assert request.state == DispatchState.OFFERING
    assert request.round == 0

    # 1. Best candidate gets the first offer and rejects it
    outcome = coordinator.respond_to_offer(offer_id_for(notifier, "c90"), "c90", Decision.REJECT, reason="too far")
    assert outcome == ResponseOutcome.REJECTED

    # 2. Runner-up is offered next and stays silent
    assert len(notifier.offers_to("c70")) == 1
    clock.advance(46)
    ExpirySweeper(coordinator).run_once()

    # 3. Third candidate accepts
    outcome = coordinator.respond_to_offer(offer_id_for(notifier, "c50"), "c50", Decision.ACCEPT)
    assert outcome == ResponseOutcome.ASSIGNED

    final = coordinator.requests.get(request.id)
    assert final.state == DispatchState.ASSIGNED
    assert final.assigned_courier_id == "c50"
    assert final.round == 2
    assert directory.loads == {"c90": 0, "c70": 0, "c50": 1}
    assert notifier.assigned == [("order-1", "c50")]
    assert coordinator.orders.get("order-1").status == OrderStatus.ASSIGNED

    # Each round excluded everyone who already declined
    assert directory.list_calls == [set(), {"c90"}, {"c90", "c70"}]

    states = [offer.state for offer in coordinator.ledger.offers_for_order("order-1")]
    assert states == [OfferState.REJECTED, OfferState.EXPIRED, OfferState.ACCEPTED]


def test_no_eligible_courier_exhausts_without_raising(make_coordinator, notifier):
    coordinator = make_coordinator(FakeDirectory([]))

    request = coordinator.dispatch("order-1")

    assert request.state == DispatchState.EXHAUSTED
    assert request.exhausted_reason == ExhaustedReason.NO_CANDIDATES
    assert notifier.unassigned == [("order-1", "no_candidates")]
    assert notifier.courier_messages == []


def test_everyone_declining_exhausts(make_coordinator, three_couriers_directory, notifier):
    coordinator = make_coordinator(three_couriers_directory)
    request = coordinator.dispatch("order-1")

    for courier_id in ("c90", "c70", "c50"):
        coordinator.respond_to_offer(offer_id_for(notifier, courier_id), courier_id, Decision.REJECT)

    final = coordinator.requests.get(request.id)
    assert final.state == DispatchState.EXHAUSTED
    assert final.exhausted_reason == ExhaustedReason.NO_CANDIDATES
    assert final.round == 3
    assert notifier.unassigned == [("order-1", "no_candidates")]


def test_round_budget_bounds_the_cascade(make_coordinator, three_couriers_directory, notifier):
    coordinator = make_coordinator(three_couriers_directory, max_rounds=2)
    request = coordinator.dispatch("order-1")

    coordinator.respond_to_offer(offer_id_for(notifier, "c90"), "c90", Decision.REJECT)
    coordinator.respond_to_offer(offer_id_for(notifier, "c70"), "c70", Decision.REJECT)

    final = coordinator.requests.get(request.id)
    assert final.state == DispatchState.EXHAUSTED
    assert final.exhausted_reason == ExhaustedReason.MAX_ROUNDS
    assert notifier.offers_to("c50") == []
    assert notifier.unassigned == [("order-1", "max_rounds")]


def test_missing_pickup_is_reported_not_retried(make_coordinator, three_couriers_directory, error_channel, notifier):
    orders = [Order(id="order-1", pickup_coordinates=None, restaurant_id="r-9")]
    coordinator = make_coordinator(three_couriers_directory, orders=orders)

    assert coordinator.dispatch("order-1") is None

    [(error, order_id, _)] = error_channel.reports
    assert isinstance(error, DispatchConfigurationError)
    assert order_id == "order-1"
    assert "r-9" in str(error)
    assert coordinator.requests.all() == []
    assert notifier.courier_messages == []


def test_unknown_order_is_reported(make_coordinator, three_couriers_directory, error_channel):
    coordinator = make_coordinator(three_couriers_directory)

    assert coordinator.dispatch("nope") is None
    assert isinstance(error_channel.reports[0][0], DispatchConfigurationError)


def test_cancelled_order_is_not_dispatched(make_coordinator, three_couriers_directory):
    coordinator = make_coordinator(three_couriers_directory)
    coordinator.orders.set_status("order-1", OrderStatus.CANCELLED)

    assert coordinator.dispatch("order-1") is None
    assert coordinator.requests.all() == []


def test_duplicate_dispatch_returns_live_request(make_coordinator, three_couriers_directory, notifier):
    coordinator = make_coordinator(three_couriers_directory)

    first = coordinator.dispatch("order-1")
    second = coordinator.dispatch("order-1")

    assert second.id == first.id
    assert len(notifier.courier_messages) == 1


def test_exhausted_order_can_be_dispatched_again(make_coordinator, three_couriers_directory, notifier):
    coordinator = make_coordinator(three_couriers_directory, max_rounds=1)
    first = coordinator.dispatch("order-1")
    coordinator.respond_to_offer(offer_id_for(notifier, "c90"), "c90", Decision.REJECT)
    assert coordinator.requests.get(first.id).state == DispatchState.EXHAUSTED

    second = coordinator.dispatch("order-1")

    assert second.id != first.id
    # A fresh lifetime starts with a clean exclusion list
    assert len(notifier.offers_to("c90")) == 2


def test_late_and_foreign_responses_are_stale(make_coordinator, three_couriers_directory, notifier, clock):
    directory = three_couriers_directory
    coordinator = make_coordinator(directory)
    request = coordinator.dispatch("order-1")
    offer_id = offer_id_for(notifier, "c90")

    assert coordinator.respond_to_offer(offer_id, "c70", Decision.ACCEPT) == ResponseOutcome.STALE
    assert coordinator.respond_to_offer("unknown", "c90", Decision.ACCEPT) == ResponseOutcome.STALE

    clock.advance(46)
    assert coordinator.respond_to_offer(offer_id, "c90", Decision.ACCEPT) == ResponseOutcome.STALE

    assert coordinator.requests.get(request.id).state == DispatchState.OFFERING
    assert directory.loads["c90"] == 0


def test_accept_at_capacity_is_voided_and_cascades(make_coordinator, three_couriers_directory, notifier):
    directory = three_couriers_directory
    coordinator = make_coordinator(directory)
    coordinator.dispatch("order-1")
    offer_id = offer_id_for(notifier, "c90")

    # c90 filled up with other orders between the offer and the tap
    directory.loads["c90"] = directory.capacity

    outcome = coordinator.respond_to_offer(offer_id, "c90", Decision.ACCEPT)

    assert outcome == ResponseOutcome.VOIDED
    voided = coordinator.ledger.get(offer_id)
    assert voided.state == OfferState.REJECTED
    assert voided.rejection_reason == "courier_at_capacity"
    assert directory.loads["c90"] == directory.capacity
    assert len(notifier.offers_to("c70")) == 1


def test_cancel_while_offering(make_coordinator, three_couriers_directory, notifier):
    coordinator = make_coordinator(three_couriers_directory)
    request = coordinator.dispatch("order-1")
    offer_id = offer_id_for(notifier, "c90")

    cancelled = coordinator.cancel("order-1")

    assert cancelled.state == DispatchState.EXHAUSTED
    assert cancelled.exhausted_reason == ExhaustedReason.CANCELLED
    assert coordinator.ledger.get(offer_id).state == OfferState.SUPERSEDED
    assert coordinator.orders.get("order-1").status == OrderStatus.CANCELLED
    # The customer cancelled; nobody needs an "unassigned" alert
    assert notifier.unassigned == []

    assert coordinator.respond_to_offer(offer_id, "c90", Decision.ACCEPT) == ResponseOutcome.STALE
    assert coordinator.requests.get(request.id).state == DispatchState.EXHAUSTED


def test_accept_racing_a_cancellation_gives_capacity_back(make_coordinator, three_couriers_directory, notifier):
    """
    The offer was accepted in the ledger, but the request closed before the
    assignment could be written.
    """
    directory = three_couriers_directory
    coordinator = make_coordinator(directory)
    request = coordinator.dispatch("order-1")
    offer_id = offer_id_for(notifier, "c90")

    coordinator.requests.compare_and_set(
        request.id,
        ACTIVE_STATES,
        state=DispatchState.EXHAUSTED,
        exhausted_reason=ExhaustedReason.CANCELLED,
    )

    outcome = coordinator.respond_to_offer(offer_id, "c90", Decision.ACCEPT)

    assert outcome == ResponseOutcome.CANCELLED
    assert directory.loads["c90"] == 0
    assert coordinator.ledger.get(offer_id).state == OfferState.REJECTED
    assert notifier.assigned == []


def test_cancel_after_assignment_releases_load_once(make_coordinator, three_couriers_directory, notifier):
    directory = three_couriers_directory
    directory.loads["c90"] = 1
    coordinator = make_coordinator(directory)
    coordinator.dispatch("order-1")
    coordinator.respond_to_offer(offer_id_for(notifier, "c90"), "c90", Decision.ACCEPT)
    assert directory.loads["c90"] == 2

    released = coordinator.cancel("order-1")
    coordinator.cancel("order-1")
    coordinator.complete_delivery("order-1")

    assert released.load_released is True
    assert released.state == DispatchState.ASSIGNED
    assert directory.loads["c90"] == 1
    assert coordinator.orders.get("order-1").status == OrderStatus.CANCELLED


def test_complete_delivery_frees_capacity(make_coordinator, three_couriers_directory, notifier):
    directory = three_couriers_directory
    coordinator = make_coordinator(directory)
    coordinator.dispatch("order-1")
    coordinator.respond_to_offer(offer_id_for(notifier, "c90"), "c90", Decision.ACCEPT)

    coordinator.complete_delivery("order-1")

    assert directory.loads["c90"] == 0
    assert coordinator.orders.get("order-1").status == OrderStatus.DELIVERED


def test_complete_delivery_without_assignment_is_a_no_op(make_coordinator, three_couriers_directory):
    coordinator = make_coordinator(three_couriers_directory)
    request = coordinator.dispatch("order-1")

    assert coordinator.complete_delivery("order-1").id == request.id
    assert coordinator.complete_delivery("never-dispatched") is None
    assert coordinator.orders.get("order-1").status == OrderStatus.READY


def test_auto_assignment_skips_the_accept_step(make_coordinator, three_couriers_directory, notifier):
    directory = three_couriers_directory
    coordinator = make_coordinator(directory, require_explicit_accept=False)

    request = coordinator.dispatch("order-1")

    assert request.state == DispatchState.ASSIGNED
    assert request.assigned_courier_id == "c90"
    assert directory.loads["c90"] == 1
    kinds = [payload["type"] for _, payload in notifier.courier_messages]
    assert kinds == ["assignment"]
    assert notifier.assigned == [("order-1", "c90")]


def test_notifier_failure_does_not_block_dispatch(make_coordinator, three_couriers_directory, notifier):
    notifier.fail = True
    coordinator = make_coordinator(three_couriers_directory)

    request = coordinator.dispatch("order-1")
    [offer] = coordinator.pending_offers("c90")
    outcome = coordinator.respond_to_offer(offer.id, "c90", Decision.ACCEPT)

    assert request.state == DispatchState.OFFERING
    assert outcome == ResponseOutcome.ASSIGNED


def test_offer_payload_carries_pickup_and_earnings(make_coordinator, three_couriers_directory, notifier, clock):
    coordinator = make_coordinator(three_couriers_directory)
    coordinator.dispatch("order-1")

    [(courier_id, payload)] = notifier.courier_messages

    assert courier_id == "c90"
    assert payload["type"] == "order_offer"
    assert payload["order_id"] == "order-1"
    assert payload["estimated_earnings"] == 4.5
    assert (payload["pickup_lat"], payload["pickup_lng"]) == PICKUP
    assert payload["expires_at"] == (clock.now + coordinator.policy.offer_ttl).isoformat()


def test_dispatch_events_are_structured(make_coordinator, three_couriers_directory, caplog):
    coordinator = make_coordinator(three_couriers_directory)

    with caplog.at_level(logging.INFO, logger="dispatch.events"):
        coordinator.dispatch("order-1")

    by_event = {record.dispatch_event: record.event_fields for record in caplog.records if hasattr(record, "dispatch_event")}

    assert by_event[events.ROUND_STARTED]["candidates"] == 3
    issued = by_event[events.OFFER_ISSUED]
    assert issued["courier_id"] == "c90"
    assert issued["alternatives"] == ["c70", "c50"]
    assert issued["breakdown"] == {"distance": 90}


def test_end_to_end_with_in_memory_directory(make_coordinator, live_directory, notifier):
    coordinator = make_coordinator(live_directory)

    coordinator.dispatch("order-1")
    outcome = coordinator.respond_to_offer(offer_id_for(notifier, "near"), "near", Decision.ACCEPT)

    assert outcome == ResponseOutcome.ASSIGNED
    assert live_directory.get("near").current_count == 1
    assert live_directory.get("mid").current_count == 0


def test_invalid_policy_is_rejected(make_coordinator, three_couriers_directory):
    with pytest.raises(ValueError):
        make_coordinator(three_couriers_directory, offer_ttl_seconds=0)


@pytest.mark.parametrize("deliver", [False, True])
def test_dispatching_a_settled_order_returns_its_assignment(make_coordinator, three_couriers_directory, notifier, error_channel, clock, deliver):
    """
    A repeated dispatch trigger for an assigned (or delivered) order opens no
    new lifetime and never leaves a request waiting on an offer.
    """
    coordinator = make_coordinator(three_couriers_directory)
    first = coordinator.dispatch("order-1")
    coordinator.respond_to_offer(offer_id_for(notifier, "c90"), "c90", Decision.ACCEPT)
    if deliver:
        coordinator.complete_delivery("order-1")

    again = coordinator.dispatch("order-1")

    assert again.id == first.id
    assert again.state == DispatchState.ASSIGNED
    assert len(coordinator.requests.all()) == 1
    assert error_channel.reports == []

    clock.advance(1000)
    ExpirySweeper(coordinator).run_once()
    assert coordinator.requests.live_for_order("order-1") is None


def test_unresolvable_offer_conflict_exhausts_the_request(make_coordinator, three_couriers_directory, notifier, error_channel, clock):
    """
    An open offer left over from another lifetime blocks issuing; the new
    request is closed and reported instead of waiting forever.
    """
    coordinator = make_coordinator(three_couriers_directory)
    leftover = coordinator.ledger.issue("stale-request", "order-1", "c70", clock(), coordinator.policy.offer_ttl)

    request = coordinator.dispatch("order-1")

    assert request.state == DispatchState.EXHAUSTED
    assert request.exhausted_reason == ExhaustedReason.OFFER_CONFLICT
    assert coordinator.requests.live_for_order("order-1") is None
    assert coordinator.ledger.get(leftover.id).state == OfferState.SUPERSEDED
    assert notifier.unassigned == [("order-1", "offer_conflict")]

    [(error, order_id, context)] = error_channel.reports
    assert isinstance(error, ConflictError)
    assert order_id == "order-1"
    assert context["courier_id"] == "c90"


def test_error_channel_must_implement_report():
    class Silent(ErrorChannel):
        pass

    with pytest.raises(TypeError):
        Silent()
