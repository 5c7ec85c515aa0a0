from dataclasses import replace
from datetime import datetime

from dispatch.models import Offer, OfferState


class OfferStateException(Exception):
    """Raised when an invalid offer transition is attempted."""
    pass


# One-way transitions. No state is ever re-entered.
ALLOWED_TRANSITIONS = {
    OfferState.PENDING: {
        OfferState.ACCEPTED,
        OfferState.REJECTED,
        OfferState.EXPIRED,
        OfferState.SUPERSEDED,
    },
    # An acceptance that lost the courier-capacity race is voided.
    OfferState.ACCEPTED: {OfferState.REJECTED},
    OfferState.REJECTED: set(),
    OfferState.EXPIRED: set(),
    OfferState.SUPERSEDED: set(),
}

# States that block issuing another offer for the same order.
OPEN_STATES = frozenset({OfferState.PENDING, OfferState.ACCEPTED})

# States that exclude the courier from later rounds of the same dispatch lifetime.
DECLINED_STATES = frozenset({OfferState.REJECTED, OfferState.EXPIRED})


def can_transition(current: OfferState, target: OfferState) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def transition_offer(offer: Offer, target: OfferState, now: datetime, **changes) -> Offer:
    """
    Returns the offer moved to `target`. Because Offer is a frozen dataclass,
    we must return a new instance via replace.
    """
    if not can_transition(offer.state, target):
        raise OfferStateException(
            f"Cannot transition offer {offer.id} from {offer.state.value} to {target.value}"
        )

    if target in (OfferState.ACCEPTED, OfferState.REJECTED) and offer.responded_at is None:
        changes.setdefault("responded_at", now)

    return replace(offer, state=target, **changes)
