from .offer_state import OfferStateException, can_transition, transition_offer
from .request_state import RequestStateException, sources_for

__all__ = [
    "OfferStateException",
    "can_transition",
    "transition_offer",
    "RequestStateException",
    "sources_for",
]
