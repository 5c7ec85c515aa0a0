"""
DispatchRequest lifecycle:

    unassigned -> offering -> {assigned | exhausted}
                  offering -> offering   (each cascade round)
    unassigned -> exhausted              (no candidates / cancelled before the first offer)

The dispatcher never writes a request directly; it asks the store for a
compare-and-set from the states listed here.
"""

from orders.models import DispatchState


class RequestStateException(Exception):
    """Raised when an invalid dispatch request transition is attempted."""
    pass


ALLOWED_TRANSITIONS = {
    DispatchState.UNASSIGNED: {DispatchState.OFFERING, DispatchState.ASSIGNED, DispatchState.EXHAUSTED},
    DispatchState.OFFERING: {DispatchState.OFFERING, DispatchState.ASSIGNED, DispatchState.EXHAUSTED},
    DispatchState.ASSIGNED: set(),
    DispatchState.EXHAUSTED: set(),
}

# Where a new round (or a cancellation) may start from.
ACTIVE_STATES = frozenset({DispatchState.UNASSIGNED, DispatchState.OFFERING})


def sources_for(target: DispatchState) -> frozenset:
    """
    Every state from which `target` can be reached; used as the expected
    states of a compare-and-set.
    """
    sources = frozenset(state for state, targets in ALLOWED_TRANSITIONS.items() if target in targets)
    if not sources:
        raise RequestStateException(f"No transition leads to {target.value}")
    return sources
