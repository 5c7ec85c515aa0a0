#Expose the high-level pipeline pieces:
#Offer ledger (atomic offer transitions)
#Dispatch coordinator (the “one call” entry point)
#Expiry sweeper (background cascade on timeouts)

from .models import Offer, OfferState, Decision, RespondResult
from .errors import ConflictError, DispatchConfigurationError, DispatchError, ErrorChannel, LoggingErrorChannel
from .policy import DispatchPolicy, default_dispatch_policy, load_dispatch_policy_from_env
from .ledger import OfferLedger
from .dispatcher import DispatchCoordinator, ResponseOutcome #the main object to call to dispatch an order to a courier
from .sweeper import ExpirySweeper

__all__ = [
    "Offer",
    "OfferState",
    "Decision",
    "RespondResult",
    "ConflictError",
    "DispatchConfigurationError",
    "DispatchError",
    "ErrorChannel",
    "LoggingErrorChannel",
    "DispatchPolicy",
    "default_dispatch_policy",
    "load_dispatch_policy_from_env",
    "OfferLedger",
    "DispatchCoordinator",
    "ResponseOutcome",
    "ExpirySweeper",
]
