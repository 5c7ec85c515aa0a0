"""
Purpose: Error taxonomy of the dispatcher and the external error channel.
What it does:
- Exceptions for invariant conflicts and configuration problems.
- ErrorChannel: where configuration errors are surfaced for a human/ops
  process instead of being silently retried.

Expected outcomes (no eligible courier, stale responses, capacity conflicts)
are return values, not exceptions.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

logger = logging.getLogger(__name__)


class DispatchError(Exception):
    """Base class for dispatcher errors."""
    pass


class ConflictError(DispatchError):
    """An open offer already exists for the order."""
    pass


class DispatchConfigurationError(DispatchError):
    """Dispatch cannot be attempted (unknown order, missing pickup point, unknown courier)."""

    def __init__(self, message: str, order_id: Optional[str] = None):
        super().__init__(message)
        self.order_id = order_id


class ErrorChannel(ABC):
    """
    Sink for errors that need outside intervention.
    """

    @abstractmethod
    def report(self, error: Exception, *, order_id: Optional[str] = None, context: Optional[dict] = None) -> None:
        pass


class LoggingErrorChannel(ErrorChannel):
    def report(self, error: Exception, *, order_id: Optional[str] = None, context: Optional[dict] = None) -> None:
        logger.error(
            "Dispatch error for order %s: %s (%s)",
            order_id, error, context or {},
        )
