"""
Purpose: The outbound notification collaborator of the dispatcher.
What it does:
- Notifier: the three calls dispatch makes (courier offer/assignment payloads,
  order assigned, order could not be assigned).
- NullNotifier: drops everything (tests, dry runs).
- BackgroundNotifier: wraps any Notifier and runs its calls on a thread pool
  so the dispatcher never waits on delivery; failures are only logged.

Transport mechanics (push, SMS, websocket) belong to the wrapped notifier.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict

logger = logging.getLogger(__name__)


class Notifier(ABC):
    @abstractmethod
    def notify(self, courier_id: str, payload: Dict[str, Any]) -> None:
        """Offer or assignment payload for one courier."""

    @abstractmethod
    def notify_order_assigned(self, order_id: str, courier_id: str) -> None:
        """Customer/restaurant: a courier is on the way."""

    @abstractmethod
    def notify_order_unassigned(self, order_id: str, reason: str) -> None:
        """Customer/restaurant: no courier could be assigned."""


class NullNotifier(Notifier):
    def notify(self, courier_id: str, payload: Dict[str, Any]) -> None:
        pass

    def notify_order_assigned(self, order_id: str, courier_id: str) -> None:
        pass

    def notify_order_unassigned(self, order_id: str, reason: str) -> None:
        pass


class BackgroundNotifier(Notifier):
    """
    Fire-and-forget wrapper. Calls return immediately.
    """

    def __init__(self, inner: Notifier, max_workers: int = 4):
        self.inner = inner
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")

    def notify(self, courier_id: str, payload: Dict[str, Any]) -> None:
        self._submit("notify", courier_id, payload)

    def notify_order_assigned(self, order_id: str, courier_id: str) -> None:
        self._submit("notify_order_assigned", order_id, courier_id)

    def notify_order_unassigned(self, order_id: str, reason: str) -> None:
        self._submit("notify_order_unassigned", order_id, reason)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _submit(self, method: str, *args) -> None:
        future = self._executor.submit(getattr(self.inner, method), *args)
        future.add_done_callback(lambda done: self._log_failure(method, args, done))

    @staticmethod
    def _log_failure(method: str, args: tuple, future: Future) -> None:
        error = future.exception()
        if error is not None:
            logger.error("Notification %s%s failed: %s", method, args[:1], error)
