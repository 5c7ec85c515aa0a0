"""It runs a background thread that keeps expiring offers nobody answered and cascades their orders"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import List, Optional

from .dispatcher import DispatchCoordinator

logger = logging.getLogger(__name__)


class ExpirySweeper:
    def __init__(self, coordinator: DispatchCoordinator, interval_seconds: Optional[float] = None):
        self.coordinator = coordinator
        self.interval_seconds = interval_seconds or coordinator.policy.sweep_interval_seconds
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def run_once(self, now: Optional[datetime] = None) -> List[str]:
        """
        One sweep: expire every overdue pending offer, then cascade each
        order that was still waiting on it. Returns the expired offer ids.
        """
        now = now or self.coordinator.clock()
        expired_ids = self.coordinator.ledger.expire_stale(now)

        for offer_id in expired_ids:
            offer = self.coordinator.ledger.get(offer_id)
            try:
                self.coordinator.on_offer_expired(offer)
            except Exception:
                # One broken order must not stop the others from cascading.
                logger.exception("Cascade after expiry of offer %s failed", offer_id)

        return expired_ids

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return

        logger.info("Starting offer expiry sweeper (interval=%ss)", self.interval_seconds)
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="offer-expiry-sweeper", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)

    def __enter__(self) -> ExpirySweeper:
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            try:
                expired = self.run_once()
                if expired:
                    logger.info("Offer sweeper expired %s offers", len(expired))
            except Exception:
                logger.exception("Offer expiry sweeper encountered an error")
