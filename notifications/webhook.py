#Purpose: The HTTP notification "adapter/client".
#Sole responsibility: hand dispatch notifications to the notification service over HTTP.
#Encapsulates transport details:
#URL construction (/couriers/<id>/notifications, /orders/<id>/assigned, ...)
#timeouts/error handling
#It should not contain dispatch rules.

from dotenv import load_dotenv
import os
from typing import Any, Dict, Optional
import requests

from .base import Notifier

# Read the notification service base URL from environment
# Example in .env:
# NOTIFY_BASE_URL=http://notifications.internal:8080
load_dotenv()


class NotificationError(Exception):
    """Raised when the notification service refuses or cannot be reached."""
    pass


class WebhookNotifier(Notifier):
    """
    Posts JSON to the notification service. Wrap in BackgroundNotifier so
    the dispatcher never blocks on the network.
    """

    def __init__(self, base_url: Optional[str] = None, timeout: int = 5):
        self.base_url = (base_url or os.getenv("NOTIFY_BASE_URL") or "").rstrip("/")
        self.timeout = timeout #seconds to wait for the notification service before giving up

        if not self.base_url:
            raise ValueError("Notification base URL not set. Please set NOTIFY_BASE_URL in the .env file.")

    def notify(self, courier_id: str, payload: Dict[str, Any]) -> None:
        self._post(f"/couriers/{courier_id}/notifications", payload)

    def notify_order_assigned(self, order_id: str, courier_id: str) -> None:
        self._post(f"/orders/{order_id}/assigned", {"order_id": order_id, "courier_id": courier_id})

    def notify_order_unassigned(self, order_id: str, reason: str) -> None:
        self._post(f"/orders/{order_id}/unassigned", {"order_id": order_id, "reason": reason})

    def _post(self, path: str, body: Dict[str, Any]) -> None:
        url = f"{self.base_url}{path}"
        try:
            response = requests.post(url, json=body, timeout=self.timeout)
        except requests.RequestException as exc:
            raise NotificationError(f"POST {url} failed: {exc}") from exc

        if response.status_code >= 400:
            raise NotificationError(f"POST {url} returned {response.status_code}")
