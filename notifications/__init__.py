#Marks notifications as a package.
#Re-exports the notifier implementations the dispatcher can be wired with.

from .base import Notifier, NullNotifier, BackgroundNotifier
from .webhook import WebhookNotifier, NotificationError

__all__ = [
    "Notifier",
    "NullNotifier",
    "BackgroundNotifier",
    "WebhookNotifier",
    "NotificationError",
]
