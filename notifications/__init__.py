#Marks notifications as a package.
#Re-exports the notifier implementations the dispatcher can be wired with.

from .push_client import NotificationDeliveryError, PushGatewayNotifier
from .log_notifier import LoggingNotifier

__all__ = [
    "NotificationDeliveryError",
    "PushGatewayNotifier",
    "LoggingNotifier",
]
