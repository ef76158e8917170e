"""Push notification side-channel."""

from .notifier import INotifier, NullNotifier, PushNotifier, truncate_body

__all__ = ["INotifier", "NullNotifier", "PushNotifier", "truncate_body"]
