"""
Notification channels used to report sync outcomes.
"""

from .channels import (
    NotificationChannel,
    LogNotifier,
    WebhookNotifier,
    CompositeNotifier,
    default_notifier,
)

__all__ = [
    'NotificationChannel',
    'LogNotifier',
    'WebhookNotifier',
    'CompositeNotifier',
    'default_notifier',
]
