"""
Services module for Signal Terminal backend.
"""

from .notifications import Notification, NotificationChannel

__all__ = [
    "Notification",
    "NotificationChannel",
]
