"""Notification domain - in-app notifications fed by appointment and payment events"""

from .dispatcher import NotificationDispatcher, NotificationEvent, get_notification_dispatcher

__all__ = ["NotificationDispatcher", "NotificationEvent", "get_notification_dispatcher"]
