"""
Services layer for the clinic booking client.
"""

from .availability import AvailabilityService
from .backend import ClinicApiClient
from .booking import BookingCoordinator
from .channel import RealtimeChannel, Subscription
from .directory import DirectoryService
from .notifications import Notification, NotificationLevel, Notifier
from .queue import QueueCoordinator

__all__ = [
    "AvailabilityService",
    "ClinicApiClient",
    "BookingCoordinator",
    "RealtimeChannel",
    "Subscription",
    "DirectoryService",
    "Notification",
    "NotificationLevel",
    "Notifier",
    "QueueCoordinator",
]
