"""
Sessions module for the clinic booking client.

A session holds the state of one flow (booking or staff dashboard) and
releases its subscriptions and background work when closed.
"""

from .base import BaseSession
from .booking import BookingSession
from .staff import StaffSession

__all__ = [
    "BaseSession",
    "BookingSession",
    "StaffSession",
]
