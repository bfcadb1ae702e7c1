"""
Data models for the clinic booking client.
"""

from .appointment import AppointmentRecord, AppointmentStatus, QueueItem, StatusUpdate, TreatmentNote
from .availability import (
    AvailabilityQuery,
    AvailabilitySnapshot,
    DateAvailability,
    SlotOption,
    SlotUpdate,
    TimeWindow,
)
from .booking import (
    AppointmentRequest,
    BookingMode,
    BookingOutcome,
    BookingResult,
    CurrentUser,
    RescheduleRequest,
    UserRole,
    WalkInPatient,
)
from .clinic import Clinic, ClinicFilter, ClinicType, DoctorRef
from .selection import SelectionStage, SlotSelection, eligible_doctors

__all__ = [
    "AppointmentRecord",
    "AppointmentStatus",
    "QueueItem",
    "StatusUpdate",
    "TreatmentNote",
    "AvailabilityQuery",
    "AvailabilitySnapshot",
    "DateAvailability",
    "SlotOption",
    "SlotUpdate",
    "TimeWindow",
    "AppointmentRequest",
    "BookingMode",
    "BookingOutcome",
    "BookingResult",
    "CurrentUser",
    "RescheduleRequest",
    "UserRole",
    "WalkInPatient",
    "Clinic",
    "ClinicFilter",
    "ClinicType",
    "DoctorRef",
    "SelectionStage",
    "SlotSelection",
    "eligible_doctors",
]
