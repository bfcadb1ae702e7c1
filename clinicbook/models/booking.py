"""
Booking-related data models.
"""

from datetime import date
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_serializer, field_validator

from clinicbook.models.appointment import AppointmentRecord
from clinicbook.timeutils import normalize_time


class UserRole(str, Enum):
    PATIENT = "ROLE_PATIENT"
    STAFF = "ROLE_STAFF"
    ADMIN = "ROLE_ADMIN"


class CurrentUser(BaseModel):
    """
    The authenticated user a session acts for.

    Authentication itself happens elsewhere; this only carries the
    identity the booking endpoints need.
    """

    user_id: str = Field(min_length=1)
    role: UserRole = Field(default=UserRole.PATIENT)
    clinic_id: Optional[str] = Field(default=None, description="Clinic a staff member works at")

    @property
    def is_staff(self) -> bool:
        return self.role in (UserRole.STAFF, UserRole.ADMIN)


def generate_walk_in_id() -> str:
    """Synthetic patient identifier for a walk-in without an account."""
    return f"walkin-{uuid4().hex}"


class WalkInPatient(BaseModel):
    """
    Patient details captured by staff when creating a walk-in.
    """

    patient_id: str = Field(default_factory=generate_walk_in_id)
    name: Optional[str] = Field(default=None, max_length=200)
    phone: Optional[str] = Field(default=None, max_length=50)
    email: Optional[str] = Field(default=None, max_length=200)

    @field_validator("name", "phone", "email", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v


class BookingMode(str, Enum):
    NEW = "new"
    RESCHEDULE = "reschedule"
    WALK_IN = "walk_in"


class RescheduleRequest(BaseModel):
    """Body of a reschedule request; also the slot part of a new booking."""

    doctor_id: str
    clinic_id: str
    booking_date: date
    start_time: str
    end_time: str

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def to_hhmm(cls, v):
        return normalize_time(v)

    @field_serializer("booking_date")
    def serialize_date(self, value: date) -> str:
        return value.isoformat()


class AppointmentRequest(RescheduleRequest):
    """Body of ``POST /api/appointments``."""

    patient_id: str
    patient_name: Optional[str] = None
    patient_phone: Optional[str] = None
    patient_email: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class BookingOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFLICT = "SLOT_UNAVAILABLE"
    FAILED = "BOOKING_ERROR"
    BUSY = "SUBMISSION_IN_PROGRESS"


class BookingResult(BaseModel):
    """
    Result of a booking, reschedule or walk-in attempt.
    """

    success: bool = Field(description="Whether the request was accepted")
    outcome: BookingOutcome = Field(description="Which path the attempt took")
    message: str = Field(description="Human-readable result message")
    appointment: Optional[AppointmentRecord] = Field(default=None, description="Created or updated record")
    status_code: Optional[int] = Field(default=None, description="HTTP status if the backend answered")

    @property
    def error_code(self) -> Optional[str]:
        return None if self.success else self.outcome.value

    @property
    def is_conflict(self) -> bool:
        return self.outcome == BookingOutcome.CONFLICT
