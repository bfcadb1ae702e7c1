"""
Appointment, queue and push-event models.
"""

from datetime import date, datetime
from enum import Enum
from typing import Dict, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from clinicbook.models.availability import coerce_date
from clinicbook.timeutils import normalize_time


class AppointmentStatus(str, Enum):
    """Lifecycle status of an appointment."""

    SCHEDULED = "SCHEDULED"
    CHECKED_IN = "CHECKED_IN"
    COMPLETED = "COMPLETED"
    NO_SHOW = "NO_SHOW"
    CANCELLED = "CANCELLED"

    @classmethod
    def parse(cls, value: str) -> "AppointmentStatus":
        """Parse loosely formatted status text ("checked-in", "No Show", ...)."""
        if isinstance(value, AppointmentStatus):
            return value
        key = str(value or "").strip().upper().replace("-", "_").replace(" ", "_")
        return cls(key)

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    def can_transition_to(self, target: "AppointmentStatus") -> bool:
        """Check a status change against the transitions staff may perform."""
        return target in STATUS_TRANSITIONS.get(self, frozenset())


TERMINAL_STATUSES: FrozenSet[AppointmentStatus] = frozenset(
    {AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW, AppointmentStatus.CANCELLED}
)

STATUS_TRANSITIONS: Dict[AppointmentStatus, FrozenSet[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset({AppointmentStatus.CHECKED_IN, AppointmentStatus.NO_SHOW}),
    AppointmentStatus.CHECKED_IN: frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW}),
}


class AppointmentRecord(BaseModel):
    """
    Cached copy of a backend appointment.

    The backend owns this record; clients refresh it by refetching or
    when a push notification says it changed.
    """

    appointment_id: str = Field(description="Appointment identifier")
    patient_id: Optional[str] = Field(default=None)
    doctor_id: Optional[str] = Field(default=None)
    clinic_id: Optional[str] = Field(default=None)
    booking_date: date = Field(description="Date of the appointment")
    start_time: str = Field(description="Start time (HH:MM)")
    end_time: Optional[str] = Field(default=None, description="End time (HH:MM)")
    status: AppointmentStatus = Field(default=AppointmentStatus.SCHEDULED)
    patient_name: Optional[str] = Field(default=None)
    doctor_name: Optional[str] = Field(default=None)
    clinic_name: Optional[str] = Field(default=None)
    created_at: Optional[datetime] = Field(default=None)
    updated_at: Optional[datetime] = Field(default=None)

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def accept_aliases(cls, data):
        if isinstance(data, dict) and "appointment_id" not in data:
            data = dict(data)
            data["appointment_id"] = data.get("appointmentId") or data.get("id")
        return data

    @field_validator("appointment_id", "patient_id", "doctor_id", "clinic_id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return str(v).strip() if v is not None else v

    @field_validator("clinic_name", "patient_name", "doctor_name", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("booking_date", mode="before")
    @classmethod
    def parse_date(cls, v):
        return coerce_date(v)

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def normalize(cls, v):
        return normalize_time(v) if v is not None else v

    @field_validator("status", mode="before")
    @classmethod
    def parse_status(cls, v):
        return AppointmentStatus.parse(v)

    @property
    def sort_key(self) -> tuple:
        return (self.booking_date, self.start_time)


class QueueItem(BaseModel):
    """
    An entry in a clinic's client-local waiting list.

    ``queue_number`` is assigned at admission and never changes, even when
    the item is fast-tracked to the front.
    """

    appointment_id: str
    queue_number: int = Field(gt=0, description="Ticket number shown to staff and patient")
    is_fast_track: bool = Field(default=False)
    patient_name: Optional[str] = Field(default=None)
    admitted_at: datetime = Field(default_factory=datetime.now)

    @property
    def label(self) -> str:
        return str(self.queue_number)


class StatusUpdate(BaseModel):
    """Payload pushed on the appointment-status topic."""

    appointment_id: str = Field(alias="appointmentId")
    status: AppointmentStatus
    clinic_id: Optional[str] = Field(default=None, alias="clinicId")
    patient_id: Optional[str] = Field(default=None, alias="patientId")
    doctor_id: Optional[str] = Field(default=None, alias="doctorId")

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def accept_aliases(cls, data):
        if isinstance(data, dict):
            data = dict(data)
            data.setdefault("appointmentId", data.get("appointment_id") or data.get("id"))
            if "clinicId" not in data and "clinic_id" in data:
                data["clinicId"] = data["clinic_id"]
        return data

    @field_validator("appointment_id", "clinic_id", "patient_id", "doctor_id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return str(v).strip() if v is not None else v

    @field_validator("status", mode="before")
    @classmethod
    def parse_status(cls, v):
        return AppointmentStatus.parse(v)


class TreatmentNote(BaseModel):
    """Latest treatment note for an appointment, as returned by the backend."""

    id: Optional[str] = Field(default=None)
    appointment_id: str = Field(alias="appointmentId")
    note_type: Optional[str] = Field(default=None, alias="noteType")
    notes: str = Field(default="")
    created_by_name: Optional[str] = Field(default=None, alias="createdByName")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def accept_note_id(cls, data):
        if isinstance(data, dict) and "id" not in data and "noteId" in data:
            data = dict(data)
            data["id"] = data["noteId"]
        return data

    @field_validator("id", "appointment_id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return str(v) if v is not None else v
