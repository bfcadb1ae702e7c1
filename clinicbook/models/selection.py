"""
Progressive slot selection with cascading resets.

A selection is filled top-down: clinic type, specialty, clinic, doctors,
date, then a time window. Changing a field clears every field after it so
the availability query is always built from a consistent combination.
"""

import datetime
from enum import Enum
from typing import Iterable, List, Optional, Set, Tuple

from pydantic import BaseModel, Field

from clinicbook.config import (
    MSG_SELECT_CLINIC,
    MSG_SELECT_CLINIC_TYPE,
    MSG_SELECT_DATE,
    MSG_SELECT_SLOT,
    MSG_SELECT_SPECIALTY,
    MSG_SELECT_VALID_SLOT,
)
from clinicbook.models.appointment import AppointmentRecord
from clinicbook.models.availability import AvailabilityQuery, TimeWindow
from clinicbook.models.clinic import ClinicFilter, ClinicType, DoctorRef

SELECTION_ORDER: Tuple[str, ...] = (
    "clinic_type",
    "specialty",
    "clinic_id",
    "doctor_ids",
    "date",
    "window",
)

# Fields cleared together with the window they describe
_WINDOW_COMPANIONS = ("chosen_doctor_id", "chosen_clinic_id")


class SelectionStage(str, Enum):
    EMPTY = "empty"
    CLINIC_TYPE_CHOSEN = "clinic_type_chosen"
    SPECIALTY_CHOSEN = "specialty_chosen"
    CLINIC_CHOSEN = "clinic_chosen"
    DOCTORS_CHOSEN = "doctors_chosen"
    DATE_CHOSEN = "date_chosen"
    SLOT_CHOSEN = "slot_chosen"
    READY = "ready"


def eligible_doctors(doctors: Iterable[DoctorRef], clinic_filter: Optional[ClinicFilter]) -> List[DoctorRef]:
    """Doctors selectable under ``clinic_filter``; none until a clinic type is chosen."""
    if clinic_filter is None:
        return []
    return [doctor for doctor in doctors if doctor.matches(clinic_filter)]


class SlotSelection(BaseModel):
    """
    The user's in-progress slot choice, owned by a single booking session.
    """

    clinic_type: Optional[ClinicType] = None
    specialty: Optional[str] = None
    clinic_id: Optional[str] = None
    doctor_ids: Set[str] = Field(default_factory=set)
    date: Optional[datetime.date] = None
    window: Optional[TimeWindow] = None
    chosen_doctor_id: Optional[str] = None
    chosen_clinic_id: Optional[str] = None

    # Set when the backend rejected the current slot; cleared by any new choice
    rejected: bool = False

    # ==================== Assignment ====================

    def assign(self, field: str, value) -> None:
        """
        Set one field of the selection and clear everything downstream of it.

        Args:
            field: One of ``SELECTION_ORDER``
            value: New value; ``None`` (or an empty collection) clears the field
        """
        if field not in SELECTION_ORDER:
            raise ValueError(f"Unknown selection field: {field}")
        if field == "specialty" and value and self.clinic_type != ClinicType.SPECIALIST:
            raise ValueError("A specialty can only be chosen for specialist clinics")
        if field == "doctor_ids":
            value = set(value or ())

        setattr(self, field, value)
        self._clear_after(SELECTION_ORDER.index(field))
        self.rejected = False

    def choose_clinic_type(self, clinic_type: Optional[ClinicType]) -> None:
        self.assign("clinic_type", ClinicType(clinic_type) if clinic_type else None)

    def choose_specialty(self, specialty: Optional[str]) -> None:
        self.assign("specialty", specialty or None)

    def choose_clinic(self, clinic_id: Optional[str]) -> None:
        self.assign("clinic_id", clinic_id or None)

    def choose_doctors(self, doctor_ids: Iterable[str]) -> None:
        self.assign("doctor_ids", doctor_ids)

    def choose_date(self, day: Optional[datetime.date]) -> None:
        self.assign("date", day)

    def choose_window(
        self,
        window: Optional[TimeWindow],
        doctor_id: Optional[str] = None,
        clinic_id: Optional[str] = None,
    ) -> None:
        """Pick a time window, together with the doctor and clinic offering it."""
        self.assign("window", window)
        if window is not None:
            self.chosen_doctor_id = doctor_id
            self.chosen_clinic_id = clinic_id

    def reset(self) -> None:
        """Return to the empty selection."""
        for field in SELECTION_ORDER:
            setattr(self, field, set() if field == "doctor_ids" else None)
        self._clear_after(len(SELECTION_ORDER) - 1)
        self.rejected = False

    def prune_doctors(self, doctors: Iterable[DoctorRef]) -> bool:
        """
        Drop chosen doctors that are no longer eligible.

        Returns:
            True if the doctor set changed (and downstream fields were cleared)
        """
        eligible = {d.doctor_id for d in eligible_doctors(doctors, self.clinic_filter)}
        kept = self.doctor_ids & eligible
        if kept == self.doctor_ids:
            return False
        self.assign("doctor_ids", kept)
        return True

    def mark_rejected(self) -> None:
        """Keep the current slot visible but block resubmitting it."""
        self.rejected = True

    def _clear_after(self, index: int) -> None:
        for field in SELECTION_ORDER[index + 1:]:
            setattr(self, field, set() if field == "doctor_ids" else None)
        if index < SELECTION_ORDER.index("window") or self.window is None:
            for field in _WINDOW_COMPANIONS:
                setattr(self, field, None)

    # ==================== Derived state ====================

    @property
    def clinic_filter(self) -> Optional[ClinicFilter]:
        if self.clinic_type is None:
            return None
        return ClinicFilter(
            clinic_type=self.clinic_type,
            specialty=self.specialty if self.clinic_type == ClinicType.SPECIALIST else None,
            clinic_id=self.clinic_id,
        )

    @property
    def availability_query(self) -> Optional[AvailabilityQuery]:
        """
        Query for the current selection, or None while it would be too broad.

        Nothing is queried before a clinic type is chosen, nor for specialist
        clinics before a specialty is chosen.
        """
        clinic_filter = self.clinic_filter
        if clinic_filter is None or not clinic_filter.is_queryable:
            return None
        return AvailabilityQuery(
            clinic_id=self.clinic_id,
            speciality=clinic_filter.speciality_key,
            doctor_ids=sorted(self.doctor_ids),
        )

    @property
    def resolved_doctor_id(self) -> Optional[str]:
        if self.chosen_doctor_id:
            return self.chosen_doctor_id
        if len(self.doctor_ids) == 1:
            return next(iter(self.doctor_ids))
        return None

    @property
    def resolved_clinic_id(self) -> Optional[str]:
        return self.chosen_clinic_id or self.clinic_id

    @property
    def stage(self) -> SelectionStage:
        if self.is_ready:
            return SelectionStage.READY
        if self.window is not None:
            return SelectionStage.SLOT_CHOSEN
        if self.date is not None:
            return SelectionStage.DATE_CHOSEN
        if self.doctor_ids:
            return SelectionStage.DOCTORS_CHOSEN
        if self.clinic_id:
            return SelectionStage.CLINIC_CHOSEN
        if self.specialty:
            return SelectionStage.SPECIALTY_CHOSEN
        if self.clinic_type is not None:
            return SelectionStage.CLINIC_TYPE_CHOSEN
        return SelectionStage.EMPTY

    @property
    def is_ready(self) -> bool:
        return self.validation_error() is None

    @property
    def can_submit(self) -> bool:
        return self.is_ready and not self.rejected

    @property
    def is_empty(self) -> bool:
        return self.stage == SelectionStage.EMPTY

    def validation_error(self) -> Optional[str]:
        """First missing piece of the selection, as a user-facing message."""
        if self.clinic_type is None:
            return MSG_SELECT_CLINIC_TYPE
        if self.clinic_type == ClinicType.SPECIALIST and not self.specialty:
            return MSG_SELECT_SPECIALTY
        if not self.resolved_clinic_id:
            return MSG_SELECT_CLINIC
        if self.date is None:
            return MSG_SELECT_DATE
        if self.window is None:
            return MSG_SELECT_SLOT
        if not self.resolved_doctor_id or not self.resolved_clinic_id:
            return MSG_SELECT_VALID_SLOT
        return None

    # ==================== Construction ====================

    @classmethod
    def from_appointment(
        cls,
        record: AppointmentRecord,
        clinic_type: Optional[ClinicType] = None,
        specialty: Optional[str] = None,
    ) -> "SlotSelection":
        """Pre-fill a selection from an appointment that is being rescheduled."""
        window = None
        if record.start_time and record.end_time:
            window = TimeWindow(start_time=record.start_time, end_time=record.end_time)
        return cls(
            clinic_type=clinic_type,
            specialty=specialty if clinic_type == ClinicType.SPECIALIST else None,
            clinic_id=record.clinic_id,
            doctor_ids={record.doctor_id} if record.doctor_id else set(),
            date=record.booking_date,
            window=window,
            chosen_doctor_id=record.doctor_id,
            chosen_clinic_id=record.clinic_id,
        )
