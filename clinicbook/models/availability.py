"""
Availability-related data models.
"""

from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from clinicbook.timeutils import (
    booking_horizon,
    minutes_of_day,
    normalize_time,
    parse_wall_clock_time,
)


def coerce_date(value):
    """Accept ISO strings as well as ``[year, month, day]`` arrays."""
    if isinstance(value, (list, tuple)) and len(value) >= 3:
        return date(int(value[0]), int(value[1]), int(value[2]))
    if isinstance(value, str) and len(value) > 10:
        return value[:10]
    return value


class TimeWindow(BaseModel):
    """
    A bookable start/end interval on one date, in canonical ``HH:MM``.
    """

    start_time: str = Field(alias="startTime", description="Start time (HH:MM)")
    end_time: str = Field(alias="endTime", description="End time (HH:MM)")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @model_validator(mode="before")
    @classmethod
    def from_range_string(cls, data):
        if isinstance(data, str):
            start, sep, end = data.partition("-")
            if not sep:
                raise ValueError(f"Expected 'HH:MM-HH:MM', got {data!r}")
            return {"start_time": start.strip(), "end_time": end.strip()}
        return data

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def normalize(cls, v):
        return normalize_time(v)

    @model_validator(mode="after")
    def check_order(self) -> "TimeWindow":
        if self.start_minutes >= self.end_minutes:
            raise ValueError(f"Window start {self.start_time} must be before end {self.end_time}")
        return self

    @property
    def start_minutes(self) -> int:
        return parse_wall_clock_time(self.start_time)

    @property
    def end_minutes(self) -> int:
        return parse_wall_clock_time(self.end_time)

    @property
    def label(self) -> str:
        return f"{self.start_time}-{self.end_time}"

    def __str__(self) -> str:
        return self.label


class DateAvailability(BaseModel):
    """
    Open windows for one doctor on one date, as returned by the backend.
    """

    date: date
    doctor_id: str = Field(alias="doctorId")
    doctor_name: Optional[str] = Field(default=None, alias="doctorName")
    clinic_id: Optional[str] = Field(default=None, alias="clinicId")
    clinic_name: Optional[str] = Field(default=None, alias="clinicName")
    time_slots: List[TimeWindow] = Field(default_factory=list, alias="timeSlots")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, v):
        return coerce_date(v)

    @field_validator("doctor_id", "clinic_id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return str(v).strip() if v is not None else v

    def windows_after(self, minutes: int) -> List[TimeWindow]:
        """Windows whose start is strictly after ``minutes`` since midnight."""
        return [w for w in self.time_slots if w.start_minutes > minutes]


class SlotOption(BaseModel):
    """A single pickable slot: one window with the doctor and clinic that offer it."""

    date: date
    window: TimeWindow
    doctor_id: str
    doctor_name: Optional[str] = None
    clinic_id: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class AvailabilitySnapshot(BaseModel):
    """
    Result of one availability fetch, plus the calendar sets derived from it.

    Snapshots are replaced, never mutated: slot removal returns a new
    snapshot so a failed or late update cannot leave a half-written view.
    """

    entries: List[DateAvailability] = Field(default_factory=list)
    fetched_at: datetime = Field(description="Wall-clock time the same-day rule was evaluated at")
    horizon_days: int = Field(default=56)
    available_dates: List[date] = Field(default_factory=list)
    unavailable_dates: List[date] = Field(default_factory=list)

    @classmethod
    def build(
        cls,
        entries: List[DateAvailability],
        now: datetime,
        horizon_days: int = 56,
    ) -> "AvailabilitySnapshot":
        """
        Derive calendar sets from raw entries.

        Args:
            entries: Raw per-(date, doctor) availability
            now: Wall-clock time used for the same-day filter
            horizon_days: Number of days after today covered by the calendar

        Returns:
            A snapshot with ``available_dates`` and ``unavailable_dates`` filled in
        """
        snapshot = cls(entries=entries, fetched_at=now, horizon_days=horizon_days)
        today = now.date()

        available: Set[date] = set()
        for entry in entries:
            if snapshot.bookable_windows(entry):
                available.add(entry.date)

        # today is part of the horizon, so it lands here whenever it has no future windows left
        unavailable = [d for d in booking_horizon(today, horizon_days) if d not in available]

        snapshot.available_dates = sorted(available)
        snapshot.unavailable_dates = unavailable
        return snapshot

    def bookable_windows(self, entry: DateAvailability) -> List[TimeWindow]:
        """Windows of ``entry`` still bookable at ``fetched_at``."""
        if entry.date == self.fetched_at.date():
            return entry.windows_after(minutes_of_day(self.fetched_at))
        return list(entry.time_slots)

    def slots_for(self, day: date) -> List[SlotOption]:
        """Every bookable slot on ``day`` across doctors, ordered by start time."""
        options = [
            SlotOption(
                date=entry.date,
                window=window,
                doctor_id=entry.doctor_id,
                doctor_name=entry.doctor_name,
                clinic_id=entry.clinic_id,
            )
            for entry in self.entries
            if entry.date == day
            for window in self.bookable_windows(entry)
        ]
        options.sort(key=lambda o: (o.window.start_minutes, o.doctor_name or "", o.doctor_id))
        return options

    def windows_by_doctor(self, day: date) -> Dict[str, List[TimeWindow]]:
        """Bookable windows on ``day`` keyed by doctor id."""
        result: Dict[str, List[TimeWindow]] = {}
        for entry in self.entries:
            if entry.date == day:
                result.setdefault(entry.doctor_id, []).extend(self.bookable_windows(entry))
        return result

    def is_available(self, day: date) -> bool:
        return day in self.available_dates

    def contains_slot(
        self,
        day: date,
        start_time: str,
        doctor_id: Optional[str] = None,
        clinic_id: Optional[str] = None,
    ) -> bool:
        start = normalize_time(start_time)
        return any(
            window.start_time == start
            for entry in self._matching_entries(day, doctor_id, clinic_id)
            for window in entry.time_slots
        )

    def without_slot(
        self,
        day: date,
        start_time: str,
        doctor_id: Optional[str] = None,
        clinic_id: Optional[str] = None,
    ) -> "AvailabilitySnapshot":
        """
        Return a snapshot with the matching window removed.

        Removal is idempotent: if no window matches, the same snapshot is
        returned unchanged. Entries left without windows are dropped.

        Args:
            day: Booking date of the consumed slot
            start_time: Start time in any accepted format
            doctor_id: Restrict removal to this doctor when given
            clinic_id: Restrict removal to this clinic when given
        """
        start = normalize_time(start_time)
        if not self.contains_slot(day, start, doctor_id, clinic_id):
            return self

        matching = {id(e) for e in self._matching_entries(day, doctor_id, clinic_id)}
        entries: List[DateAvailability] = []
        for entry in self.entries:
            if id(entry) in matching:
                remaining = [w for w in entry.time_slots if w.start_time != start]
                if not remaining:
                    continue
                entry = entry.model_copy(update={"time_slots": remaining})
            entries.append(entry)

        return AvailabilitySnapshot.build(entries, self.fetched_at, self.horizon_days)

    def _matching_entries(
        self,
        day: date,
        doctor_id: Optional[str],
        clinic_id: Optional[str],
    ) -> List[DateAvailability]:
        return [
            entry
            for entry in self.entries
            if entry.date == day
            and (not clinic_id or entry.clinic_id == clinic_id)
            and (not doctor_id or entry.doctor_id == doctor_id)
        ]


class SlotAction(str, Enum):
    REMOVE = "REMOVE"
    ADD = "ADD"


class SlotUpdate(BaseModel):
    """
    Payload pushed on the slot-change topic when a slot is consumed or released.
    """

    booking_date: date
    start_time: str
    end_time: Optional[str] = None
    doctor_id: Optional[str] = None
    clinic_id: Optional[str] = None
    action: SlotAction = SlotAction.REMOVE

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def accept_aliases(cls, data):
        if isinstance(data, dict) and "booking_date" not in data and "date" in data:
            data = dict(data)
            data["booking_date"] = data["date"]
        return data

    @field_validator("booking_date", mode="before")
    @classmethod
    def parse_date(cls, v):
        return coerce_date(v)

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def normalize(cls, v):
        return normalize_time(v) if v is not None else v

    @field_validator("action", mode="before")
    @classmethod
    def upper_action(cls, v):
        if isinstance(v, SlotAction):
            return v
        return str(v or SlotAction.REMOVE.value).strip().upper()

    @field_validator("doctor_id", "clinic_id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return str(v).strip() if v not in (None, "") else None

    @property
    def is_removal(self) -> bool:
        return self.action == SlotAction.REMOVE


class AvailabilityQuery(BaseModel):
    """Parameters of one ``/api/timeslots/available/dateslots`` request."""

    clinic_id: Optional[str] = None
    speciality: str = ""
    doctor_ids: List[str] = Field(default_factory=list)

    def to_params(self) -> Dict[str, object]:
        params: Dict[str, object] = {
            "clinicId": self.clinic_id or "",
            "speciality": self.speciality,
        }
        if self.doctor_ids:
            params["doctorId"] = list(self.doctor_ids)
        return params
