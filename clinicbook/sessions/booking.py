"""
Booking session - one run of the "book / reschedule / walk-in" flow.

The session keeps the user's selection and the availability snapshot for
it. Every upstream choice re-runs the availability query; results from a
query that has since been superseded are discarded. Slot pushes remove
consumed windows from the snapshot without waiting for a re-fetch.
"""

from datetime import date
from typing import Iterable, List, Optional

from loguru import logger
from pydantic import ValidationError

from clinicbook.config import SLOTS_TOPIC, Settings
from clinicbook.models.appointment import AppointmentRecord
from clinicbook.models.availability import AvailabilitySnapshot, SlotOption, SlotUpdate
from clinicbook.models.booking import BookingMode, BookingOutcome, BookingResult, CurrentUser, WalkInPatient
from clinicbook.models.clinic import Clinic, ClinicType, DoctorRef
from clinicbook.models.selection import SlotSelection
from clinicbook.services.availability import AvailabilityService
from clinicbook.services.booking import BookingCoordinator
from clinicbook.services.channel import RealtimeChannel
from clinicbook.services.directory import DirectoryService
from clinicbook.services.notifications import Notifier
from clinicbook.sessions.base import BaseSession
from clinicbook.timeutils import TimeFormatError


class BookingSession(BaseSession):
    """
    Slot selection and submission for one booking flow.

    Args:
        channel: Shared push channel, or None to run without push
        notifier: Receives user-facing messages
        directory: Clinic and doctor directory
        availability: Availability fetcher
        coordinator: Submits the finished selection
        user: Signed-in user, if any
        mode: New booking, reschedule or walk-in
        appointment: Appointment being rescheduled (reschedule mode only)
    """

    def __init__(
        self,
        channel: Optional[RealtimeChannel],
        notifier: Notifier,
        directory: DirectoryService,
        availability: AvailabilityService,
        coordinator: BookingCoordinator,
        user: Optional[CurrentUser] = None,
        mode: BookingMode = BookingMode.NEW,
        appointment: Optional[AppointmentRecord] = None,
        settings: Optional[Settings] = None,
    ):
        super().__init__(channel, notifier, settings)
        if mode == BookingMode.RESCHEDULE and appointment is None:
            raise ValueError("Rescheduling needs the appointment being moved")

        self.directory = directory
        self.availability = availability
        self.coordinator = coordinator
        self.user = user
        self.mode = mode
        self.appointment = appointment

        self.selection = SlotSelection()
        self.snapshot: Optional[AvailabilitySnapshot] = None
        self.loading = False
        self.submitting = False
        self.last_result: Optional[BookingResult] = None
        self._generation = 0

    # ==================== Lifecycle ====================

    async def start(self) -> None:
        """Load the directory, subscribe to slot changes and run the first query."""
        self.listen(SLOTS_TOPIC, self.on_slot_update)
        await self.directory.load()

        if self.mode == BookingMode.RESCHEDULE:
            self._prefill_from_appointment()
        elif self.mode == BookingMode.WALK_IN:
            self._prefill_from_staff_clinic()

        self.log_session_action("started", {"mode": self.mode.value})
        await self.refresh()

    async def reload_directory(self) -> bool:
        """
        Re-fetch the clinic and doctor directory.

        Chosen doctors that are no longer listed are dropped and availability is re-queried.

        Returns:
            True if the directory is available afterwards
        """
        loaded = await self.directory.load(force=True)
        if self.closed:
            return loaded
        if self.selection.prune_doctors(self.directory.doctors):
            logger.info(f"Directory reload dropped doctors; now {sorted(self.selection.doctor_ids)}")
            await self.refresh()
        return loaded

    async def close(self) -> None:
        if self.closed:
            return
        await super().close()
        self.selection.reset()
        self.snapshot = None

    def _prefill_from_appointment(self) -> None:
        clinic = self.directory.find_clinic(self.appointment.clinic_id)
        clinic_type = clinic.clinic_type if clinic else ClinicType.GENERAL_PRACTICE
        specialty = clinic.speciality if clinic else None
        if clinic_type == ClinicType.SPECIALIST and not specialty:
            doctor = self.directory.find_doctor(self.appointment.doctor_id)
            specialty = doctor.speciality if doctor else None
        self.selection = SlotSelection.from_appointment(self.appointment, clinic_type, specialty)

    def _prefill_from_staff_clinic(self) -> None:
        clinic = self.directory.find_clinic(self.user.clinic_id if self.user else None)
        if clinic is None:
            logger.warning("Walk-in session without a known staff clinic; starting from an empty selection")
            return
        self.selection.choose_clinic_type(clinic.clinic_type)
        if clinic.clinic_type == ClinicType.SPECIALIST and clinic.speciality:
            self.selection.choose_specialty(clinic.speciality)
        self.selection.choose_clinic(clinic.clinic_id)

    # ==================== Options ====================

    @property
    def specialty_options(self) -> List[str]:
        return self.directory.specialties

    @property
    def clinic_options(self) -> List[Clinic]:
        return self.directory.clinics_for(self.selection.clinic_type, self.selection.specialty)

    @property
    def doctor_options(self) -> List[DoctorRef]:
        return self.directory.doctors_for(self.selection.clinic_filter)

    @property
    def available_dates(self) -> List[date]:
        return self.snapshot.available_dates if self.snapshot else []

    @property
    def unavailable_dates(self) -> List[date]:
        return self.snapshot.unavailable_dates if self.snapshot else []

    @property
    def slot_options(self) -> List[SlotOption]:
        if self.snapshot is None or self.selection.date is None:
            return []
        return self.snapshot.slots_for(self.selection.date)

    @property
    def can_submit(self) -> bool:
        return self.selection.can_submit and not self.submitting and not self.closed

    # ==================== Selection ====================

    async def select_clinic_type(self, clinic_type: Optional[ClinicType]) -> None:
        self.selection.choose_clinic_type(clinic_type)
        await self.refresh()

    async def select_specialty(self, specialty: Optional[str]) -> None:
        self.selection.choose_specialty(specialty)
        await self.refresh()

    async def select_clinic(self, clinic_id: Optional[str]) -> None:
        """Choose a clinic; an id outside the current clinic options is refused."""
        if clinic_id and clinic_id not in {c.clinic_id for c in self.clinic_options}:
            logger.warning(f"Ignoring clinic {clinic_id}: not offered for the current selection")
            return
        self.selection.choose_clinic(clinic_id)
        await self.refresh()

    async def select_doctors(self, doctor_ids: Iterable[str]) -> None:
        """Choose doctors; ids that are not eligible for the current filter are ignored."""
        eligible = {d.doctor_id for d in self.doctor_options}
        requested = set(doctor_ids)
        if requested - eligible:
            logger.debug(f"Ignoring ineligible doctors: {sorted(requested - eligible)}")
        self.selection.choose_doctors(requested & eligible)
        await self.refresh()

    def select_date(self, day: Optional[date]) -> None:
        self.selection.choose_date(day)

    def select_slot(self, option: Optional[SlotOption]) -> None:
        if option is None:
            self.selection.choose_window(None)
            return
        if self.selection.date != option.date:
            self.selection.choose_date(option.date)
        self.selection.choose_window(option.window, option.doctor_id, option.clinic_id)

    # ==================== Availability ====================

    async def refresh(self) -> Optional[AvailabilitySnapshot]:
        """
        Re-run the availability query for the current selection.

        Returns:
            The snapshot now held by the session
        """
        self._generation += 1
        generation = self._generation

        query = self.selection.availability_query
        if query is None:
            self.snapshot = None
            return None
        if self.mode == BookingMode.WALK_IN and query.clinic_id and not query.doctor_ids:
            query.doctor_ids = self.directory.clinic_doctor_ids(query.clinic_id)

        self.loading = True
        try:
            snapshot = await self.availability.fetch(query)
        finally:
            if generation == self._generation:
                self.loading = False

        if self.closed or generation != self._generation:
            logger.debug("Discarding availability for a superseded query")
            return self.snapshot
        if snapshot is not None:
            self.snapshot = snapshot
        return self.snapshot

    def on_slot_update(self, payload) -> None:
        """Apply a slot push to the snapshot."""
        try:
            update = SlotUpdate(**payload)
        except (TypeError, ValidationError, TimeFormatError) as e:
            logger.error(f"Ignoring malformed slot update: {e}")
            return

        if not update.is_removal:
            self.spawn(self.refresh())
            return
        self._remove_slot(update.booking_date, update.start_time, update.doctor_id, update.clinic_id)

    def _remove_slot(
        self,
        day: date,
        start_time: str,
        doctor_id: Optional[str],
        clinic_id: Optional[str],
    ) -> None:
        if self.snapshot is None:
            return
        updated = self.snapshot.without_slot(day, start_time, doctor_id, clinic_id)
        if updated is not self.snapshot:
            logger.debug(f"Removed slot {day} {start_time} (doctor {doctor_id or '*'})")
            self.snapshot = updated

    # ==================== Submission ====================

    async def submit(self, patient: Optional[WalkInPatient] = None) -> BookingResult:
        """
        Submit the current selection.

        Args:
            patient: Walk-in contact details (walk-in mode only)

        Returns:
            BookingResult describing the outcome
        """
        if self.submitting:
            return BookingResult(
                success=False,
                outcome=BookingOutcome.BUSY,
                message="A booking request is already in progress.",
            )

        self.submitting = True
        # The live selection stays editable while the request is in flight
        submitted = self.selection.model_copy(deep=True)
        try:
            if self.mode == BookingMode.RESCHEDULE:
                result = await self.coordinator.reschedule(
                    self.user, self.appointment.appointment_id, submitted
                )
            elif self.mode == BookingMode.WALK_IN:
                result = await self.coordinator.create_walk_in(self.user, submitted, patient)
            else:
                result = await self.coordinator.book(self.user, submitted)
        finally:
            self.submitting = False

        self.last_result = result
        if self.closed:
            return result

        unchanged = self._is_current(submitted)
        if result.success:
            self._remove_slot(
                submitted.date,
                submitted.window.start_time,
                submitted.resolved_doctor_id,
                submitted.resolved_clinic_id,
            )
            if self.mode == BookingMode.RESCHEDULE:
                self.appointment = result.appointment or self.appointment
            self.log_session_action(
                "submitted",
                {"appointment_id": result.appointment.appointment_id if result.appointment else None},
            )
            if unchanged:
                self.selection.reset()
        elif result.is_conflict:
            if unchanged:
                self.selection.mark_rejected()
            self.spawn(self.refresh())
        return result

    def _is_current(self, submitted: SlotSelection) -> bool:
        """Whether the live selection still holds the choice that was submitted."""
        return self.selection.model_dump(exclude={"rejected"}) == submitted.model_dump(exclude={"rejected"})
