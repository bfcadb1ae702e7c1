"""
Booking Service - creates, reschedules and walk-in books appointments.

Every attempt is validated locally first; only a complete selection for an
identified user reaches the backend. Backend errors are converted into
``BookingResult`` objects and notifications, never raised to the caller.
"""

from typing import Awaitable, Callable, Optional

import httpx
from loguru import logger

from clinicbook.config import (
    MSG_GENERIC_FAILURE,
    MSG_SIGN_IN_REQUIRED,
    MSG_SLOT_REJECTED,
    MSG_SLOT_TAKEN,
    MSG_WALK_IN_STAFF_ONLY,
)
from clinicbook.models.appointment import AppointmentRecord
from clinicbook.models.booking import (
    AppointmentRequest,
    BookingOutcome,
    BookingResult,
    CurrentUser,
    RescheduleRequest,
    WalkInPatient,
)
from clinicbook.models.selection import SlotSelection
from clinicbook.services.backend import ClinicApiClient, MalformedResponseError, error_message
from clinicbook.services.notifications import Notifier

CONFLICT_STATUS_CODES = (400, 409)


class BookingCoordinator:
    """
    Submits slot selections to the backend.

    Three variants share one submission path: a new booking for the signed-in
    patient, a reschedule of an existing appointment, and a staff-created
    walk-in for a patient without an account.
    """

    def __init__(self, api: ClinicApiClient, notifier: Notifier):
        self._api = api
        self._notifier = notifier

    async def book(self, user: Optional[CurrentUser], selection: SlotSelection) -> BookingResult:
        """
        Book the selected slot for the signed-in patient.

        Args:
            user: Authenticated user, or None when nobody is signed in
            selection: Slot selection in the Ready state

        Returns:
            BookingResult with the created appointment on success
        """
        if user is None:
            return self._invalid(MSG_SIGN_IN_REQUIRED)
        invalid = self._check_selection(selection)
        if invalid:
            return invalid

        request = AppointmentRequest(patient_id=user.user_id, **self._slot_fields(selection))
        return await self._submit(
            selection,
            lambda: self._api.create_appointment(request),
            success_message=f"Appointment booked for {request.booking_date} at {request.start_time}.",
        )

    async def reschedule(
        self,
        user: Optional[CurrentUser],
        appointment_id: str,
        selection: SlotSelection,
    ) -> BookingResult:
        """
        Move ``appointment_id`` to the selected slot.

        Staff users go through the staff reschedule route.
        """
        if user is None:
            return self._invalid(MSG_SIGN_IN_REQUIRED)
        invalid = self._check_selection(selection)
        if invalid:
            return invalid

        request = RescheduleRequest(**self._slot_fields(selection))
        return await self._submit(
            selection,
            lambda: self._api.reschedule_appointment(appointment_id, request, as_staff=user.is_staff),
            success_message=f"Appointment moved to {request.booking_date} at {request.start_time}.",
        )

    async def create_walk_in(
        self,
        user: Optional[CurrentUser],
        selection: SlotSelection,
        patient: Optional[WalkInPatient] = None,
    ) -> BookingResult:
        """
        Book a walk-in appointment on behalf of a patient at the desk.

        Args:
            user: Staff member creating the walk-in
            selection: Slot selection in the Ready state
            patient: Contact details; a synthetic patient id is generated when absent
        """
        if user is None or not user.is_staff:
            return self._invalid(MSG_WALK_IN_STAFF_ONLY)
        invalid = self._check_selection(selection)
        if invalid:
            return invalid

        patient = patient or WalkInPatient()
        request = AppointmentRequest(
            patient_id=patient.patient_id,
            patient_name=patient.name,
            patient_phone=patient.phone,
            patient_email=patient.email,
            **self._slot_fields(selection),
        )
        return await self._submit(
            selection,
            lambda: self._api.create_appointment(request),
            success_message=f"Walk-in booked for {request.booking_date} at {request.start_time}.",
        )

    # ==================== Internals ====================

    def _check_selection(self, selection: SlotSelection) -> Optional[BookingResult]:
        message = selection.validation_error()
        if message:
            return self._invalid(message)
        if selection.rejected:
            return self._invalid(MSG_SLOT_REJECTED)
        return None

    @staticmethod
    def _slot_fields(selection: SlotSelection) -> dict:
        return {
            "doctor_id": selection.resolved_doctor_id,
            "clinic_id": selection.resolved_clinic_id,
            "booking_date": selection.date,
            "start_time": selection.window.start_time,
            "end_time": selection.window.end_time,
        }

    def _invalid(self, message: str) -> BookingResult:
        logger.info(f"Booking blocked by validation: {message}")
        self._notifier.warning(message)
        return BookingResult(success=False, outcome=BookingOutcome.VALIDATION_ERROR, message=message)

    async def _submit(
        self,
        selection: SlotSelection,
        call: Callable[[], Awaitable[AppointmentRecord]],
        success_message: str,
    ) -> BookingResult:
        try:
            record = await call()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status in CONFLICT_STATUS_CODES:
                message = error_message(e) or MSG_SLOT_TAKEN
                logger.warning(f"Slot conflict ({status}): {message}")
                selection.mark_rejected()
                self._notifier.error("Slot unavailable", message)
                return BookingResult(
                    success=False,
                    outcome=BookingOutcome.CONFLICT,
                    message=message,
                    status_code=status,
                )
            return self._failed(f"Backend returned {status}", status)
        except (httpx.RequestError, MalformedResponseError) as e:
            return self._failed(str(e))

        self._notifier.success(success_message)
        return BookingResult(
            success=True,
            outcome=BookingOutcome.SUCCESS,
            message=success_message,
            appointment=record,
        )

    def _failed(self, reason: str, status_code: Optional[int] = None) -> BookingResult:
        logger.error(f"Booking error: {reason}")
        self._notifier.error("Booking failed", MSG_GENERIC_FAILURE)
        return BookingResult(
            success=False,
            outcome=BookingOutcome.FAILED,
            message=MSG_GENERIC_FAILURE,
            status_code=status_code,
        )
