"""
Staff session - the clinic dashboard: queue, status changes and treatment notes.
"""

from typing import Dict, List, Optional

from loguru import logger
from pydantic import ValidationError

from clinicbook.config import (
    APPOINTMENT_STATUS_TOPIC,
    SLOTS_TOPIC,
    TREATMENT_NOTES_TOPIC,
    Settings,
)
from clinicbook.models.appointment import AppointmentRecord, QueueItem, StatusUpdate, TreatmentNote
from clinicbook.models.availability import SlotUpdate
from clinicbook.models.booking import CurrentUser
from clinicbook.services.backend import BACKEND_ERRORS, ClinicApiClient
from clinicbook.services.channel import RealtimeChannel
from clinicbook.services.notifications import Notifier
from clinicbook.services.queue import QueueCoordinator
from clinicbook.sessions.base import BaseSession
from clinicbook.timeutils import TimeFormatError


class StaffSession(BaseSession):
    """
    Dashboard for one staff member's clinic.

    Push events for the clinic trigger a reconciliation pass; polling keeps
    the views correct when push is unavailable.
    """

    def __init__(
        self,
        channel: Optional[RealtimeChannel],
        notifier: Notifier,
        api: ClinicApiClient,
        user: CurrentUser,
        settings: Optional[Settings] = None,
    ):
        super().__init__(channel, notifier, settings)
        if not user.is_staff or not user.clinic_id:
            raise ValueError("A staff session needs a staff user with a clinic")
        self.api = api
        self.user = user
        self.queue = QueueCoordinator(
            api,
            notifier,
            user.clinic_id,
            poll_interval=self.settings.queue_poll_interval,
        )
        self._notes: Dict[str, Optional[TreatmentNote]] = {}

    @property
    def clinic_id(self) -> str:
        return self.user.clinic_id

    async def start(self, poll: bool = True) -> None:
        """
        Subscribe to clinic events and load the appointment list.

        Args:
            poll: Also reconcile on the configured interval
        """
        self.listen(APPOINTMENT_STATUS_TOPIC, self.on_status_update)
        self.listen(SLOTS_TOPIC, self.on_slot_update)
        self.listen(TREATMENT_NOTES_TOPIC, self.on_treatment_note)
        await self.queue.reconcile()
        if poll:
            self.queue.start_polling()
        self.log_session_action("started", {"clinic_id": self.clinic_id, "polling": poll})

    async def close(self) -> None:
        await self.queue.stop_polling()
        await super().close()

    # ==================== Views ====================

    @property
    def upcoming(self) -> List[AppointmentRecord]:
        return self.queue.upcoming

    @property
    def completed(self) -> List[AppointmentRecord]:
        return self.queue.completed

    @property
    def waiting(self) -> List[QueueItem]:
        return self.queue.waiting

    @property
    def now_serving(self) -> Optional[QueueItem]:
        return self.queue.now_serving

    # ==================== Actions ====================

    async def admit(self, appointment_id: str) -> Optional[QueueItem]:
        item = await self.queue.admit(appointment_id)
        if item is not None:
            self.log_session_action("admit", {"appointment_id": appointment_id, "queue_number": item.queue_number})
        return item

    def fast_track(self, appointment_id: str) -> bool:
        return self.queue.fast_track(appointment_id)

    def call_next(self) -> Optional[QueueItem]:
        return self.queue.call_next()

    async def mark_no_show(self, appointment_id: str) -> bool:
        return await self.queue.mark_no_show(appointment_id)

    async def mark_completed(self, appointment_id: str) -> bool:
        return await self.queue.mark_completed(appointment_id)

    def pause(self) -> None:
        self.queue.pause()
        self.log_session_action("paused")

    def resume(self) -> None:
        self.queue.resume()
        self.log_session_action("resumed")

    async def reconcile(self) -> bool:
        return await self.queue.reconcile()

    # ==================== Treatment notes ====================

    async def latest_note(self, appointment_id: str) -> Optional[TreatmentNote]:
        """
        Latest treatment note for an appointment, cached until the notes topic invalidates it.
        """
        if appointment_id in self._notes:
            return self._notes[appointment_id]
        try:
            note = await self.api.get_latest_treatment_note(appointment_id)
        except BACKEND_ERRORS as e:
            logger.error(f"Failed to load treatment note for {appointment_id}: {e}")
            self.notifier.error("Couldn't load treatment notes", "Please try again.")
            return None
        if not self.closed:
            self._notes[appointment_id] = note
        return note

    # ==================== Push handlers ====================

    def on_status_update(self, payload) -> None:
        try:
            update = StatusUpdate(**payload)
        except (TypeError, ValidationError, ValueError) as e:
            logger.error(f"Ignoring malformed status update: {e}")
            return
        if update.clinic_id and update.clinic_id != self.clinic_id:
            return
        logger.debug(f"Status push: {update.appointment_id} -> {update.status.value}")
        self.spawn(self.queue.reconcile())

    def on_slot_update(self, payload) -> None:
        try:
            update = SlotUpdate(**payload)
        except (TypeError, ValidationError, TimeFormatError) as e:
            logger.error(f"Ignoring malformed slot update: {e}")
            return
        if update.clinic_id and update.clinic_id != self.clinic_id:
            return
        self.spawn(self.queue.reconcile())

    def on_treatment_note(self, payload) -> None:
        appointment_id = None
        if isinstance(payload, dict):
            appointment_id = payload.get("appointmentId") or payload.get("appointment_id")
        if appointment_id is None:
            logger.error(f"Ignoring treatment note event without appointment id: {payload!r}")
            return
        self._notes.pop(str(appointment_id), None)
