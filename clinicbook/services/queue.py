"""
Queue Service - the clinic's waiting list and appointment status changes.

The waiting list is local to one staff session. Status changes go to the
backend first and touch the local list only once the backend accepts
them. The authoritative appointment list is re-fetched on every push event
and on a fixed polling interval, so the views converge even with push
disabled.
"""

import asyncio
from typing import Dict, List, Optional, Set

from loguru import logger

from clinicbook.models.appointment import AppointmentRecord, AppointmentStatus, QueueItem
from clinicbook.services.backend import BACKEND_ERRORS, ClinicApiClient
from clinicbook.services.notifications import Notifier


class QueueCoordinator:
    """
    Waiting list and status transitions for one clinic.

    Args:
        api: Backend client
        notifier: Receives failure notifications
        clinic_id: Clinic whose appointments are managed
        poll_interval: Seconds between reconciliation passes while polling
    """

    def __init__(
        self,
        api: ClinicApiClient,
        notifier: Notifier,
        clinic_id: str,
        poll_interval: float = 15.0,
    ):
        self._api = api
        self._notifier = notifier
        self.clinic_id = clinic_id
        self.poll_interval = poll_interval

        self.waiting: List[QueueItem] = []
        self.now_serving: Optional[QueueItem] = None
        self.paused = False
        self.upcoming: List[AppointmentRecord] = []
        self.completed: List[AppointmentRecord] = []

        self._records: Dict[str, AppointmentRecord] = {}
        self._issued = 0
        self._in_flight: Set[str] = set()
        self._lock = asyncio.Lock()
        self._dirty = False
        self._healthy = True
        self._poller: Optional[asyncio.Task] = None

    # ==================== Queries ====================

    def record(self, appointment_id: str) -> Optional[AppointmentRecord]:
        return self._records.get(appointment_id)

    def position(self, appointment_id: str) -> Optional[int]:
        for index, item in enumerate(self.waiting):
            if item.appointment_id == appointment_id:
                return index
        return None

    def is_busy(self, appointment_id: str) -> bool:
        """True while a status change for this appointment is awaiting the backend."""
        return appointment_id in self._in_flight

    @property
    def labels(self) -> List[str]:
        return [item.label for item in self.waiting]

    # ==================== Status transitions ====================

    async def admit(self, appointment_id: str) -> Optional[QueueItem]:
        """
        Check a patient in and append them to the waiting list.

        Args:
            appointment_id: Appointment being checked in

        Returns:
            The new queue item, or None if the check-in was refused or failed
        """
        if self.position(appointment_id) is not None:
            logger.warning(f"Appointment {appointment_id} is already in the queue")
            return None
        if not await self._change_status(appointment_id, AppointmentStatus.CHECKED_IN, "check in patient"):
            return None

        self._issued += 1
        record = self._records.get(appointment_id)
        item = QueueItem(
            appointment_id=appointment_id,
            queue_number=self._issued,
            patient_name=record.patient_name if record else None,
        )
        self.waiting.append(item)
        logger.info(f"Admitted appointment {appointment_id} as #{item.queue_number}")
        return item

    def fast_track(self, appointment_id: str) -> bool:
        """Move a waiting item to the front; its number does not change."""
        index = self.position(appointment_id)
        if index is None:
            return False
        item = self.waiting.pop(index).model_copy(update={"is_fast_track": True})
        self.waiting.insert(0, item)
        logger.info(f"Fast-tracked #{item.queue_number} ({appointment_id})")
        return True

    def call_next(self) -> Optional[QueueItem]:
        """Take the item at the front of the list as now serving."""
        if self.paused:
            logger.info("Queue is paused; not calling the next patient")
            return None
        if not self.waiting:
            return None
        self.now_serving = self.waiting.pop(0)
        logger.info(f"Now serving #{self.now_serving.queue_number}")
        return self.now_serving

    async def mark_no_show(self, appointment_id: str) -> bool:
        if not await self._change_status(appointment_id, AppointmentStatus.NO_SHOW, "mark no-show"):
            return False
        self._drop(appointment_id)
        return True

    async def mark_completed(self, appointment_id: str) -> bool:
        if not await self._change_status(appointment_id, AppointmentStatus.COMPLETED, "complete appointment"):
            return False
        self._drop(appointment_id)
        return True

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False

    async def _change_status(self, appointment_id: str, target: AppointmentStatus, action: str) -> bool:
        if appointment_id in self._in_flight:
            logger.warning(f"Status change already in progress for {appointment_id}")
            return False
        record = self._records.get(appointment_id)
        if record is not None and not record.status.can_transition_to(target):
            logger.warning(f"Cannot move {appointment_id} from {record.status.value} to {target.value}")
            self._notifier.warning(f"Cannot {action}", f"Appointment is {record.status.value}.")
            return False

        self._in_flight.add(appointment_id)
        try:
            updated = await self._api.update_status(appointment_id, target)
        except BACKEND_ERRORS as e:
            logger.error(f"Failed to {action} for {appointment_id}: {e}")
            self._notifier.error(f"Couldn't {action}", "Please try again.")
            return False
        finally:
            self._in_flight.discard(appointment_id)

        if updated is None and record is not None:
            updated = record.model_copy(update={"status": target})
        if updated is not None:
            self._records[appointment_id] = updated
            self._derive_views()
        return True

    def _drop(self, appointment_id: str) -> None:
        self.waiting = [item for item in self.waiting if item.appointment_id != appointment_id]
        if self.now_serving is not None and self.now_serving.appointment_id == appointment_id:
            self.now_serving = None

    # ==================== Reconciliation ====================

    async def reconcile(self) -> bool:
        """
        Re-fetch the clinic's appointments and re-derive the views.

        Calls made while a pass is running are folded into one more pass.

        Returns:
            False if the latest fetch failed
        """
        self._dirty = True
        if self._lock.locked():
            return True
        async with self._lock:
            while self._dirty:
                self._dirty = False
                try:
                    records = await self._api.get_upcoming_appointments(self.clinic_id)
                except BACKEND_ERRORS as e:
                    logger.error(f"Failed to refresh appointments for clinic {self.clinic_id}: {e}")
                    if self._healthy:
                        self._notifier.error("Couldn't refresh appointments", "Retrying automatically.")
                    self._healthy = False
                    return False
                self._healthy = True
                self._apply(records)
        return True

    def _apply(self, records: List[AppointmentRecord]) -> None:
        self._records = {r.appointment_id: r for r in records}
        self._derive_views()

        # Items closed elsewhere leave the waiting list
        before = len(self.waiting)
        self.waiting = [
            item
            for item in self.waiting
            if item.appointment_id not in self._records
            or not self._records[item.appointment_id].status.is_terminal
        ]
        if len(self.waiting) != before:
            logger.info(f"Reconcile removed {before - len(self.waiting)} closed item(s) from the queue")

    def _derive_views(self) -> None:
        records = sorted(self._records.values(), key=lambda r: r.sort_key)
        self.upcoming = [
            r for r in records if r.status in (AppointmentStatus.SCHEDULED, AppointmentStatus.CHECKED_IN)
        ]
        self.completed = [r for r in records if r.status == AppointmentStatus.COMPLETED]

    # ==================== Polling ====================

    def start_polling(self) -> asyncio.Task:
        if self._poller is None or self._poller.done():
            self._poller = asyncio.get_running_loop().create_task(self._poll())
        return self._poller

    async def stop_polling(self) -> None:
        poller, self._poller = self._poller, None
        if poller is not None:
            poller.cancel()
            await asyncio.gather(poller, return_exceptions=True)

    async def _poll(self) -> None:
        while True:
            try:
                await self.reconcile()
            except Exception as e:
                logger.error(f"Appointment poll for clinic {self.clinic_id} failed: {e}")
            await asyncio.sleep(self.poll_interval)
