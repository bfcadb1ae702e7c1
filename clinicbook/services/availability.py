"""
Availability Service - fetches open windows and derives the booking calendar.
"""

from datetime import datetime
from typing import Callable, Optional

from loguru import logger

from clinicbook.models.availability import AvailabilityQuery, AvailabilitySnapshot
from clinicbook.services.backend import BACKEND_ERRORS, ClinicApiClient
from clinicbook.services.notifications import Notifier

Clock = Callable[[], datetime]


class AvailabilityService:
    """
    Turns availability queries into calendar snapshots.

    Args:
        api: Backend client
        notifier: Receives the failure notification
        horizon_days: Calendar length after today
        clock: Source of the current wall-clock time
    """

    def __init__(
        self,
        api: ClinicApiClient,
        notifier: Notifier,
        horizon_days: int = 56,
        clock: Optional[Clock] = None,
    ):
        self._api = api
        self._notifier = notifier
        self.horizon_days = horizon_days
        self._clock = clock or datetime.now

    def now(self) -> datetime:
        return self._clock()

    async def fetch(self, query: Optional[AvailabilityQuery]) -> Optional[AvailabilitySnapshot]:
        """
        Fetch availability for ``query``.

        Args:
            query: Query to run; None means the selection is too broad and nothing is fetched

        Returns:
            A new snapshot, or None if nothing was fetched or the fetch failed
        """
        if query is None:
            return None

        try:
            entries = await self._api.get_available_date_slots(query)
        except BACKEND_ERRORS as e:
            logger.error(f"Failed to load availability: {e}")
            self._notifier.error("Couldn't load availability", "Please adjust your filters or try again.")
            return None

        snapshot = AvailabilitySnapshot.build(entries, self.now(), self.horizon_days)
        logger.debug(
            f"Availability: {len(snapshot.available_dates)} open dates, "
            f"{len(snapshot.unavailable_dates)} closed"
        )
        return snapshot
