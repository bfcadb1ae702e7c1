"""
Application object - owns the services shared by every session.

``ClinicApp`` builds the REST client, the push channel and the notifier
once; sessions are created from it and borrow those services. Stopping
the app closes open sessions first and then tears down the channel and
the HTTP client.
"""

from typing import List, Optional

import httpx
from loguru import logger

from clinicbook.config import Settings, configure_logging, get_settings
from clinicbook.models.appointment import AppointmentRecord
from clinicbook.models.booking import BookingMode, CurrentUser
from clinicbook.services.availability import AvailabilityService, Clock
from clinicbook.services.backend import ClinicApiClient
from clinicbook.services.booking import BookingCoordinator
from clinicbook.services.channel import Connector, RealtimeChannel
from clinicbook.services.directory import DirectoryService
from clinicbook.services.notifications import Notifier, NotificationSink
from clinicbook.sessions.base import BaseSession
from clinicbook.sessions.booking import BookingSession
from clinicbook.sessions.staff import StaffSession


class ClinicApp:
    """
    Composition root of the client.

    Args:
        settings: Settings to use (loaded from the environment by default)
        transport: httpx transport for the REST client, e.g. an ASGI app in tests
        connector: Socket opener for the push channel
        enable_push: Create a push channel at all
        notification_sink: Receives every notification
        clock: Wall-clock source for availability filtering
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        connector: Optional[Connector] = None,
        enable_push: bool = True,
        notification_sink: Optional[NotificationSink] = None,
        clock: Optional[Clock] = None,
    ):
        self.settings = settings or get_settings()
        self.notifier = Notifier(sink=notification_sink)
        self.api = ClinicApiClient(self.settings, transport=transport)
        self.channel: Optional[RealtimeChannel] = None
        if enable_push:
            self.channel = RealtimeChannel(
                self.settings.channel_url,
                reconnect_delay=self.settings.channel_reconnect_delay,
                connector=connector,
            )
        self.directory = DirectoryService(self.api, self.notifier)
        self.availability = AvailabilityService(
            self.api,
            self.notifier,
            horizon_days=self.settings.booking_horizon_days,
            clock=clock,
        )
        self.booking = BookingCoordinator(self.api, self.notifier)
        self._sessions: List[BaseSession] = []
        self.started = False

    async def start(self, log_level: Optional[str] = None) -> "ClinicApp":
        if self.started:
            return self
        if log_level:
            configure_logging(log_level)
        if self.channel is not None:
            self.channel.connect()
        self.started = True
        logger.info(f"Clinic client started against {self.settings.api_url}")
        return self

    async def stop(self) -> None:
        sessions, self._sessions = self._sessions, []
        for session in sessions:
            await session.close()
        if self.channel is not None:
            await self.channel.disconnect()
        await self.api.close()
        self.started = False
        logger.info("Clinic client stopped")

    async def __aenter__(self) -> "ClinicApp":
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    # ==================== Sessions ====================

    def booking_session(
        self,
        user: Optional[CurrentUser] = None,
        mode: BookingMode = BookingMode.NEW,
        appointment: Optional[AppointmentRecord] = None,
    ) -> BookingSession:
        """Create a booking session; call its ``start`` to load data."""
        session = BookingSession(
            self.channel,
            self.notifier,
            self.directory,
            self.availability,
            self.booking,
            user=user,
            mode=mode,
            appointment=appointment,
            settings=self.settings,
        )
        self._sessions.append(session)
        return session

    def staff_session(self, user: CurrentUser) -> StaffSession:
        session = StaffSession(self.channel, self.notifier, self.api, user, settings=self.settings)
        self._sessions.append(session)
        return session

    async def close_session(self, session: BaseSession) -> None:
        await session.close()
        if session in self._sessions:
            self._sessions.remove(session)
