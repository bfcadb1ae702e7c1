"""
Push-driven updates: sessions wired to a fake broker socket, REST against the sandbox.
"""

import asyncio
import json
from datetime import date, datetime

import pytest

from clinicbook.app import ClinicApp
from clinicbook.config import APPOINTMENT_STATUS_TOPIC, SLOTS_TOPIC, Settings
from clinicbook.models.booking import CurrentUser, UserRole
from clinicbook.models.clinic import ClinicType

NOW = datetime(2025, 6, 9, 10, 0)
TUESDAY = date(2025, 6, 10)
STAFF = CurrentUser(user_id="s-1", role=UserRole.STAFF, clinic_id="gp-1")


async def settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


def subscription_id(socket, topic: str) -> str:
    frames = [f for f in socket.commands("SUBSCRIBE") if f.header("destination") == topic]
    return frames[-1].header("id")


def slot_payload(action: str, start_time: str = "09:00:00") -> str:
    return json.dumps(
        {
            "clinic_id": "gp-1",
            "doctor_id": "d-1",
            "booking_date": TUESDAY.isoformat(),
            "start_time": start_time,
            "end_time": "09:30:00",
            "action": action,
        }
    )


@pytest.fixture
async def pushed_app(transport, connector):
    settings = Settings(CLINIC_API_URL="http://test", CHANNEL_RECONNECT_DELAY=0)
    clinic = ClinicApp(settings, transport=transport, connector=connector, clock=lambda: NOW)
    await clinic.start()
    await clinic.channel.wait_connected(timeout=1)
    yield clinic
    await clinic.stop()


@pytest.fixture
async def booking(pushed_app):
    session = pushed_app.booking_session(CurrentUser(user_id="p-1"))
    await session.start()
    await session.select_clinic_type(ClinicType.GENERAL_PRACTICE)
    await session.select_clinic("gp-1")
    session.select_date(TUESDAY)
    await settle()
    return session


class TestChannelWiring:
    """Test how the app opens the push channel."""

    @pytest.mark.asyncio
    async def test_channel_url_from_api_url(self, pushed_app, connector):
        url, kwargs = connector.calls[0]
        assert url == "ws://test/ws/websocket"
        assert "v12.stomp" in kwargs["subprotocols"]

    @pytest.mark.asyncio
    async def test_session_close_unsubscribes(self, pushed_app, booking, connector):
        sub_id = subscription_id(connector.socket, SLOTS_TOPIC)
        await pushed_app.close_session(booking)
        await settle()
        assert sub_id in [f.header("id") for f in connector.socket.commands("UNSUBSCRIBE")]


class TestSlotPushes:
    """Test slot pushes applied to an open booking session."""

    @pytest.mark.asyncio
    async def test_removal_applied_without_refetch(self, booking, connector, transport):
        fetches = len(transport.sent("GET", "/api/timeslots"))
        assert booking.snapshot.contains_slot(TUESDAY, "09:00", "d-1")

        connector.socket.deliver(subscription_id(connector.socket, SLOTS_TOPIC), SLOTS_TOPIC, slot_payload("REMOVE"))
        await settle()

        assert not booking.snapshot.contains_slot(TUESDAY, "09:00", "d-1")
        assert booking.snapshot.contains_slot(TUESDAY, "09:00", "d-2")
        assert len(transport.sent("GET", "/api/timeslots")) == fetches

    @pytest.mark.asyncio
    async def test_repeated_removal_is_harmless(self, booking, connector):
        sub_id = subscription_id(connector.socket, SLOTS_TOPIC)
        connector.socket.deliver(sub_id, SLOTS_TOPIC, slot_payload("REMOVE"))
        await settle()
        snapshot = booking.snapshot
        connector.socket.deliver(sub_id, SLOTS_TOPIC, slot_payload("REMOVE"))
        await settle()
        assert booking.snapshot is snapshot

    @pytest.mark.asyncio
    async def test_release_triggers_refetch(self, booking, connector, transport):
        fetches = len(transport.sent("GET", "/api/timeslots"))
        connector.socket.deliver(subscription_id(connector.socket, SLOTS_TOPIC), SLOTS_TOPIC, slot_payload("ADD"))
        await settle()
        await booking.drain()
        assert len(transport.sent("GET", "/api/timeslots")) == fetches + 1

    @pytest.mark.asyncio
    async def test_selected_slot_kept_on_removal(self, booking, connector):
        option = next(o for o in booking.slot_options if o.doctor_id == "d-1" and o.window.start_time == "09:00")
        booking.select_slot(option)

        connector.socket.deliver(subscription_id(connector.socket, SLOTS_TOPIC), SLOTS_TOPIC, slot_payload("REMOVE"))
        await settle()

        assert booking.selection.window == option.window
        assert option not in booking.slot_options


class TestStatusPushes:
    """Test staff dashboard reconciliation on status pushes."""

    @pytest.mark.asyncio
    async def test_status_push_reconciles(self, pushed_app, connector, transport):
        staff = pushed_app.staff_session(STAFF)
        await staff.start(poll=False)
        await settle()
        before = len(transport.sent("GET", "/api/appointments/upcoming"))

        payload = json.dumps({"appointmentId": "a-1", "status": "CHECKED_IN", "clinicId": "gp-1"})
        connector.socket.deliver(
            subscription_id(connector.socket, APPOINTMENT_STATUS_TOPIC), APPOINTMENT_STATUS_TOPIC, payload
        )
        await settle()
        await staff.drain()

        assert len(transport.sent("GET", "/api/appointments/upcoming")) == before + 1
