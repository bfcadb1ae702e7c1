"""
Unit tests for backend responses that succeed at the HTTP level but carry an unusable body.
"""

from datetime import date

import httpx
import pytest

from clinicbook.config import MSG_GENERIC_FAILURE, Settings
from clinicbook.models.availability import AvailabilityQuery, TimeWindow
from clinicbook.models.booking import BookingOutcome, CurrentUser
from clinicbook.models.clinic import ClinicType
from clinicbook.models.selection import SlotSelection
from clinicbook.services.availability import AvailabilityService
from clinicbook.services.backend import ClinicApiClient, MalformedResponseError
from clinicbook.services.booking import BookingCoordinator
from clinicbook.services.directory import DirectoryService
from clinicbook.services.notifications import NotificationLevel, Notifier
from clinicbook.services.queue import QueueCoordinator

GATEWAY_PAGE = "<html><body>502 Bad Gateway</body></html>"


def html_backend(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, text=GATEWAY_PAGE, headers={"content-type": "text/html"})


def json_backend(body):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=body)

    return handler


def make_api(handler) -> ClinicApiClient:
    settings = Settings(CLINIC_API_URL="http://backend.test")
    return ClinicApiClient(settings, transport=httpx.MockTransport(handler))


class TestClientDecoding:
    """Test that the client reports unusable bodies as one error type."""

    @pytest.mark.asyncio
    async def test_html_body(self):
        api = make_api(html_backend)
        with pytest.raises(MalformedResponseError):
            await api.get_gp_clinics()

    @pytest.mark.asyncio
    async def test_object_where_list_expected(self):
        api = make_api(json_backend({"items": []}))
        with pytest.raises(MalformedResponseError):
            await api.get_doctors()

    @pytest.mark.asyncio
    async def test_list_of_wrong_items(self):
        api = make_api(json_backend(["d-1", "d-2"]))
        with pytest.raises(MalformedResponseError):
            await api.get_doctors()

    @pytest.mark.asyncio
    async def test_null_list_is_empty(self):
        api = make_api(json_backend(None))
        assert await api.get_doctors() == []


class TestServicesSurviveBadBodies:
    """Test that every service turns an unusable body into its normal failure result."""

    @pytest.mark.asyncio
    async def test_availability_fetch(self):
        notifier = Notifier()
        service = AvailabilityService(make_api(html_backend), notifier)
        snapshot = await service.fetch(AvailabilityQuery(clinic_id="gp-1"))
        assert snapshot is None
        assert notifier.last.level == NotificationLevel.ERROR
        assert notifier.last.title == "Couldn't load availability"

    @pytest.mark.asyncio
    async def test_directory_load(self):
        notifier = Notifier()
        directory = DirectoryService(make_api(html_backend), notifier)
        assert await directory.load() is False
        assert not directory.is_loaded
        assert notifier.last.level == NotificationLevel.ERROR

    @pytest.mark.asyncio
    async def test_booking_submit(self):
        selection = SlotSelection()
        selection.choose_clinic_type(ClinicType.GENERAL_PRACTICE)
        selection.choose_clinic("gp-1")
        selection.choose_date(date(2025, 6, 10))
        selection.choose_window(TimeWindow(start_time="09:00:00", end_time="09:30:00"), "d-1", "gp-1")

        coordinator = BookingCoordinator(make_api(html_backend), Notifier())
        result = await coordinator.book(CurrentUser(user_id="p-1"), selection)
        assert result.outcome == BookingOutcome.FAILED
        assert result.message == MSG_GENERIC_FAILURE
        assert selection.can_submit

    @pytest.mark.asyncio
    async def test_queue_reconcile(self):
        notifier = Notifier()
        queue = QueueCoordinator(make_api(json_backend({"unexpected": True})), notifier, "gp-1")
        assert await queue.reconcile() is False
        assert queue.upcoming == []
        assert notifier.last.title == "Couldn't refresh appointments"
