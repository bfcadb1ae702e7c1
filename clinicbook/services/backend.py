"""
Clinic API client - REST contract of the booking backend.

This client handles all communication with the clinic backend, using a
pooled async HTTP client. It raises httpx errors after logging them, and
``MalformedResponseError`` for successful responses whose body is not the
expected JSON; callers decide how a failure is surfaced to the user.
"""

from typing import Any, List, Optional, Type, TypeVar

import httpx
from loguru import logger
from pydantic import BaseModel

from clinicbook.config import Settings, get_settings
from clinicbook.models.appointment import AppointmentRecord, AppointmentStatus, TreatmentNote
from clinicbook.models.availability import AvailabilityQuery, DateAvailability
from clinicbook.models.booking import AppointmentRequest, RescheduleRequest
from clinicbook.models.clinic import Clinic, ClinicType, DoctorRef

ModelT = TypeVar("ModelT", bound=BaseModel)


class MalformedResponseError(Exception):
    """A successful response whose body could not be read as the expected payload."""


# Every failure a backend call can end in
BACKEND_ERRORS = (httpx.HTTPError, MalformedResponseError)


def error_message(error: httpx.HTTPStatusError) -> Optional[str]:
    """The ``message`` field of a JSON error body, if there is one."""
    try:
        data = error.response.json()
    except ValueError:
        return None
    if isinstance(data, dict):
        message = data.get("message") or data.get("detail")
        if isinstance(message, str) and message.strip():
            return message.strip()
    return None


def _decode(response: httpx.Response, expected: type) -> Any:
    """Parse the JSON body and check its top-level type."""
    try:
        data = response.json()
    except ValueError as e:
        raise MalformedResponseError(f"{response.url.path} returned a non-JSON body") from e
    if data is None and expected is list:
        return []
    if not isinstance(data, expected):
        raise MalformedResponseError(
            f"{response.url.path} returned {type(data).__name__}, expected {expected.__name__}"
        )
    return data


def _build(model: Type[ModelT], data: Any, **extra: Any) -> ModelT:
    try:
        return model(**data, **extra)
    except (TypeError, ValueError) as e:
        raise MalformedResponseError(f"Unexpected {model.__name__} payload: {e}") from e


def _build_all(model: Type[ModelT], response: httpx.Response, **extra: Any) -> List[ModelT]:
    return [_build(model, item, **extra) for item in _decode(response, list)]


class ClinicApiClient:
    """
    Async client for the clinic backend REST API.

    Args:
        settings: Settings to read the base URL and timeouts from
        transport: Optional httpx transport, used to run against an in-process app
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client with connection pooling."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.settings.api_url,
                timeout=httpx.Timeout(self.settings.api_timeout),
                limits=httpx.Limits(
                    max_connections=self.settings.connection_pool_size,
                    max_keepalive_connections=self.settings.connection_pool_size // 2,
                ),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        client = await self._get_client()
        try:
            response = await client.request(method, url, **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error on {method} {url}: {e.response.status_code}")
            raise
        except httpx.RequestError as e:
            logger.error(f"Request error on {method} {url}: {e}")
            raise

    # ==================== Directory ====================

    async def get_gp_clinics(self, limit: Optional[int] = None) -> List[Clinic]:
        """
        Fetch general-practice clinics.

        Args:
            limit: Maximum number of clinics (defaults to the directory limit)

        Returns:
            List of clinics typed as General Practice
        """
        params = {"limit": limit or self.settings.directory_limit}
        response = await self._request("GET", "/api/clinics/gp", params=params)
        clinics = _build_all(Clinic, response, clinic_type=ClinicType.GENERAL_PRACTICE)
        logger.info(f"Loaded {len(clinics)} GP clinics")
        return clinics

    async def get_specialist_clinics(self, limit: Optional[int] = None) -> List[Clinic]:
        """
        Fetch specialist clinics.

        Args:
            limit: Maximum number of clinics (defaults to the directory limit)

        Returns:
            List of clinics typed as Specialist Clinic
        """
        params = {"limit": limit or self.settings.directory_limit}
        response = await self._request("GET", "/api/clinics/specialist", params=params)
        clinics = _build_all(Clinic, response, clinic_type=ClinicType.SPECIALIST)
        logger.info(f"Loaded {len(clinics)} specialist clinics")
        return clinics

    async def get_doctors(self) -> List[DoctorRef]:
        response = await self._request("GET", "/api/doctors")
        doctors = _build_all(DoctorRef, response)
        logger.info(f"Loaded {len(doctors)} doctors")
        return doctors

    # ==================== Availability ====================

    async def get_available_date_slots(self, query: AvailabilityQuery) -> List[DateAvailability]:
        """
        Fetch open windows per date and doctor.

        Args:
            query: Clinic, speciality and doctor filter

        Returns:
            Raw availability entries as delivered by the backend
        """
        response = await self._request(
            "GET", "/api/timeslots/available/dateslots", params=query.to_params()
        )
        entries = _build_all(DateAvailability, response)
        logger.info(
            f"Found {len(entries)} availability entries for clinic={query.clinic_id or '-'} "
            f"speciality={query.speciality!r} doctors={len(query.doctor_ids)}"
        )
        return entries

    # ==================== Appointments ====================

    async def create_appointment(self, request: AppointmentRequest) -> AppointmentRecord:
        """
        Create an appointment.

        Args:
            request: Patient, slot and optional walk-in contact details

        Returns:
            The record created by the backend

        Raises:
            httpx.HTTPStatusError: 400/409 when the slot is no longer free
            MalformedResponseError: The backend answered with an unreadable record
        """
        response = await self._request("POST", "/api/appointments", json=request.to_payload())
        record = _build(AppointmentRecord, _decode(response, dict))
        logger.info(
            f"Created appointment {record.appointment_id} on {record.booking_date} "
            f"at {record.start_time} with doctor {record.doctor_id}"
        )
        return record

    async def reschedule_appointment(
        self,
        appointment_id: str,
        request: RescheduleRequest,
        as_staff: bool = False,
    ) -> AppointmentRecord:
        """
        Move an existing appointment to another slot.

        Args:
            appointment_id: Appointment to move
            request: New doctor, clinic, date and window
            as_staff: Use the staff route instead of the patient one

        Returns:
            The updated record
        """
        url = f"/api/appointments/{appointment_id}/reschedule"
        if as_staff:
            url += "/staff"
        response = await self._request("PATCH", url, json=request.model_dump())
        record = _build(AppointmentRecord, _decode(response, dict))
        logger.info(
            f"Rescheduled appointment {appointment_id} to {record.booking_date} {record.start_time}"
        )
        return record

    async def update_status(
        self, appointment_id: str, status: AppointmentStatus
    ) -> Optional[AppointmentRecord]:
        """
        Set an appointment's status.

        Returns:
            The updated record when the backend returns one
        """
        response = await self._request(
            "PATCH", f"/api/appointments/{appointment_id}/updateStatus/{status.value}"
        )
        logger.info(f"Appointment {appointment_id} -> {status.value}")
        if not response.content:
            return None
        data = _decode(response, object)
        return _build(AppointmentRecord, data) if isinstance(data, dict) else None

    async def get_upcoming_appointments(self, clinic_id: str) -> List[AppointmentRecord]:
        response = await self._request(
            "GET", "/api/appointments/upcoming", params={"clinicId": clinic_id}
        )
        return _build_all(AppointmentRecord, response)

    async def get_appointments(self) -> List[AppointmentRecord]:
        response = await self._request("GET", "/api/appointments")
        return _build_all(AppointmentRecord, response)

    # ==================== Treatment notes ====================

    async def get_latest_treatment_note(self, appointment_id: str) -> Optional[TreatmentNote]:
        """
        Fetch the most recent treatment note of an appointment.

        Returns:
            The note, or None if the appointment has none yet
        """
        client = await self._get_client()
        url = f"/api/treatment-notes/appointment/{appointment_id}/latest"
        try:
            response = await client.get(url)
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return _build(TreatmentNote, _decode(response, dict))
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error fetching treatment note for {appointment_id}: {e}")
            raise
        except httpx.RequestError as e:
            logger.error(f"Request error fetching treatment note for {appointment_id}: {e}")
            raise
