"""
Sandbox Clinic API Server.

A FastAPI in-memory implementation of the clinic backend: directory,
availability, appointments and treatment notes over REST, plus a STOMP
broker on a WebSocket endpoint that publishes slot, status and
treatment-note events. Used for local runs and integration tests.
"""

import asyncio
import itertools
import json
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Set, Tuple
from uuid import uuid4

from fastapi import FastAPI, Query, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, Field, field_validator

from clinicbook.config import (
    APPOINTMENT_STATUS_TOPIC,
    SLOTS_TOPIC,
    TREATMENT_NOTES_TOPIC,
    get_settings,
)
from clinicbook.models.appointment import AppointmentStatus
from clinicbook.models.clinic import normalize_specialty
from clinicbook.stomp import Frame, FrameError, message_frame, parse_frames
from clinicbook.timeutils import normalize_time

# ============================================================================
# Data Models
# ============================================================================


class GpClinicDto(BaseModel):
    """General-practice clinic as listed by the directory."""

    clinicId: str
    clinicName: str
    address: Optional[str] = None
    telephoneNum: Optional[str] = None


class SpecialistClinicDto(BaseModel):
    """Specialist clinic as listed by the directory."""

    ihpClinicId: str
    clinicName: str
    speciality: str
    address: Optional[str] = None


class DoctorDto(BaseModel):
    doctorId: str
    doctorName: str
    clinicId: str
    clinicName: Optional[str] = None
    clinicAddress: Optional[str] = None
    speciality: Optional[str] = None


class SlotBody(BaseModel):
    """Slot part of create and reschedule requests."""

    doctor_id: str
    clinic_id: str
    booking_date: date
    start_time: str
    end_time: str

    @field_validator("start_time", "end_time")
    @classmethod
    def to_hhmm(cls, v):
        return normalize_time(v)


class AppointmentCreate(SlotBody):
    patient_id: str
    patient_name: Optional[str] = None
    patient_phone: Optional[str] = None
    patient_email: Optional[str] = None


class AppointmentResponse(BaseModel):
    """Appointment as returned by the backend (times as HH:MM:SS)."""

    appointment_id: str
    patient_id: str
    doctor_id: str
    clinic_id: str
    booking_date: date
    start_time: str
    end_time: str
    status: str = AppointmentStatus.SCHEDULED.value
    patient_name: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class TreatmentNoteCreate(BaseModel):
    appointmentId: str
    noteType: str = "TREATMENT_SUMMARY"
    notes: str
    createdByName: Optional[str] = None


class TreatmentNoteResponse(TreatmentNoteCreate):
    noteId: str
    createdAt: datetime = Field(default_factory=datetime.now)


class SandboxError(Exception):
    """Error returned to the client as ``{"message": ...}``."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def _wire_time(hhmm: str) -> str:
    return f"{hhmm}:00"


# ============================================================================
# STOMP Broker
# ============================================================================


class StompBroker:
    """
    Minimal STOMP 1.2 broker for topic fan-out.

    Supports CONNECT/STOMP, SUBSCRIBE, UNSUBSCRIBE and DISCONNECT, with
    receipts. Messages are published by the REST handlers.
    """

    def __init__(self):
        self._connections: Dict[int, Tuple[WebSocket, Dict[str, str]]] = {}
        self._message_ids = itertools.count(1)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def subscriber_count(self, destination: str) -> int:
        return sum(
            1
            for _, subscriptions in self._connections.values()
            for topic in subscriptions.values()
            if topic == destination
        )

    async def serve(self, websocket: WebSocket) -> None:
        requested = websocket.scope.get("subprotocols") or []
        subprotocol = next((p for p in requested if p in ("v12.stomp", "v11.stomp")), None)
        await websocket.accept(subprotocol=subprotocol)
        subscriptions: Dict[str, str] = {}
        connected = False
        try:
            while True:
                data = await websocket.receive_text()
                try:
                    frames = parse_frames(data)
                except FrameError as e:
                    await self._send(websocket, Frame(command="ERROR", headers={"message": str(e)}))
                    await websocket.close()
                    return

                for frame in frames:
                    if frame.command in ("CONNECT", "STOMP"):
                        connected = True
                        self._connections[id(websocket)] = (websocket, subscriptions)
                        await self._send(
                            websocket,
                            Frame(command="CONNECTED", headers={"version": "1.2", "heart-beat": "0,0"}),
                        )
                    elif not connected:
                        await self._send(
                            websocket,
                            Frame(command="ERROR", headers={"message": "Not connected"}),
                        )
                        await websocket.close()
                        return
                    elif frame.command == "SUBSCRIBE":
                        subscriptions[frame.header("id", "")] = frame.header("destination", "")
                        logger.debug(f"Broker: subscribe {frame.header('destination')}")
                    elif frame.command == "UNSUBSCRIBE":
                        subscriptions.pop(frame.header("id", ""), None)
                    elif frame.command == "DISCONNECT":
                        await self._receipt(websocket, frame)
                        await websocket.close()
                        return
                    else:
                        await self._send(
                            websocket,
                            Frame(command="ERROR", headers={"message": f"Unsupported command {frame.command}"}),
                        )
                        continue
                    await self._receipt(websocket, frame)
        except WebSocketDisconnect:
            pass
        finally:
            self._connections.pop(id(websocket), None)

    async def publish(self, destination: str, payload: dict) -> int:
        """
        Send ``payload`` to every subscriber of ``destination``.

        Returns:
            Number of subscriptions the message was delivered to
        """
        body = json.dumps(payload, default=str)
        delivered = 0
        for websocket, subscriptions in list(self._connections.values()):
            for subscription_id, topic in list(subscriptions.items()):
                if topic != destination:
                    continue
                frame = message_frame(destination, subscription_id, str(next(self._message_ids)), body)
                try:
                    await self._send(websocket, frame)
                    delivered += 1
                except (WebSocketDisconnect, RuntimeError) as e:
                    logger.warning(f"Broker: dropping subscriber after send failure: {e}")
                    self._connections.pop(id(websocket), None)
                    break
        return delivered

    async def _receipt(self, websocket: WebSocket, frame: Frame) -> None:
        receipt = frame.header("receipt")
        if receipt:
            await self._send(websocket, Frame(command="RECEIPT", headers={"receipt-id": receipt}))

    @staticmethod
    async def _send(websocket: WebSocket, frame: Frame) -> None:
        await websocket.send_text(frame.encode())


# ============================================================================
# In-Memory Data Store
# ============================================================================

SlotKey = Tuple[str, date, str]


class ClinicStore:
    """
    In-memory clinic backend state.

    Slots are keyed by (doctor_id, date, start HH:MM); a booked slot stays
    in ``slots`` and is tracked in ``booked``.
    """

    def __init__(self):
        self.gp_clinics: List[GpClinicDto] = []
        self.specialist_clinics: List[SpecialistClinicDto] = []
        self.doctors: Dict[str, DoctorDto] = {}
        self.slots: Dict[SlotKey, str] = {}
        self.booked: Set[SlotKey] = set()
        self.appointments: Dict[str, AppointmentResponse] = {}
        self.notes: Dict[str, List[TreatmentNoteResponse]] = {}
        self._lock = asyncio.Lock()
        self._initialized = False

    def reset(self) -> None:
        self.gp_clinics.clear()
        self.specialist_clinics.clear()
        self.doctors.clear()
        self.slots.clear()
        self.booked.clear()
        self.appointments.clear()
        self.notes.clear()
        self._initialized = False

    # ==================== Seeding ====================

    def add_gp_clinic(self, clinic_id: str, name: str, address: Optional[str] = None) -> GpClinicDto:
        clinic = GpClinicDto(clinicId=clinic_id, clinicName=name, address=address)
        self.gp_clinics.append(clinic)
        return clinic

    def add_specialist_clinic(
        self, clinic_id: str, name: str, speciality: str, address: Optional[str] = None
    ) -> SpecialistClinicDto:
        clinic = SpecialistClinicDto(ihpClinicId=clinic_id, clinicName=name, speciality=speciality, address=address)
        self.specialist_clinics.append(clinic)
        return clinic

    def add_doctor(self, doctor_id: str, name: str, clinic_id: str, speciality: str) -> DoctorDto:
        clinic = self._clinic_info(clinic_id)
        doctor = DoctorDto(
            doctorId=doctor_id,
            doctorName=name,
            clinicId=clinic_id,
            clinicName=clinic[0] if clinic else None,
            clinicAddress=clinic[1] if clinic else None,
            speciality=speciality,
        )
        self.doctors[doctor_id] = doctor
        return doctor

    def add_slot(self, doctor_id: str, day: date, start_time: str, end_time: str) -> SlotKey:
        key = (doctor_id, day, normalize_time(start_time))
        self.slots[key] = normalize_time(end_time)
        return key

    def add_appointment(
        self,
        patient_id: str,
        doctor_id: str,
        day: date,
        start_time: str,
        end_time: str,
        status: AppointmentStatus = AppointmentStatus.SCHEDULED,
        patient_name: Optional[str] = None,
    ) -> AppointmentResponse:
        """Insert an appointment directly, marking its slot as booked."""
        key = self.add_slot(doctor_id, day, start_time, end_time)
        self.booked.add(key)
        record = AppointmentResponse(
            appointment_id=str(uuid4()),
            patient_id=patient_id,
            doctor_id=doctor_id,
            clinic_id=self.doctors[doctor_id].clinicId,
            booking_date=day,
            start_time=_wire_time(key[2]),
            end_time=_wire_time(self.slots[key]),
            status=status.value,
            patient_name=patient_name,
        )
        self.appointments[record.appointment_id] = record
        return record

    def initialize_sample_data(self, today: Optional[date] = None, days: int = 14) -> None:
        """Populate clinics, doctors and weekday slots for the coming ``days``."""
        if self._initialized:
            return
        today = today or date.today()

        self.add_gp_clinic("gp-1", "Bedok Family Clinic", "Blk 123 Bedok North Ave 1 #01-01")
        self.add_gp_clinic("gp-2", "Tampines Medical Centre", "201 Tampines Street 21 #02-10")
        self.add_specialist_clinic("sp-1", "Heart Specialists", "Cardiology", "1 Orchard Road #05-01")
        self.add_specialist_clinic("sp-2", "Skin &amp; Laser Centre", "Dermatology", "3 Novena Drive")

        self.add_doctor("d-1", "Dr. Tan Wei Ming", "gp-1", "General Practice")
        self.add_doctor("d-2", "Dr. Lim Hui Ling", "gp-1", "General Practice")
        self.add_doctor("d-3", "Dr. Goh Kok Keong", "gp-2", "General Practice")
        self.add_doctor("d-4", "Dr. Ng Siew Lan", "sp-1", "Cardiology")
        self.add_doctor("d-5", "Dr. Chua Boon Hock", "sp-2", "Dermatology")

        starts = ["09:00", "09:30", "10:00", "10:30", "11:00", "14:00", "14:30", "15:00", "15:30", "16:00"]
        for offset in range(days + 1):
            day = today + timedelta(days=offset)
            if day.weekday() >= 5:
                continue
            for doctor_id in self.doctors:
                for start in starts:
                    hour, minute = map(int, start.split(":"))
                    end_minutes = hour * 60 + minute + 30
                    self.add_slot(doctor_id, day, start, f"{end_minutes // 60:02d}:{end_minutes % 60:02d}")

        self._initialized = True
        logger.info(f"Initialized {len(self.slots)} sandbox slots for {len(self.doctors)} doctors")

    def _clinic_info(self, clinic_id: str) -> Optional[Tuple[str, Optional[str]]]:
        for clinic in self.gp_clinics:
            if clinic.clinicId == clinic_id:
                return clinic.clinicName, clinic.address
        for clinic in self.specialist_clinics:
            if clinic.ihpClinicId == clinic_id:
                return clinic.clinicName, clinic.address
        return None

    # ==================== Availability ====================

    def date_slots(
        self,
        clinic_id: Optional[str],
        speciality: Optional[str],
        doctor_ids: List[str],
    ) -> List[dict]:
        """Open windows grouped by (date, doctor)."""
        wanted = normalize_specialty(speciality)
        grouped: Dict[Tuple[date, str], List[dict]] = {}
        for key in sorted(self.slots, key=lambda k: (k[1], k[0], k[2])):
            if key in self.booked:
                continue
            doctor = self.doctors.get(key[0])
            if doctor is None:
                continue
            if clinic_id and doctor.clinicId != clinic_id:
                continue
            if doctor_ids and doctor.doctorId not in doctor_ids:
                continue
            if wanted and normalize_specialty(doctor.speciality) != wanted:
                continue
            grouped.setdefault((key[1], key[0]), []).append(
                {"startTime": _wire_time(key[2]), "endTime": _wire_time(self.slots[key])}
            )

        results = []
        for (day, doctor_id), windows in grouped.items():
            doctor = self.doctors[doctor_id]
            results.append(
                {
                    "date": day.isoformat(),
                    "doctorId": doctor_id,
                    "doctorName": doctor.doctorName,
                    "clinicId": doctor.clinicId,
                    "clinicName": doctor.clinicName,
                    "timeSlots": windows,
                }
            )
        return results

    # ==================== Appointments ====================

    async def book(self, body: SlotBody) -> SlotKey:
        """Mark the requested slot booked; raises SandboxError(409) when it is not free."""
        key = (body.doctor_id, body.booking_date, body.start_time)
        doctor = self.doctors.get(body.doctor_id)
        if doctor is None or doctor.clinicId != body.clinic_id:
            raise SandboxError(status.HTTP_400_BAD_REQUEST, "Doctor does not work at this clinic")
        if key not in self.slots or key in self.booked:
            raise SandboxError(status.HTTP_409_CONFLICT, "Time slot is no longer available")
        self.booked.add(key)
        return key

    async def create(self, body: AppointmentCreate) -> AppointmentResponse:
        async with self._lock:
            key = await self.book(body)
            record = AppointmentResponse(
                appointment_id=str(uuid4()),
                patient_id=body.patient_id,
                doctor_id=body.doctor_id,
                clinic_id=body.clinic_id,
                booking_date=body.booking_date,
                start_time=_wire_time(key[2]),
                end_time=_wire_time(self.slots[key]),
                patient_name=body.patient_name,
            )
            self.appointments[record.appointment_id] = record
            return record

    async def reschedule(self, appointment_id: str, body: SlotBody) -> Tuple[AppointmentResponse, SlotKey]:
        """Move an appointment; returns the updated record and the released slot."""
        async with self._lock:
            record = self.get(appointment_id)
            old_key = (record.doctor_id, record.booking_date, normalize_time(record.start_time))
            key = await self.book(body)
            self.booked.discard(old_key)
            updated = record.model_copy(
                update={
                    "doctor_id": body.doctor_id,
                    "clinic_id": body.clinic_id,
                    "booking_date": body.booking_date,
                    "start_time": _wire_time(key[2]),
                    "end_time": _wire_time(self.slots[key]),
                    "updated_at": datetime.now(),
                }
            )
            self.appointments[appointment_id] = updated
            return updated, old_key

    def get(self, appointment_id: str) -> AppointmentResponse:
        record = self.appointments.get(appointment_id)
        if record is None:
            raise SandboxError(status.HTTP_404_NOT_FOUND, f"Appointment {appointment_id} not found")
        return record

    def set_status(self, appointment_id: str, new_status: AppointmentStatus) -> AppointmentResponse:
        record = self.get(appointment_id)
        updated = record.model_copy(update={"status": new_status.value, "updated_at": datetime.now()})
        self.appointments[appointment_id] = updated
        return updated

    def upcoming(self, clinic_id: str, today: Optional[date] = None) -> List[AppointmentResponse]:
        today = today or date.today()
        records = [
            r for r in self.appointments.values() if r.clinic_id == clinic_id and r.booking_date >= today
        ]
        return sorted(records, key=lambda r: (r.booking_date, r.start_time))


# Global instances
store = ClinicStore()
broker = StompBroker()


def slot_event(clinic_id: str, doctor_id: str, key: SlotKey, action: str) -> dict:
    return {
        "clinic_id": clinic_id,
        "doctor_id": doctor_id,
        "booking_date": key[1].isoformat(),
        "start_time": _wire_time(key[2]),
        "end_time": _wire_time(store.slots[key]),
        "action": action,
    }


def status_event(record: AppointmentResponse) -> dict:
    return {
        "appointmentId": record.appointment_id,
        "status": record.status,
        "clinicId": record.clinic_id,
        "patientId": record.patient_id,
        "doctorId": record.doctor_id,
    }


# ============================================================================
# FastAPI Application
# ============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting sandbox clinic API")
    store.initialize_sample_data()
    yield
    logger.info("Shutting down sandbox clinic API")


app = FastAPI(
    title="Clinic Booking Sandbox API",
    description="In-memory clinic backend for local development and tests",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SandboxError)
async def sandbox_error_handler(request, exc: SandboxError):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


# ============================================================================
# API Endpoints
# ============================================================================


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "timestamp": datetime.now().isoformat()}


@app.get("/api/clinics/gp", response_model=List[GpClinicDto])
async def list_gp_clinics(limit: int = Query(default=100, ge=1)):
    return store.gp_clinics[:limit]


@app.get("/api/clinics/specialist", response_model=List[SpecialistClinicDto])
async def list_specialist_clinics(limit: int = Query(default=100, ge=1)):
    return store.specialist_clinics[:limit]


@app.get("/api/doctors", response_model=List[DoctorDto])
async def list_doctors():
    return list(store.doctors.values())


@app.get("/api/timeslots/available/dateslots")
async def available_date_slots(
    clinicId: Optional[str] = Query(default=None, description="Restrict to one clinic"),
    speciality: Optional[str] = Query(default=None, description="Doctor speciality"),
    doctorId: Optional[List[str]] = Query(default=None, description="Restrict to these doctors"),
):
    """
    Open windows per date and doctor.

    "General Practice" matches GP doctors; any other speciality matches
    doctors of that speciality.
    """
    return store.date_slots(clinicId or None, speciality, doctorId or [])


@app.post("/api/appointments", status_code=status.HTTP_201_CREATED, response_model=AppointmentResponse)
async def create_appointment(body: AppointmentCreate):
    record = await store.create(body)
    key = (record.doctor_id, record.booking_date, normalize_time(record.start_time))
    await broker.publish(SLOTS_TOPIC, slot_event(record.clinic_id, record.doctor_id, key, "REMOVE"))
    logger.info(f"Sandbox: booked {record.appointment_id} for {record.patient_id}")
    return record


async def _reschedule(appointment_id: str, body: SlotBody) -> AppointmentResponse:
    previous = store.get(appointment_id)
    record, released = await store.reschedule(appointment_id, body)
    new_key = (record.doctor_id, record.booking_date, normalize_time(record.start_time))
    await broker.publish(SLOTS_TOPIC, slot_event(previous.clinic_id, previous.doctor_id, released, "ADD"))
    await broker.publish(SLOTS_TOPIC, slot_event(record.clinic_id, record.doctor_id, new_key, "REMOVE"))
    return record


@app.patch("/api/appointments/{appointment_id}/reschedule", response_model=AppointmentResponse)
async def reschedule_appointment(appointment_id: str, body: SlotBody):
    return await _reschedule(appointment_id, body)


@app.patch("/api/appointments/{appointment_id}/reschedule/staff", response_model=AppointmentResponse)
async def reschedule_appointment_staff(appointment_id: str, body: SlotBody):
    return await _reschedule(appointment_id, body)


@app.patch("/api/appointments/{appointment_id}/updateStatus/{new_status}", response_model=AppointmentResponse)
async def update_status(appointment_id: str, new_status: str):
    try:
        parsed = AppointmentStatus.parse(new_status)
    except ValueError:
        raise SandboxError(status.HTTP_400_BAD_REQUEST, f"Unknown status {new_status}") from None
    record = store.set_status(appointment_id, parsed)
    await broker.publish(APPOINTMENT_STATUS_TOPIC, status_event(record))
    return record


@app.get("/api/appointments/upcoming", response_model=List[AppointmentResponse])
async def upcoming_appointments(clinicId: str = Query(..., description="Clinic to list")):
    return store.upcoming(clinicId)


@app.get("/api/appointments", response_model=List[AppointmentResponse])
async def list_appointments():
    return sorted(store.appointments.values(), key=lambda r: (r.booking_date, r.start_time))


@app.post(
    "/api/treatment-notes",
    status_code=status.HTTP_201_CREATED,
    response_model=TreatmentNoteResponse,
)
async def create_treatment_note(body: TreatmentNoteCreate):
    store.get(body.appointmentId)
    note = TreatmentNoteResponse(noteId=str(uuid4()), **body.model_dump())
    store.notes.setdefault(body.appointmentId, []).append(note)
    await broker.publish(TREATMENT_NOTES_TOPIC, note.model_dump(mode="json"))
    return note


@app.get("/api/treatment-notes/appointment/{appointment_id}/latest", response_model=TreatmentNoteResponse)
async def latest_treatment_note(appointment_id: str):
    notes = store.notes.get(appointment_id)
    if not notes:
        raise SandboxError(status.HTTP_404_NOT_FOUND, "No treatment notes for this appointment")
    return notes[-1]


@app.websocket("/ws/websocket")
async def stomp_endpoint(websocket: WebSocket):
    await broker.serve(websocket)


# ============================================================================
# Run Server
# ============================================================================


def run_server(host: Optional[str] = None, port: Optional[int] = None):
    """Run the sandbox API server (single process: state lives in memory)."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "clinicbook.api.sandbox_server:app",
        host=host or settings.sandbox_host,
        port=port or settings.sandbox_port,
        reload=False,
        workers=1,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run_server()
