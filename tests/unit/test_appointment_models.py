"""
Unit tests for appointment, status and treatment-note models.
"""

import pytest

from clinicbook.models.appointment import AppointmentRecord, AppointmentStatus, StatusUpdate, TreatmentNote


class TestAppointmentStatus:
    """Test status parsing and the transition table."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("CHECKED_IN", AppointmentStatus.CHECKED_IN),
            ("checked-in", AppointmentStatus.CHECKED_IN),
            ("Checked In", AppointmentStatus.CHECKED_IN),
            ("NO-SHOW", AppointmentStatus.NO_SHOW),
            ("completed", AppointmentStatus.COMPLETED),
        ],
    )
    def test_parse(self, value, expected):
        assert AppointmentStatus.parse(value) == expected

    def test_parse_unknown(self):
        with pytest.raises(ValueError):
            AppointmentStatus.parse("LOST")

    def test_transitions(self):
        scheduled = AppointmentStatus.SCHEDULED
        assert scheduled.can_transition_to(AppointmentStatus.CHECKED_IN)
        assert scheduled.can_transition_to(AppointmentStatus.NO_SHOW)
        assert not scheduled.can_transition_to(AppointmentStatus.COMPLETED)
        assert AppointmentStatus.CHECKED_IN.can_transition_to(AppointmentStatus.COMPLETED)
        assert AppointmentStatus.CHECKED_IN.can_transition_to(AppointmentStatus.NO_SHOW)

    def test_terminal_states_have_no_exits(self):
        for status in (AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW, AppointmentStatus.CANCELLED):
            assert status.is_terminal
            assert not any(status.can_transition_to(target) for target in AppointmentStatus)


class TestAppointmentRecord:
    """Test parsing of backend appointment payloads."""

    def test_backend_payload(self):
        record = AppointmentRecord(
            **{
                "appointment_id": 12,
                "patient_id": "p-1",
                "doctor_id": "d-1",
                "clinic_id": "gp-1",
                "booking_date": "2025-06-10",
                "start_time": "09:00:00",
                "end_time": "09:30:00",
                "status": "checked-in",
                "created_at": "2025-06-01T08:00:00",
            }
        )
        assert record.appointment_id == "12"
        assert record.start_time == "09:00"
        assert record.status == AppointmentStatus.CHECKED_IN

    def test_camel_case_identifier(self):
        record = AppointmentRecord(appointmentId="a-9", booking_date=[2025, 6, 10], start_time="9:00 AM")
        assert record.appointment_id == "a-9"
        assert record.start_time == "09:00"


class TestPushPayloads:
    """Test status and treatment-note push payloads."""

    def test_status_update(self):
        update = StatusUpdate(
            **{"appointmentId": 5, "status": "NO_SHOW", "clinicId": "gp-1", "patientId": "p-1", "doctorId": "d-1"}
        )
        assert update.appointment_id == "5"
        assert update.status == AppointmentStatus.NO_SHOW
        assert update.clinic_id == "gp-1"

    def test_status_update_snake_case(self):
        update = StatusUpdate(**{"appointment_id": "a-1", "status": "COMPLETED", "clinic_id": "gp-2"})
        assert update.appointment_id == "a-1"
        assert update.clinic_id == "gp-2"

    def test_treatment_note(self):
        note = TreatmentNote(
            **{
                "appointmentId": "a-1",
                "noteId": 3,
                "noteType": "TREATMENT_SUMMARY",
                "notes": "Rest for two days",
                "createdByName": "Dr. Tan",
                "createdAt": "2025-06-10T10:00:00",
            }
        )
        assert note.id == "3"
        assert note.created_by_name == "Dr. Tan"
