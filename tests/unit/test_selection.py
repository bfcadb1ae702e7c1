"""
Unit tests for the progressive slot selection.
"""

from datetime import date

import pytest

from clinicbook.config import (
    MSG_SELECT_CLINIC,
    MSG_SELECT_CLINIC_TYPE,
    MSG_SELECT_DATE,
    MSG_SELECT_SLOT,
    MSG_SELECT_SPECIALTY,
    MSG_SELECT_VALID_SLOT,
)
from clinicbook.models.appointment import AppointmentRecord
from clinicbook.models.availability import TimeWindow
from clinicbook.models.clinic import ClinicType, DoctorRef
from clinicbook.models.selection import SELECTION_ORDER, SelectionStage, SlotSelection

WINDOW = TimeWindow(start_time="09:00", end_time="09:30")
DAY = date(2025, 6, 10)


def full_specialist_selection() -> SlotSelection:
    selection = SlotSelection()
    selection.choose_clinic_type(ClinicType.SPECIALIST)
    selection.choose_specialty("CARDIOLOGY")
    selection.choose_clinic("sp-1")
    selection.choose_doctors(["d-4"])
    selection.choose_date(DAY)
    selection.choose_window(WINDOW, "d-4", "sp-1")
    return selection


class TestCascadingReset:
    """Setting a field clears every field after it."""

    @pytest.mark.parametrize("index", range(len(SELECTION_ORDER)))
    def test_reassigning_clears_downstream(self, index):
        selection = full_specialist_selection()
        field = SELECTION_ORDER[index]
        before = {name: getattr(selection, name) for name in SELECTION_ORDER}

        selection.assign(field, before[field])

        for name in SELECTION_ORDER[:index + 1]:
            assert getattr(selection, name) == before[name]
        for name in SELECTION_ORDER[index + 1:]:
            assert not getattr(selection, name)

    def test_changing_clinic_drops_doctor_date_and_window(self):
        selection = full_specialist_selection()
        selection.choose_clinic("sp-2")
        assert selection.clinic_type == ClinicType.SPECIALIST
        assert selection.specialty == "CARDIOLOGY"
        assert selection.doctor_ids == set()
        assert selection.date is None
        assert selection.window is None
        assert selection.chosen_doctor_id is None

    def test_specialty_rejected_for_general_practice(self):
        selection = SlotSelection()
        selection.choose_clinic_type(ClinicType.GENERAL_PRACTICE)
        with pytest.raises(ValueError):
            selection.choose_specialty("CARDIOLOGY")

    def test_unknown_field(self):
        with pytest.raises(ValueError):
            SlotSelection().assign("colour", "red")

    def test_prune_ineligible_doctors(self):
        """Doctors that no longer match the filter are dropped."""
        selection = SlotSelection()
        selection.choose_clinic_type(ClinicType.GENERAL_PRACTICE)
        selection.choose_doctors(["d-1", "d-9"])
        selection.choose_date(DAY)
        doctors = [DoctorRef(doctorId="d-1", doctorName="A", clinicId="gp-1", speciality="General Practice")]

        assert selection.prune_doctors(doctors) is True
        assert selection.doctor_ids == {"d-1"}
        assert selection.date is None
        assert selection.prune_doctors(doctors) is False


class TestReadiness:
    """Test stage tracking and validation messages."""

    def test_messages_in_order(self):
        selection = SlotSelection()
        assert selection.validation_error() == MSG_SELECT_CLINIC_TYPE
        selection.choose_clinic_type(ClinicType.SPECIALIST)
        assert selection.validation_error() == MSG_SELECT_SPECIALTY
        selection.choose_specialty("CARDIOLOGY")
        assert selection.validation_error() == MSG_SELECT_CLINIC
        selection.choose_clinic("sp-1")
        assert selection.validation_error() == MSG_SELECT_DATE
        selection.choose_date(DAY)
        assert selection.validation_error() == MSG_SELECT_SLOT

    def test_window_without_doctor_is_not_ready(self):
        """Several doctors and no chosen doctor cannot be resolved."""
        selection = SlotSelection()
        selection.choose_clinic_type(ClinicType.GENERAL_PRACTICE)
        selection.choose_clinic("gp-1")
        selection.choose_doctors(["d-1", "d-2"])
        selection.choose_date(DAY)
        selection.choose_window(WINDOW)
        assert selection.validation_error() == MSG_SELECT_VALID_SLOT
        assert not selection.is_ready

    def test_single_doctor_resolves(self):
        selection = SlotSelection()
        selection.choose_clinic_type(ClinicType.GENERAL_PRACTICE)
        selection.choose_clinic("gp-1")
        selection.choose_doctors(["d-1"])
        selection.choose_date(DAY)
        selection.choose_window(WINDOW)
        assert selection.resolved_doctor_id == "d-1"
        assert selection.stage == SelectionStage.READY

    def test_rejection_blocks_until_new_choice(self):
        selection = full_specialist_selection()
        selection.mark_rejected()
        assert selection.is_ready
        assert not selection.can_submit
        assert selection.window == WINDOW

        selection.choose_window(TimeWindow(start_time="10:00", end_time="10:30"), "d-4", "sp-1")
        assert selection.can_submit

    def test_reset(self):
        selection = full_specialist_selection()
        selection.reset()
        assert selection.is_empty
        assert selection.chosen_clinic_id is None


class TestAvailabilityQueryGuard:
    """Queries are only built once the selection is specific enough."""

    def test_nothing_before_clinic_type(self):
        assert SlotSelection().availability_query is None

    def test_specialist_needs_specialty(self):
        selection = SlotSelection()
        selection.choose_clinic_type(ClinicType.SPECIALIST)
        assert selection.availability_query is None
        selection.choose_specialty("CARDIOLOGY")
        assert selection.availability_query.speciality == "CARDIOLOGY"

    def test_general_practice_literal(self):
        selection = SlotSelection()
        selection.choose_clinic_type(ClinicType.GENERAL_PRACTICE)
        selection.choose_doctors(["d-2", "d-1"])
        query = selection.availability_query
        assert query.speciality == "General Practice"
        assert query.doctor_ids == ["d-1", "d-2"]


class TestFromAppointment:
    """Test reschedule prefill."""

    def test_prefill(self):
        record = AppointmentRecord(
            appointment_id="a-1",
            patient_id="p-1",
            doctor_id="d-1",
            clinic_id="gp-1",
            booking_date="2025-06-10",
            start_time="09:00:00",
            end_time="09:30:00",
        )
        selection = SlotSelection.from_appointment(record, ClinicType.GENERAL_PRACTICE, "ignored")
        assert selection.specialty is None
        assert selection.clinic_id == "gp-1"
        assert selection.doctor_ids == {"d-1"}
        assert selection.date == DAY
        assert selection.window == WINDOW
        assert selection.is_ready
