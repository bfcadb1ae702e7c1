"""
Directory Service - clinics, doctors and the specialty list.
"""

import asyncio
from typing import List, Optional

from loguru import logger

from clinicbook.models.clinic import Clinic, ClinicFilter, ClinicType, DoctorRef, normalize_specialty
from clinicbook.models.selection import eligible_doctors
from clinicbook.services.backend import BACKEND_ERRORS, ClinicApiClient
from clinicbook.services.notifications import Notifier


def specialty_options(clinics: List[Clinic]) -> List[str]:
    """Distinct normalized specialties of the given clinics, sorted."""
    return sorted({normalize_specialty(c.speciality) for c in clinics if normalize_specialty(c.speciality)})


class DirectoryService:
    """
    Cached view of the clinic and doctor directory.

    The directory is loaded once per session; ``load(force=True)`` refreshes it.
    """

    def __init__(self, api: ClinicApiClient, notifier: Notifier):
        self._api = api
        self._notifier = notifier
        self.gp_clinics: List[Clinic] = []
        self.specialist_clinics: List[Clinic] = []
        self.doctors: List[DoctorRef] = []
        self._loaded = False

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    async def load(self, force: bool = False) -> bool:
        """
        Fetch clinics and doctors.

        Args:
            force: Reload even if the directory is already cached

        Returns:
            True if the directory is available afterwards
        """
        if self._loaded and not force:
            return True
        try:
            gp, specialist, doctors = await asyncio.gather(
                self._api.get_gp_clinics(),
                self._api.get_specialist_clinics(),
                self._api.get_doctors(),
            )
        except BACKEND_ERRORS as e:
            logger.error(f"Failed to load clinic directory: {e}")
            self._notifier.error("Couldn't load clinics/doctors", "Please try again later.")
            return self._loaded

        self.gp_clinics, self.specialist_clinics, self.doctors = gp, specialist, doctors
        self._loaded = True
        return True

    @property
    def specialties(self) -> List[str]:
        return specialty_options(self.specialist_clinics)

    def clinics_for(self, clinic_type: Optional[ClinicType], specialty: Optional[str] = None) -> List[Clinic]:
        """
        Clinics selectable for a clinic type and, for specialists, a specialty.

        Specialist clinics are only listed once a specialty is chosen.
        """
        if clinic_type == ClinicType.GENERAL_PRACTICE:
            return list(self.gp_clinics)
        if clinic_type == ClinicType.SPECIALIST and specialty:
            clinic_filter = ClinicFilter(clinic_type=clinic_type, specialty=specialty)
            return [c for c in self.specialist_clinics if clinic_filter.accepts_clinic(c)]
        return []

    def doctors_for(self, clinic_filter: Optional[ClinicFilter]) -> List[DoctorRef]:
        return eligible_doctors(self.doctors, clinic_filter)

    def find_clinic(self, clinic_id: Optional[str]) -> Optional[Clinic]:
        if not clinic_id:
            return None
        for clinic in self.gp_clinics + self.specialist_clinics:
            if clinic.clinic_id == clinic_id:
                return clinic
        return None

    def find_doctor(self, doctor_id: Optional[str]) -> Optional[DoctorRef]:
        for doctor in self.doctors:
            if doctor.doctor_id == doctor_id:
                return doctor
        return None

    def clinic_doctor_ids(self, clinic_id: str) -> List[str]:
        """Ids of every doctor working at ``clinic_id``."""
        return [d.doctor_id for d in self.doctors if d.clinic_id == clinic_id]
