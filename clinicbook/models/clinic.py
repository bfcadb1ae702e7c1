"""
Clinic and doctor directory models.
"""

import html
import re
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from clinicbook.config import (
    GENERAL_PRACTICE,
    GENERAL_PRACTICE_MARKER,
    GENERAL_PRACTICE_SPECIALITY,
    SPECIALIST_CLINIC,
)


class ClinicType(str, Enum):
    """Kind of clinic a booking is made against."""

    GENERAL_PRACTICE = GENERAL_PRACTICE
    SPECIALIST = SPECIALIST_CLINIC


def normalize_specialty(value: Optional[str]) -> str:
    """
    Normalize a specialty label for comparison and display.

    Decodes HTML entities, replaces non-breaking spaces, collapses
    whitespace and upper-cases the result.
    """
    if not value:
        return ""
    text = html.unescape(value).replace("\u00a0", " ")
    return re.sub(r"\s+", " ", text).strip().upper()


class Clinic(BaseModel):
    """
    A clinic from the general-practice or specialist directory.

    The GP directory identifies clinics by ``clinicId`` while the specialist
    directory uses ``ihpClinicId``; both are exposed as ``clinic_id``.
    """

    clinic_id: str = Field(description="Clinic identifier")
    clinic_name: str = Field(alias="clinicName", description="Clinic display name")
    address: Optional[str] = Field(default=None, description="Street address")
    telephone: Optional[str] = Field(default=None, alias="telephoneNum")
    speciality: Optional[str] = Field(default=None, description="Specialty for specialist clinics")
    clinic_type: ClinicType = Field(default=ClinicType.GENERAL_PRACTICE)

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def pick_identifier(cls, data):
        if isinstance(data, dict) and "clinic_id" not in data:
            data = dict(data)
            data["clinic_id"] = data.get("clinicId") or data.get("ihpClinicId")
        return data

    @field_validator("clinic_id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return str(v).strip() if v is not None else v

    @property
    def display_name(self) -> str:
        """Clinic name followed by the address up to any unit marker."""
        if not self.clinic_name or not self.address:
            return ""
        trimmed_address = self.address.split("#")[0].strip()
        return f"{self.clinic_name}, {trimmed_address}"


class DoctorRef(BaseModel):
    """
    A doctor as listed by the directory endpoint.
    """

    doctor_id: str = Field(alias="doctorId")
    doctor_name: str = Field(alias="doctorName")
    clinic_id: Optional[str] = Field(default=None, alias="clinicId")
    clinic_name: Optional[str] = Field(default=None, alias="clinicName")
    clinic_address: Optional[str] = Field(default=None, alias="clinicAddress")
    speciality: Optional[str] = Field(default=None)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("doctor_id", "clinic_id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return str(v).strip() if v is not None else v

    @property
    def is_general_practice(self) -> bool:
        return GENERAL_PRACTICE_MARKER in normalize_specialty(self.speciality)

    def matches(self, clinic_filter: "ClinicFilter") -> bool:
        """Check whether this doctor can be chosen under ``clinic_filter``."""
        if clinic_filter.clinic_type == ClinicType.GENERAL_PRACTICE:
            matches = self.is_general_practice
        elif clinic_filter.specialty:
            matches = normalize_specialty(self.speciality) == normalize_specialty(
                clinic_filter.specialty
            )
        else:
            matches = not self.is_general_practice

        if clinic_filter.clinic_id:
            return matches and self.clinic_id == clinic_filter.clinic_id
        return matches


class ClinicFilter(BaseModel):
    """
    Clinic-level part of a slot search.

    ``specialty`` is only meaningful for specialist clinics.
    """

    clinic_type: ClinicType
    specialty: Optional[str] = None
    clinic_id: Optional[str] = None

    @model_validator(mode="after")
    def check_specialty(self) -> "ClinicFilter":
        if self.specialty and self.clinic_type != ClinicType.SPECIALIST:
            raise ValueError("specialty can only be set for specialist clinics")
        return self

    @property
    def is_queryable(self) -> bool:
        """Specialist searches need a specialty before they are worth running."""
        if self.clinic_type == ClinicType.SPECIALIST:
            return bool(self.specialty)
        return True

    @property
    def speciality_key(self) -> str:
        """Speciality value sent to the availability endpoint."""
        if self.clinic_type == ClinicType.GENERAL_PRACTICE:
            return GENERAL_PRACTICE_SPECIALITY
        return self.specialty or ""

    def accepts_clinic(self, clinic: Clinic) -> bool:
        """Check that ``clinic`` is consistent with this filter's type and specialty."""
        if clinic.clinic_type != self.clinic_type:
            return False
        if self.clinic_type == ClinicType.SPECIALIST and self.specialty:
            return normalize_specialty(clinic.speciality) == normalize_specialty(self.specialty)
        return True
