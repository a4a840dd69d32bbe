"""
Patient directory lookups against the EMR.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from emr_risk.core.exceptions import SignalUnavailable
from emr_risk.core.scoring.types import PatientRef
from emr_risk.models.emr import Patient


def patient_to_ref(patient: Patient) -> PatientRef:
    return PatientRef(
        id=patient.id,
        hospital_number=patient.hospital_number,
        first_name=patient.first_name,
        last_name=patient.last_name,
        thai_name=patient.thai_name,
        gender=patient.gender,
        date_of_birth=patient.date_of_birth,
    )


class PatientDirectory(ABC):
    """Read-only patient identity lookup."""

    @abstractmethod
    async def list_patients(self, limit: Optional[int] = None) -> List[PatientRef]:
        """Patients in dashboard order (newest registrations first)."""

    @abstractmethod
    async def get_patient(self, patient_id: str) -> Optional[PatientRef]:
        """A single patient, or None if unknown."""


class StaticPatientDirectory(PatientDirectory):
    """Directory over a fixed list, for tests and offline batch runs."""

    def __init__(self, patients: List[PatientRef]):
        self.patients = list(patients)

    async def list_patients(self, limit: Optional[int] = None) -> List[PatientRef]:
        return self.patients[:limit] if limit is not None else list(self.patients)

    async def get_patient(self, patient_id: str) -> Optional[PatientRef]:
        return next((p for p in self.patients if p.id == patient_id), None)


class SqlPatientDirectory(PatientDirectory):
    """Patient directory backed by the EMR ``patients`` table."""

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    async def list_patients(self, limit: Optional[int] = None) -> List[PatientRef]:
        stmt = select(Patient).order_by(Patient.created_at.desc(), Patient.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            async with self.session_maker() as session:
                patients = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as e:
            raise SignalUnavailable(f"Patient directory read failed: {e}") from e
        return [patient_to_ref(patient) for patient in patients]

    async def get_patient(self, patient_id: str) -> Optional[PatientRef]:
        try:
            async with self.session_maker() as session:
                patient = await session.get(Patient, patient_id)
        except SQLAlchemyError as e:
            raise SignalUnavailable(f"Patient directory read failed: {e}", patient_id) from e
        return patient_to_ref(patient) if patient else None
