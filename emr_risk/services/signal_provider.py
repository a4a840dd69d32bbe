"""
Health signal provider.

Builds HealthSignalSnapshots from the EMR patient, vital sign, lab result,
history, critical lab panel, nutrition and exercise tables. The EMR stores
much of the history as free text (English and Thai), so flags are extracted
with keyword tables.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timezone
from typing import Callable, Iterable, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from emr_risk.core.exceptions import PatientNotFound, SignalUnavailable
from emr_risk.core.logging import setup_logging
from emr_risk.core.scoring.types import ACTIVITY_VALUES, HealthSignalSnapshot, age_on
from emr_risk.models.base import as_utc
from emr_risk.models.emr import (
    CriticalLabValue,
    DetailedExercise,
    DetailedNutrition,
    HistoryRecord,
    LabResult,
    Patient,
    VitalSign,
)

logger = setup_logging("signal_provider")

# Lab test name fragments, matched case-insensitively
GLUCOSE_TEST_KEYWORDS = ("glucose", "fbs", "sugar")
HBA1C_TEST_KEYWORDS = ("hba1c", "a1c")

FAMILY_DIABETES_KEYWORDS = ("diabetes", "เบาหวาน", "น้ำตาล")
FAMILY_HYPERTENSION_KEYWORDS = ("hypertension", "ความดัน", "bp")
SMOKING_KEYWORDS = ("smoke", "smoking", "สูบ")
NON_SMOKING_KEYWORDS = ("non-smoker", "never smoke", "quit smoking", "ไม่สูบ")
EXERCISE_KEYWORDS = ("exercise", "ออกกำลังกาย")
DAILY_KEYWORDS = ("daily", "every day", "ทุกวัน")
WEEKLY_KEYWORDS = ("week", "สัปดาห์")
GESTATIONAL_DIABETES_KEYWORDS = ("gestational diabetes", "gdm")
PCOS_KEYWORDS = ("pcos", "polycystic", "ถุงน้ำ")

HYPERTENSION_CONDITIONS = ("hypertension", "ความดันโลหิตสูง")
DYSLIPIDEMIA_CONDITIONS = ("dyslipidemia", "hyperlipidemia", "ไขมันในเลือดสูง")
CARDIOVASCULAR_CONDITIONS = ("cardiovascular", "coronary", "heart disease", "โรคหัวใจ")

_GENDER_ALIASES = {
    "m": "male",
    "male": "male",
    "ชาย": "male",
    "f": "female",
    "female": "female",
    "หญิง": "female",
}


def contains_any(text: Optional[str], keywords: Iterable[str]) -> bool:
    if not text:
        return False
    lowered = text.lower()
    return any(keyword.lower() in lowered for keyword in keywords)


def normalize_gender(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return _GENDER_ALIASES.get(value.strip().lower())


def extract_smoking(social_history: Optional[str]) -> bool:
    if contains_any(social_history, NON_SMOKING_KEYWORDS):
        return False
    return contains_any(social_history, SMOKING_KEYWORDS)


def extract_physical_activity(social_history: Optional[str]) -> Optional[str]:
    """
    Classify activity from social history text.

    Returns:
        "high" for daily exercise, "moderate" for weekly exercise, "low" when
        exercise is not mentioned, None when there is no history at all
    """
    if not social_history:
        return None
    if contains_any(social_history, EXERCISE_KEYWORDS):
        if contains_any(social_history, DAILY_KEYWORDS):
            return "high"
        if contains_any(social_history, WEEKLY_KEYWORDS):
            return "moderate"
    return "low"


def extract_gestational_diabetes(pregnancy_history: Optional[str]) -> bool:
    if contains_any(pregnancy_history, GESTATIONAL_DIABETES_KEYWORDS):
        return True
    # Thai records describe it as "diabetes during pregnancy"
    return contains_any(pregnancy_history, ("เบาหวาน",)) and contains_any(
        pregnancy_history, ("ตั้งครรภ์",)
    )


def latest_lab_value(results: List[LabResult], keywords: Iterable[str]) -> Optional[LabResult]:
    """Most recent result whose test name matches one of the keywords."""
    for result in sorted(results, key=lambda r: r.result_date, reverse=True):
        if result.result_numeric is not None and contains_any(result.test_name, keywords):
            return result
    return None


def normalize_intensity(value: Optional[str]) -> Optional[str]:
    """Map free-form exercise intensity onto low, moderate or high; unknown values are dropped."""
    if not value:
        return None
    value = value.strip().lower()
    return value if value in ACTIVITY_VALUES else None


class HealthSignalProvider(ABC):
    """Source of health signals for a patient."""

    @abstractmethod
    async def fetch(self, patient_id: str) -> HealthSignalSnapshot:
        """
        Build a fresh snapshot for the patient.

        Raises:
            PatientNotFound: If the patient does not exist
            SignalUnavailable: If the signals cannot be read
        """


class SqlHealthSignalProvider(HealthSignalProvider):
    """Reads health signals from the EMR database."""

    def __init__(
        self,
        session_maker: async_sessionmaker,
        today: Optional[Callable[[], date]] = None,
        lab_lookback: int = 20,
    ):
        """
        Initialize the provider.

        Args:
            session_maker: Async session factory bound to the EMR database
            today: Clock used for age calculation
            lab_lookback: Number of recent glycaemic lab results to consider
        """
        self.session_maker = session_maker
        self.today = today or (lambda: datetime.now(timezone.utc).date())
        self.lab_lookback = lab_lookback

    @staticmethod
    async def _latest(session, model, patient_id: str, order_column):
        return (
            await session.execute(
                select(model)
                .where(model.patient_id == patient_id)
                .order_by(order_column.desc())
                .limit(1)
            )
        ).scalars().first()

    async def fetch(self, patient_id: str) -> HealthSignalSnapshot:
        try:
            async with self.session_maker() as session:
                patient = await session.get(Patient, patient_id)
                if patient is None:
                    raise PatientNotFound(f"Patient {patient_id} not found", patient_id)

                vitals = await self._latest(
                    session, VitalSign, patient_id, VitalSign.measurement_time
                )

                keyword_filters = [
                    LabResult.test_name.ilike(f"%{keyword}%")
                    for keyword in GLUCOSE_TEST_KEYWORDS + HBA1C_TEST_KEYWORDS
                ]
                labs = (
                    await session.execute(
                        select(LabResult)
                        .where(LabResult.patient_id == patient_id, or_(*keyword_filters))
                        .order_by(LabResult.result_date.desc())
                        .limit(self.lab_lookback)
                    )
                ).scalars().all()

                history = await self._latest(
                    session, HistoryRecord, patient_id, HistoryRecord.recorded_time
                )
                critical_labs = await self._latest(
                    session, CriticalLabValue, patient_id, CriticalLabValue.test_date
                )
                nutrition = await self._latest(
                    session, DetailedNutrition, patient_id, DetailedNutrition.assessment_date
                )
                exercise = await self._latest(
                    session, DetailedExercise, patient_id, DetailedExercise.assessment_date
                )
        except SQLAlchemyError as e:
            logger.warning(f"Failed to read health signals for patient {patient_id}: {e}")
            raise SignalUnavailable(f"EMR read failed: {e}", patient_id) from e

        return self.build_snapshot(
            patient,
            vitals,
            list(labs),
            history,
            critical_labs=critical_labs,
            nutrition=nutrition,
            exercise=exercise,
        )

    def build_snapshot(
        self,
        patient: Patient,
        vitals: Optional[VitalSign],
        labs: List[LabResult],
        history: Optional[HistoryRecord],
        critical_labs: Optional[CriticalLabValue] = None,
        nutrition: Optional[DetailedNutrition] = None,
        exercise: Optional[DetailedExercise] = None,
    ) -> HealthSignalSnapshot:
        """Combine EMR rows into a snapshot; absent rows leave fields unset."""
        # HbA1c tests often contain "glucose" in their name, so match HbA1c first
        hba1c = latest_lab_value(labs, HBA1C_TEST_KEYWORDS)
        glucose_labs = [lab for lab in labs if not contains_any(lab.test_name, HBA1C_TEST_KEYWORDS)]
        glucose = latest_lab_value(glucose_labs, GLUCOSE_TEST_KEYWORDS)

        weight = (vitals.weight if vitals else None) or patient.weight
        height = (vitals.height if vitals else None) or patient.height
        family = history.family_history if history else None
        social = history.social_history if history else None
        pregnancy = history.pregnancy_history if history else None

        def vital(name):
            return getattr(vitals, name) if vitals else None

        def critical(name):
            return getattr(critical_labs, name) if critical_labs else None

        def intake(name):
            return getattr(nutrition, name) if nutrition else None

        return HealthSignalSnapshot(
            patient_id=patient.id,
            age=age_on(patient.date_of_birth, self.today()),
            sex=normalize_gender(patient.gender),
            weight_kg=weight or None,
            height_cm=height or None,
            bmi=vital("bmi") or None,
            body_fat_percentage=vital("body_fat_percentage"),
            systolic_bp=vital("systolic_bp"),
            diastolic_bp=vital("diastolic_bp"),
            fasting_glucose=glucose.result_numeric if glucose else None,
            # Ordered lab results take precedence over the structured panel
            hba1c=hba1c.result_numeric if hba1c else critical("hba1c"),
            glucose_collected_at=as_utc(glucose.result_date) if glucose else None,
            family_history_diabetes=contains_any(family, FAMILY_DIABETES_KEYWORDS),
            family_history_hypertension=contains_any(family, FAMILY_HYPERTENSION_KEYWORDS),
            smoking=extract_smoking(social),
            physical_activity=extract_physical_activity(social),
            gestational_diabetes=extract_gestational_diabetes(pregnancy),
            polycystic_ovary_syndrome=contains_any(pregnancy, PCOS_KEYWORDS),
            hypertension=contains_any(patient.chronic_diseases, HYPERTENSION_CONDITIONS),
            dyslipidemia=contains_any(patient.chronic_diseases, DYSLIPIDEMIA_CONDITIONS),
            cardiovascular_disease=contains_any(patient.chronic_diseases, CARDIOVASCULAR_CONDITIONS),
            sleep_quality=vital("sleep_quality"),
            stress_score=vital("stress_score"),
            depression_score=vital("depression_score"),
            fasting_insulin=critical("fasting_insulin"),
            c_peptide=critical("c_peptide"),
            triglycerides=critical("triglycerides"),
            hdl_cholesterol=critical("hdl_cholesterol"),
            crp=critical("crp"),
            vitamin_d=critical("vitamin_d"),
            daily_calorie_intake=intake("daily_calorie_intake"),
            sugar_intake=intake("sugar_intake"),
            sodium_intake=intake("sodium_intake"),
            fiber_intake=intake("fiber_intake"),
            exercise_frequency=exercise.exercise_frequency if exercise else None,
            walking_steps=exercise.walking_steps if exercise else None,
            exercise_intensity=normalize_intensity(exercise.exercise_intensity if exercise else None),
        )
