"""
Value types shared by the scoring model, the store and the dashboard.
"""

from dataclasses import dataclass, fields
from datetime import date, datetime
from enum import Enum
from typing import Optional, Tuple

from emr_risk.core.exceptions import InvalidInput


class RiskLevel(str, Enum):
    """Coarse diabetes risk category derived from the risk score."""

    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    VERY_HIGH = "very_high"


class UrgencyLevel(str, Enum):
    """Recommended response speed, ordered from least to most urgent."""

    ROUTINE = "routine"
    URGENT = "urgent"
    IMMEDIATE = "immediate"

    def escalate(self) -> "UrgencyLevel":
        order = list(UrgencyLevel)
        return order[min(order.index(self) + 1, len(order) - 1)]


SEX_VALUES = ("male", "female")
ACTIVITY_VALUES = ("low", "moderate", "high")

# Fields that must be strictly positive when present
_POSITIVE_FIELDS = ("weight_kg", "height_cm", "bmi")

# Fields that must not be negative when present
_NON_NEGATIVE_FIELDS = (
    "systolic_bp",
    "diastolic_bp",
    "fasting_glucose",
    "hba1c",
    "body_fat_percentage",
    "sleep_quality",
    "stress_score",
    "depression_score",
    "fasting_insulin",
    "c_peptide",
    "triglycerides",
    "hdl_cholesterol",
    "crp",
    "vitamin_d",
    "daily_calorie_intake",
    "sugar_intake",
    "sodium_intake",
    "fiber_intake",
    "exercise_frequency",
    "walking_steps",
)

MAX_AGE_YEARS = 130


@dataclass(frozen=True)
class HealthSignalSnapshot:
    """
    Demographic and clinical inputs for one assessment.

    Every clinical value is optional; the scoring model treats a missing value
    as contributing nothing. Snapshots are built per assessment and never
    mutated.
    """

    patient_id: str
    age: Optional[int] = None
    sex: Optional[str] = None

    # Anthropometrics
    weight_kg: Optional[float] = None
    height_cm: Optional[float] = None
    bmi: Optional[float] = None
    body_fat_percentage: Optional[float] = None

    # Vitals
    systolic_bp: Optional[float] = None
    diastolic_bp: Optional[float] = None

    # Glycaemic labs
    fasting_glucose: Optional[float] = None
    hba1c: Optional[float] = None
    glucose_collected_at: Optional[datetime] = None

    # History
    family_history_diabetes: bool = False
    family_history_hypertension: bool = False
    smoking: bool = False
    physical_activity: Optional[str] = None
    gestational_diabetes: bool = False
    polycystic_ovary_syndrome: bool = False

    # Chronic conditions
    hypertension: bool = False
    dyslipidemia: bool = False
    cardiovascular_disease: bool = False

    # Extended signals
    sleep_quality: Optional[float] = None
    stress_score: Optional[float] = None
    depression_score: Optional[float] = None
    fasting_insulin: Optional[float] = None
    c_peptide: Optional[float] = None
    triglycerides: Optional[float] = None
    hdl_cholesterol: Optional[float] = None
    crp: Optional[float] = None
    vitamin_d: Optional[float] = None
    daily_calorie_intake: Optional[float] = None
    sugar_intake: Optional[float] = None
    sodium_intake: Optional[float] = None
    fiber_intake: Optional[float] = None
    exercise_frequency: Optional[float] = None
    walking_steps: Optional[float] = None
    exercise_intensity: Optional[str] = None

    @property
    def effective_bmi(self) -> Optional[float]:
        """BMI as recorded, or derived from weight and height."""
        if self.bmi is not None:
            return self.bmi
        if self.weight_kg and self.height_cm:
            return round(self.weight_kg / (self.height_cm / 100) ** 2, 1)
        return None

    def value_of(self, name: str):
        """Look up a signal by name; ``bmi`` resolves to the effective BMI."""
        if name == "bmi":
            return self.effective_bmi
        return getattr(self, name)

    @classmethod
    def field_names(cls) -> Tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    def validate(self) -> None:
        """
        Check structural sanity of the snapshot.

        Raises:
            InvalidInput: If any present value is structurally impossible
        """
        if not self.patient_id or not str(self.patient_id).strip():
            raise InvalidInput("Snapshot has no patient id")

        if self.age is not None and not 0 <= self.age <= MAX_AGE_YEARS:
            raise InvalidInput(f"Age out of range: {self.age}", self.patient_id)

        if self.sex is not None and self.sex not in SEX_VALUES:
            raise InvalidInput(f"Unknown sex: {self.sex!r}", self.patient_id)

        for name in ("physical_activity", "exercise_intensity"):
            value = getattr(self, name)
            if value is not None and value not in ACTIVITY_VALUES:
                raise InvalidInput(f"Unknown {name}: {value!r}", self.patient_id)

        for name in _POSITIVE_FIELDS:
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise InvalidInput(f"{name} must be positive, got {value}", self.patient_id)

        for name in _NON_NEGATIVE_FIELDS:
            value = getattr(self, name)
            if value is not None and value < 0:
                raise InvalidInput(f"{name} must not be negative, got {value}", self.patient_id)


@dataclass(frozen=True)
class RiskAssessment:
    """Current diabetes risk assessment for one patient."""

    patient_id: str
    risk_score: int
    risk_level: RiskLevel
    urgency_level: UrgencyLevel
    contributing_factors: Tuple[str, ...]
    recommendations: Tuple[str, ...]
    next_screening_date: datetime
    assessed_at: datetime
    assessed_from_version: str

    def is_overdue(self, now: datetime) -> bool:
        """True once the recommended screening date has passed."""
        return self.next_screening_date < now


@dataclass(frozen=True)
class PatientRef:
    """Patient identity and demographics as supplied by the EMR."""

    id: str
    hospital_number: str = ""
    first_name: str = ""
    last_name: str = ""
    thai_name: Optional[str] = None
    gender: Optional[str] = None
    date_of_birth: Optional[date] = None

    def age(self, today: date) -> Optional[int]:
        return age_on(self.date_of_birth, today)

    def searchable_text(self) -> Tuple[str, ...]:
        values = (self.id, self.hospital_number, self.first_name, self.last_name, self.thai_name)
        return tuple(v for v in values if v)


def age_on(date_of_birth: Optional[date], today: date) -> Optional[int]:
    """Completed years between a birth date and ``today``."""
    if date_of_birth is None:
        return None
    years = today.year - date_of_birth.year
    if (today.month, today.day) < (date_of_birth.month, date_of_birth.day):
        years -= 1
    return years
