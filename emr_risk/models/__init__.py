"""Database models for the diabetes risk engine."""

from emr_risk.models.emr import (
    CriticalLabValue,
    DetailedExercise,
    DetailedNutrition,
    HistoryRecord,
    LabResult,
    Patient,
    VitalSign,
)
from emr_risk.models.risk_assessment import DiabetesRiskAssessmentRecord

__all__ = [
    "CriticalLabValue",
    "DetailedExercise",
    "DetailedNutrition",
    "DiabetesRiskAssessmentRecord",
    "HistoryRecord",
    "LabResult",
    "Patient",
    "VitalSign",
]
