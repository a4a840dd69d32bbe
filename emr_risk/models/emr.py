"""
Read-only mappings of the EMR tables the risk engine consumes.

These tables are owned and migrated by the EMR portal; the risk engine only
selects from them.
"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import Date, DateTime, Float, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from emr_risk.models.base import Base


class Patient(Base):
    """Registered patient."""

    __tablename__ = "patients"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    hospital_number: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    thai_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    date_of_birth: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    gender: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    weight: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    height: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    chronic_diseases: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<Patient(id='{self.id}', hn='{self.hospital_number}')>"


class VitalSign(Base):
    """Vital sign measurement."""

    __tablename__ = "vital_signs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    patient_id: Mapped[str] = mapped_column(
        ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True
    )
    systolic_bp: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    diastolic_bp: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    weight: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    height: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    bmi: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    body_fat_percentage: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    sleep_quality: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    stress_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    depression_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    measurement_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class LabResult(Base):
    """Laboratory result with a numeric value."""

    __tablename__ = "lab_results"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    patient_id: Mapped[str] = mapped_column(
        ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True
    )
    test_name: Mapped[str] = mapped_column(String(200), nullable=False)
    result_numeric: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    result_unit: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    result_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class HistoryRecord(Base):
    """Free-text history taking record."""

    __tablename__ = "history_records"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    patient_id: Mapped[str] = mapped_column(
        ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True
    )
    family_history: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    social_history: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    pregnancy_history: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    recorded_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class CriticalLabValue(Base):
    """Structured panel of metabolic and inflammatory markers."""

    __tablename__ = "critical_lab_values"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    patient_id: Mapped[str] = mapped_column(
        ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True
    )
    hba1c: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    fasting_insulin: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    c_peptide: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    triglycerides: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    hdl_cholesterol: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    crp: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    vitamin_d: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    test_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class DetailedNutrition(Base):
    """Dietitian intake assessment (daily averages)."""

    __tablename__ = "detailed_nutrition"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    patient_id: Mapped[str] = mapped_column(
        ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True
    )
    daily_calorie_intake: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    sugar_intake: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    sodium_intake: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    fiber_intake: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    assessment_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class DetailedExercise(Base):
    """Exercise habits assessment."""

    __tablename__ = "detailed_exercise"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    patient_id: Mapped[str] = mapped_column(
        ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True
    )
    exercise_frequency: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    exercise_intensity: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    walking_steps: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    assessment_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
