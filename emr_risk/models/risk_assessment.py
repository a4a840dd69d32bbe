"""Diabetes risk assessment model storing current and superseded assessments."""

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from emr_risk.models.base import Base, TimestampMixin


class DiabetesRiskAssessmentRecord(Base, TimestampMixin):
    """
    One computed diabetes risk assessment.

    Attributes:
        id: Unique identifier
        patient_id: EMR patient identifier (not owned here)
        risk_score: Risk score (0-100)
        risk_level: low, moderate, high or very_high
        urgency_level: routine, urgent or immediate
        contributing_factors: JSON list of factor descriptions, strongest first
        recommendations: JSON list of recommended actions
        next_screening_date: When the patient should be screened again
        assessed_at: When the assessment was computed
        assessed_from_version: Ruleset version used for scoring
        is_current: False once a newer assessment supersedes this one
        created_at: Record creation timestamp
        updated_at: Record update timestamp
    """

    __tablename__ = "diabetes_risk_assessments"
    __table_args__ = (
        Index("ix_diabetes_risk_assessments_patient_current", "patient_id", "is_current"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    patient_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    risk_score: Mapped[int] = mapped_column(Integer, nullable=False)
    risk_level: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    urgency_level: Mapped[str] = mapped_column(String(20), nullable=False)
    contributing_factors: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    recommendations: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    next_screening_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    assessed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    assessed_from_version: Mapped[str] = mapped_column(String(50), nullable=False)
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return (
            f"<DiabetesRiskAssessmentRecord(patient_id='{self.patient_id}', "
            f"score={self.risk_score}, level='{self.risk_level}', current={self.is_current})>"
        )
