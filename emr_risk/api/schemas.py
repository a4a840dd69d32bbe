"""
Pydantic schemas for API request/response models.

Field names are snake_case in Python and camelCase on the wire.
"""

from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from emr_risk.core.scoring.types import RiskLevel, UrgencyLevel
from emr_risk.services.orchestrator import AssessmentSource


class CamelModel(BaseModel):
    """Base schema serialized with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# Error schemas
class ErrorDetail(BaseModel):
    code: str
    message: str


class ErrorResponse(BaseModel):
    error: ErrorDetail


# Assessment schemas
class RiskAssessmentResponse(CamelModel):
    """Diabetes risk assessment."""

    patient_id: str
    risk_score: int = Field(..., ge=0, le=100)
    risk_level: RiskLevel
    urgency_level: UrgencyLevel
    contributing_factors: List[str]
    recommendations: List[str]
    next_screening_date: datetime
    assessed_at: datetime
    assessed_from_version: str


class DemographicsResponse(CamelModel):
    hospital_number: str
    first_name: str
    last_name: str
    thai_name: Optional[str] = None
    gender: Optional[str] = None
    date_of_birth: Optional[date] = None
    age: Optional[int] = None


class PatientRiskResponse(CamelModel):
    """Dashboard row: a patient and their current assessment, if any."""

    id: str
    demographics: DemographicsResponse
    diabetes_risk: Optional[RiskAssessmentResponse] = None


class PatientRiskDetailResponse(PatientRiskResponse):
    """Patient detail with superseded assessments, newest first."""

    history: List[RiskAssessmentResponse] = Field(default_factory=list)


# Overview schemas
class RiskStats(BaseModel):
    low: int = 0
    moderate: int = 0
    high: int = 0
    very_high: int = 0
    no_data: int = 0


class OverviewStats(CamelModel):
    total_patients: int
    risk_stats: RiskStats
    high_risk_count: int
    matched_patients: int
    last_updated: datetime


class OverviewSummary(CamelModel):
    average_risk_score: float
    needs_follow_up: int
    urgent_cases: int


class DashboardOverviewResponse(CamelModel):
    """AI dashboard overview."""

    overview: OverviewStats
    summary: OverviewSummary
    patients: List[PatientRiskResponse]


# Bulk assessment schemas
class BulkAssessRequest(CamelModel):
    patient_ids: List[str]
    force_reassess: bool = False


class BulkSummary(BaseModel):
    total: int
    recomputed: int
    cached: int
    failed: int


class BulkAssessResponse(CamelModel):
    """Per-patient bulk assessment results."""

    results: Dict[str, RiskAssessmentResponse]
    failures: Dict[str, ErrorDetail]
    outcomes: Dict[str, AssessmentSource]
    summary: BulkSummary


# Analytics schemas
class LevelCounts(BaseModel):
    low: int = 0
    moderate: int = 0
    high: int = 0
    very_high: int = 0


class DailyRiskTrend(CamelModel):
    day: date
    counts: LevelCounts
    total: int


class AnalyticsSummary(CamelModel):
    total_assessments: int
    average_risk_score: float
    high_risk_percentage: float


class AnalyticsResponse(CamelModel):
    """Assessment trends over a trailing period."""

    period: str
    start: datetime
    end: datetime
    summary: AnalyticsSummary
    level_counts: LevelCounts
    risk_trends: List[DailyRiskTrend]
    age_statistics: Dict[str, LevelCounts]
    gender_statistics: Dict[str, LevelCounts]


# Health schemas
class HealthResponse(CamelModel):
    """Health check response."""

    status: str
    timestamp: datetime
    database: str
    version: str
    ruleset_version: str
