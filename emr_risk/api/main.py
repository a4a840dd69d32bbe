"""
FastAPI application main module.

Provides the AI dashboard REST endpoints: population overview, bulk
assessment, per-patient diabetes risk, analytics and system status.
"""

from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from emr_risk.api.dependencies import get_dashboard_service
from emr_risk.api.schemas import (
    AnalyticsResponse,
    AnalyticsSummary,
    BulkAssessRequest,
    BulkAssessResponse,
    BulkSummary,
    DailyRiskTrend,
    DashboardOverviewResponse,
    DemographicsResponse,
    ErrorDetail,
    ErrorResponse,
    HealthResponse,
    LevelCounts,
    OverviewStats,
    OverviewSummary,
    PatientRiskDetailResponse,
    PatientRiskResponse,
    RiskAssessmentResponse,
    RiskStats,
)
from emr_risk.core.config import get_settings
from emr_risk.core.exceptions import (
    AssessmentCancelled,
    AssessmentError,
    InvalidInput,
    PatientNotFound,
    SignalUnavailable,
    StoreUnavailable,
)
from emr_risk.core.logging import setup_logging
from emr_risk.core.scoring.types import PatientRef, RiskAssessment
from emr_risk.services.dashboard_aggregator import DashboardFilter, RiskFilter
from emr_risk.services.dashboard_service import DashboardService

settings = get_settings()
logger = setup_logging("api")

# First match wins, so subclasses come before their parents
ERROR_STATUS_CODES = (
    (StoreUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
    (PatientNotFound, status.HTTP_404_NOT_FOUND),
    (InvalidInput, 422),
    (SignalUnavailable, status.HTTP_502_BAD_GATEWAY),
    (AssessmentCancelled, status.HTTP_504_GATEWAY_TIMEOUT),
)

# Create FastAPI app
app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description="API for diabetes risk assessment and the AI dashboard",
    responses={
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AssessmentError)
async def assessment_error_handler(request: Request, exc: AssessmentError) -> JSONResponse:
    status_code = next(
        (code for error_type, code in ERROR_STATUS_CODES if isinstance(exc, error_type)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: [{exc.code}] {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: [{exc.code}] {exc.message}")
    return JSONResponse(status_code=status_code, content={"error": exc.to_dict()})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    message = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
    )
    return JSONResponse(
        status_code=422,
        content={"error": {"code": InvalidInput.code, "message": message}},
    )


def assessment_response(assessment: RiskAssessment) -> RiskAssessmentResponse:
    return RiskAssessmentResponse.model_validate(assessment)


def demographics_response(patient: PatientRef, today: date) -> DemographicsResponse:
    return DemographicsResponse(
        hospital_number=patient.hospital_number,
        first_name=patient.first_name,
        last_name=patient.last_name,
        thai_name=patient.thai_name,
        gender=patient.gender,
        date_of_birth=patient.date_of_birth,
        age=patient.age(today),
    )


# Health check endpoint
@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(service: DashboardService = Depends(get_dashboard_service)):
    """
    Health check endpoint.

    Returns system status and assessment store connectivity.
    """
    health = await service.health()
    return HealthResponse(
        status=health.status,
        timestamp=health.timestamp,
        database=health.database,
        version=health.version,
        ruleset_version=health.ruleset_version,
    )


# AI dashboard endpoints
@app.get(
    "/ai-dashboard/overview",
    response_model=DashboardOverviewResponse,
    tags=["AI Dashboard"],
)
async def get_overview(
    risk_level: Optional[RiskFilter] = Query(
        None, alias="riskLevel", description="Risk level, no_data or reassess"
    ),
    search: Optional[str] = Query(None, description="Name, hospital number or id substring"),
    limit: Optional[int] = Query(None, ge=1, description="Maximum number of patients"),
    offset: int = Query(0, ge=0, description="Number of patients to skip"),
    service: DashboardService = Depends(get_dashboard_service),
):
    """
    Get the dashboard overview.

    Reads stored assessments only; nothing is reassessed.
    """
    overview = await service.get_overview(
        DashboardFilter(search=search, risk_level=risk_level), limit=limit, offset=offset
    )
    today = overview.last_updated.date()

    return DashboardOverviewResponse(
        overview=OverviewStats(
            total_patients=overview.total_patients,
            risk_stats=RiskStats(**overview.risk_stats),
            high_risk_count=overview.high_risk_count,
            matched_patients=overview.matched_patients,
            last_updated=overview.last_updated,
        ),
        summary=OverviewSummary(
            average_risk_score=overview.average_risk_score,
            needs_follow_up=overview.needs_follow_up,
            urgent_cases=overview.urgent_cases,
        ),
        patients=[
            PatientRiskResponse(
                id=row.patient.id,
                demographics=demographics_response(row.patient, today),
                diabetes_risk=assessment_response(row.assessment) if row.assessment else None,
            )
            for row in overview.patients
        ],
    )


@app.post(
    "/ai-dashboard/bulk-assess",
    response_model=BulkAssessResponse,
    tags=["AI Dashboard"],
)
async def bulk_assess(
    request: BulkAssessRequest,
    service: DashboardService = Depends(get_dashboard_service),
):
    """
    Assess many patients.

    Each patient succeeds or fails independently; the response reports
    whether each result was recomputed, served from cache, or failed.
    """
    logger.info(
        f"Bulk assess requested for {len(request.patient_ids)} patients "
        f"(force={request.force_reassess})"
    )
    result = await service.bulk_assess(request.patient_ids, force_reassess=request.force_reassess)

    return BulkAssessResponse(
        results={pid: assessment_response(a) for pid, a in result.results.items()},
        failures={pid: ErrorDetail(**error.to_dict()) for pid, error in result.failures.items()},
        outcomes=result.outcomes,
        summary=BulkSummary(**result.summary),
    )


@app.get(
    "/ai-dashboard/patients/{patient_id}/diabetes-risk",
    response_model=PatientRiskDetailResponse,
    tags=["AI Dashboard"],
)
async def get_patient_risk(
    patient_id: str,
    force_reassess: bool = Query(False, alias="forceReassess"),
    service: DashboardService = Depends(get_dashboard_service),
):
    """Get a patient's current diabetes risk, assessing it when needed."""
    detail = await service.get_patient_risk(patient_id, force_reassess=force_reassess)

    return PatientRiskDetailResponse(
        id=detail.patient.id,
        demographics=demographics_response(detail.patient, detail.assessment.assessed_at.date()),
        diabetes_risk=assessment_response(detail.assessment),
        history=[assessment_response(a) for a in detail.history],
    )


@app.get(
    "/ai-dashboard/analytics",
    response_model=AnalyticsResponse,
    tags=["AI Dashboard"],
)
async def get_analytics(
    period: str = Query("30d", description="Trailing period: 7d, 30d or 90d"),
    service: DashboardService = Depends(get_dashboard_service),
):
    """Get assessment trends for a trailing period."""
    analytics = await service.get_analytics(period)

    return AnalyticsResponse(
        period=period,
        start=analytics.start,
        end=analytics.end,
        summary=AnalyticsSummary(
            total_assessments=analytics.total_assessments,
            average_risk_score=analytics.average_risk_score,
            high_risk_percentage=analytics.high_risk_percentage,
        ),
        level_counts=LevelCounts(**analytics.level_counts),
        risk_trends=[
            DailyRiskTrend(day=day.day, counts=LevelCounts(**day.counts), total=day.total)
            for day in analytics.daily
        ],
        age_statistics={k: LevelCounts(**v) for k, v in analytics.by_age_group.items()},
        gender_statistics={k: LevelCounts(**v) for k, v in analytics.by_gender.items()},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
