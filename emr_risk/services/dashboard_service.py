"""
Dashboard service.

Coordinates the patient directory, the assessment store, the orchestrator and
the aggregator behind the operations the AI dashboard exposes.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence

from emr_risk import __version__
from emr_risk.core.config import Settings, get_settings
from emr_risk.core.exceptions import InvalidInput, PatientNotFound, StoreUnavailable
from emr_risk.core.logging import setup_logging
from emr_risk.core.scoring.types import PatientRef, RiskAssessment
from emr_risk.services.assessment_store import AssessmentStore
from emr_risk.services.dashboard_aggregator import (
    DashboardAggregator,
    DashboardFilter,
    DashboardOverview,
    RiskAnalytics,
)
from emr_risk.services.orchestrator import AssessmentOrchestrator, BulkAssessmentResult, utc_now
from emr_risk.services.patient_directory import PatientDirectory

logger = setup_logging("dashboard_service")

ANALYTICS_PERIODS = {"7d": 7, "30d": 30, "90d": 90}
HISTORY_LIMIT = 10


@dataclass
class PatientRiskDetail:
    patient: PatientRef
    assessment: RiskAssessment
    history: List[RiskAssessment]


@dataclass
class HealthStatus:
    status: str
    database: str
    ruleset_version: str
    version: str
    timestamp: datetime


class DashboardService:
    """Read and bulk-assess operations backing the AI dashboard."""

    def __init__(
        self,
        directory: PatientDirectory,
        store: AssessmentStore,
        orchestrator: AssessmentOrchestrator,
        aggregator: Optional[DashboardAggregator] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings or get_settings()
        self.directory = directory
        self.store = store
        self.orchestrator = orchestrator
        self.aggregator = aggregator or DashboardAggregator(orchestrator.freshness)
        self.clock = clock

    def resolve_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.settings.dashboard_default_limit
        if limit < 1:
            raise InvalidInput(f"limit must be positive, got {limit}")
        return min(limit, self.settings.dashboard_max_limit)

    async def get_overview(
        self,
        dashboard_filter: Optional[DashboardFilter] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> DashboardOverview:
        """
        Build the dashboard overview from currently stored assessments.

        Never triggers a reassessment; stale or missing assessments show up
        as such.

        Args:
            dashboard_filter: Search text and risk filter for the patient rows
            limit: Maximum rows to return (clamped to the configured maximum)
            offset: Rows to skip after filtering

        Returns:
            DashboardOverview

        Raises:
            InvalidInput: If limit or offset is out of range
            StoreUnavailable: If stored assessments cannot be read
        """
        limit = self.resolve_limit(limit)
        if offset < 0:
            raise InvalidInput(f"offset must not be negative, got {offset}")

        patients = await self.directory.list_patients()
        assessments = await self.store.get_many(p.id for p in patients)
        overview = self.aggregator.summarize(
            patients, assessments, dashboard_filter, limit=limit, offset=offset, now=self.clock()
        )

        logger.info(
            f"Dashboard overview: {overview.total_patients} patients, "
            f"{overview.matched_patients} matched, returning {len(overview.patients)}"
        )
        return overview

    async def bulk_assess(
        self, patient_ids: Sequence[str], force_reassess: bool = False
    ) -> BulkAssessmentResult:
        """
        Assess the given patients, recomputing only what needs it.

        Args:
            patient_ids: Patients to assess
            force_reassess: Recompute even fresh assessments

        Returns:
            BulkAssessmentResult with per-patient outcome

        Raises:
            InvalidInput: If more patients are requested than allowed per call
            StoreUnavailable: If the store fails during the run
        """
        unique_ids = list(dict.fromkeys(patient_ids))
        if len(unique_ids) > self.settings.bulk_max_patients:
            raise InvalidInput(
                f"At most {self.settings.bulk_max_patients} patients per bulk assessment, "
                f"got {len(unique_ids)}"
            )

        return await self.orchestrator.assess_many(
            unique_ids,
            force_reassess=force_reassess,
            timeout=self.settings.bulk_assess_timeout_seconds,
        )

    async def get_patient_risk(
        self, patient_id: str, force_reassess: bool = False
    ) -> PatientRiskDetail:
        """
        Current assessment and recent history for one patient.

        Raises:
            PatientNotFound: If the patient is not in the directory
        """
        patient = await self.directory.get_patient(patient_id)
        if patient is None:
            raise PatientNotFound(f"Patient {patient_id} not found", patient_id)

        assessment = await self.orchestrator.assess(patient_id, force_reassess=force_reassess)
        history = await self.store.history(patient_id, limit=HISTORY_LIMIT)
        return PatientRiskDetail(patient=patient, assessment=assessment, history=history)

    async def get_analytics(self, period: str = "30d") -> RiskAnalytics:
        """
        Assessment trends for a trailing period.

        Args:
            period: One of "7d", "30d" or "90d"

        Raises:
            InvalidInput: If the period is not supported
        """
        if period not in ANALYTICS_PERIODS:
            raise InvalidInput(
                f"Unsupported period '{period}', expected one of {', '.join(ANALYTICS_PERIODS)}"
            )
        days = ANALYTICS_PERIODS[period]
        now = self.clock()

        assessments = await self.store.list_since(now - timedelta(days=days))
        patients: Dict[str, PatientRef] = {p.id: p for p in await self.directory.list_patients()}
        return self.aggregator.analyze(assessments, days, patients=patients, now=now)

    async def health(self) -> HealthStatus:
        try:
            await self.store.ping()
            database = "connected"
        except StoreUnavailable as e:
            logger.warning(f"Health check failed: {e}")
            database = "disconnected"

        return HealthStatus(
            status="healthy" if database == "connected" else "unhealthy",
            database=database,
            ruleset_version=self.orchestrator.model.version,
            version=__version__,
            timestamp=self.clock(),
        )
