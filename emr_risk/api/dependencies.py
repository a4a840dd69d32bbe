"""
API dependencies wiring the dashboard service to the EMR database.
"""

from functools import lru_cache

from emr_risk.core.config import get_settings
from emr_risk.core.scoring import RiskScoringModel, load_ruleset
from emr_risk.models.base import get_async_session_maker
from emr_risk.services.assessment_store import SqlAssessmentStore
from emr_risk.services.dashboard_service import DashboardService
from emr_risk.services.orchestrator import AssessmentOrchestrator
from emr_risk.services.patient_directory import SqlPatientDirectory
from emr_risk.services.signal_provider import SqlHealthSignalProvider


def build_dashboard_service() -> DashboardService:
    """
    Build a DashboardService backed by the configured database.

    Returns:
        DashboardService using the SQL store, provider and directory
    """
    settings = get_settings()
    session_maker = get_async_session_maker()

    store = SqlAssessmentStore(session_maker)
    orchestrator = AssessmentOrchestrator(
        provider=SqlHealthSignalProvider(session_maker),
        store=store,
        model=RiskScoringModel(load_ruleset(settings.risk_rules_path)),
        settings=settings,
    )
    return DashboardService(
        directory=SqlPatientDirectory(session_maker),
        store=store,
        orchestrator=orchestrator,
        settings=settings,
    )


@lru_cache
def get_dashboard_service() -> DashboardService:
    """Dependency returning the process-wide dashboard service."""
    return build_dashboard_service()
