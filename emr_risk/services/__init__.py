"""Assessment, storage and dashboard services."""

from emr_risk.services.assessment_store import (
    AssessmentStore,
    InMemoryAssessmentStore,
    SqlAssessmentStore,
)
from emr_risk.services.dashboard_aggregator import (
    DashboardAggregator,
    DashboardFilter,
    DashboardOverview,
    RiskFilter,
)
from emr_risk.services.dashboard_service import DashboardService
from emr_risk.services.orchestrator import (
    AssessmentOrchestrator,
    AssessmentSource,
    BulkAssessmentResult,
)
from emr_risk.services.patient_directory import (
    PatientDirectory,
    SqlPatientDirectory,
    StaticPatientDirectory,
)
from emr_risk.services.signal_provider import HealthSignalProvider, SqlHealthSignalProvider

__all__ = [
    "AssessmentOrchestrator",
    "AssessmentSource",
    "AssessmentStore",
    "BulkAssessmentResult",
    "DashboardAggregator",
    "DashboardFilter",
    "DashboardOverview",
    "DashboardService",
    "HealthSignalProvider",
    "InMemoryAssessmentStore",
    "PatientDirectory",
    "RiskFilter",
    "SqlAssessmentStore",
    "SqlHealthSignalProvider",
    "SqlPatientDirectory",
    "StaticPatientDirectory",
]
