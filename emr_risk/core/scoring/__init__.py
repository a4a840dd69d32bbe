"""Diabetes risk scoring components."""

from emr_risk.core.scoring.model import RiskScoringModel
from emr_risk.core.scoring.rules import RuleSet, RulesetError, load_ruleset
from emr_risk.core.scoring.types import (
    HealthSignalSnapshot,
    PatientRef,
    RiskAssessment,
    RiskLevel,
    UrgencyLevel,
)

__all__ = [
    "HealthSignalSnapshot",
    "PatientRef",
    "RiskAssessment",
    "RiskLevel",
    "RiskScoringModel",
    "RuleSet",
    "RulesetError",
    "UrgencyLevel",
    "load_ruleset",
]
