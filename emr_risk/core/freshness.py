"""
Cache freshness rules for stored risk assessments.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from emr_risk.core.scoring.types import RiskAssessment


class CacheState(str, Enum):
    """Why a stored assessment is or is not reused."""

    MISSING = "missing"
    FORCED = "forced"
    STALE = "stale"
    FRESH = "fresh"

    @property
    def needs_recompute(self) -> bool:
        return self is not CacheState.FRESH


def is_stale(
    assessment: RiskAssessment,
    now: datetime,
    max_age: Optional[timedelta] = None,
    ruleset_version: Optional[str] = None,
) -> bool:
    """
    Check whether a stored assessment should no longer be served.

    An assessment goes stale when its screening date arrives, when it is older
    than ``max_age``, or when it was produced by a different ruleset version.
    """
    if now >= assessment.next_screening_date:
        return True
    if max_age is not None and now - assessment.assessed_at >= max_age:
        return True
    if ruleset_version is not None and assessment.assessed_from_version != ruleset_version:
        return True
    return False


def classify_cache_state(
    stored: Optional[RiskAssessment],
    force_reassess: bool,
    now: datetime,
    max_age: Optional[timedelta] = None,
    ruleset_version: Optional[str] = None,
) -> CacheState:
    if stored is None:
        return CacheState.MISSING
    if force_reassess:
        return CacheState.FORCED
    if is_stale(stored, now, max_age, ruleset_version):
        return CacheState.STALE
    return CacheState.FRESH


class FreshnessPolicy:
    """Staleness settings bound to one ruleset version."""

    def __init__(self, max_age_hours: Optional[int], ruleset_version: Optional[str] = None):
        self.max_age = timedelta(hours=max_age_hours) if max_age_hours else None
        self.ruleset_version = ruleset_version

    def is_stale(self, assessment: RiskAssessment, now: datetime) -> bool:
        return is_stale(assessment, now, self.max_age, self.ruleset_version)

    def classify(
        self, stored: Optional[RiskAssessment], force_reassess: bool, now: datetime
    ) -> CacheState:
        return classify_cache_state(stored, force_reassess, now, self.max_age, self.ruleset_version)
