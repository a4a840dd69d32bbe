"""
Dashboard aggregation.

Pure functions of (patients, assessments, filter, now). Nothing here reads the
store or triggers a reassessment.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional

from emr_risk.core.freshness import FreshnessPolicy
from emr_risk.core.scoring.types import PatientRef, RiskAssessment, RiskLevel, UrgencyLevel

NO_DATA = "no_data"

HIGH_RISK_LEVELS = (RiskLevel.HIGH, RiskLevel.VERY_HIGH)

# (label, lower bound inclusive, upper bound exclusive)
AGE_GROUPS = (
    ("under_30", 0, 30),
    ("30_44", 30, 45),
    ("45_64", 45, 65),
    ("over_65", 65, 200),
)


class RiskFilter(str, Enum):
    """Dashboard risk filter: a risk level or one of two synthetic selections."""

    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    VERY_HIGH = "very_high"
    NO_DATA = NO_DATA
    REASSESS = "reassess"


@dataclass(frozen=True)
class DashboardFilter:
    search: Optional[str] = None
    risk_level: Optional[RiskFilter] = None

    @property
    def search_term(self) -> Optional[str]:
        term = (self.search or "").strip().lower()
        return term or None


@dataclass(frozen=True)
class PatientRiskRow:
    patient: PatientRef
    assessment: Optional[RiskAssessment]


@dataclass
class DashboardOverview:
    """Population statistics plus the filtered, paginated patient rows."""

    total_patients: int
    risk_stats: Dict[str, int]
    average_risk_score: float
    needs_follow_up: int
    high_risk_count: int
    urgent_cases: int
    matched_patients: int
    last_updated: datetime
    patients: List[PatientRiskRow] = field(default_factory=list)


@dataclass
class DailyRiskCounts:
    day: date
    counts: Dict[str, int]

    @property
    def total(self) -> int:
        return sum(self.counts.values())


@dataclass
class RiskAnalytics:
    """Assessment activity over a trailing period."""

    period_days: int
    start: datetime
    end: datetime
    total_assessments: int
    average_risk_score: float
    high_risk_percentage: float
    level_counts: Dict[str, int]
    daily: List[DailyRiskCounts]
    by_age_group: Dict[str, Dict[str, int]]
    by_gender: Dict[str, Dict[str, int]]


def empty_level_counts() -> Dict[str, int]:
    return {level.value: 0 for level in RiskLevel}


def mean_score(assessments: Iterable[RiskAssessment]) -> float:
    scores = [a.risk_score for a in assessments]
    if not scores:
        return 0.0
    return round(sum(scores) / len(scores), 2)


def age_group(age: Optional[int]) -> str:
    if age is None:
        return "unknown"
    for label, low, high in AGE_GROUPS:
        if low <= age < high:
            return label
    return "unknown"


class DashboardAggregator:
    """Builds dashboard statistics from already-stored assessments."""

    def __init__(self, freshness: FreshnessPolicy):
        """
        Args:
            freshness: Policy used by the ``reassess`` filter
        """
        self.freshness = freshness

    def needs_reassessment(self, assessment: Optional[RiskAssessment], now: datetime) -> bool:
        return assessment is None or self.freshness.is_stale(assessment, now)

    def matches(
        self,
        patient: PatientRef,
        assessment: Optional[RiskAssessment],
        dashboard_filter: DashboardFilter,
        now: datetime,
    ) -> bool:
        term = dashboard_filter.search_term
        if term and not any(term in value.lower() for value in patient.searchable_text()):
            return False

        wanted = dashboard_filter.risk_level
        if wanted is None:
            return True
        if wanted is RiskFilter.NO_DATA:
            return assessment is None
        if wanted is RiskFilter.REASSESS:
            return self.needs_reassessment(assessment, now)
        return assessment is not None and assessment.risk_level.value == wanted.value

    def summarize(
        self,
        patients: List[PatientRef],
        assessments: Mapping[str, RiskAssessment],
        dashboard_filter: Optional[DashboardFilter] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        now: Optional[datetime] = None,
    ) -> DashboardOverview:
        """
        Summarize a patient population.

        Statistics cover every patient passed in; the filter and pagination
        only narrow the returned rows.

        Args:
            patients: Population in display order
            assessments: Current assessments keyed by patient id
            dashboard_filter: Search text and risk filter
            limit: Maximum rows to return, None for all
            offset: Rows to skip after filtering
            now: Reference time for follow-up and staleness checks

        Returns:
            DashboardOverview
        """
        now = now or datetime.now(timezone.utc)
        dashboard_filter = dashboard_filter or DashboardFilter()

        risk_stats = {**empty_level_counts(), NO_DATA: 0}
        assessed: List[RiskAssessment] = []
        for patient in patients:
            assessment = assessments.get(patient.id)
            if assessment is None:
                risk_stats[NO_DATA] += 1
                continue
            risk_stats[assessment.risk_level.value] += 1
            assessed.append(assessment)

        rows = [
            PatientRiskRow(patient, assessments.get(patient.id))
            for patient in patients
            if self.matches(patient, assessments.get(patient.id), dashboard_filter, now)
        ]
        end = None if limit is None else offset + limit

        return DashboardOverview(
            total_patients=len(patients),
            risk_stats=risk_stats,
            average_risk_score=mean_score(assessed),
            needs_follow_up=sum(1 for a in assessed if a.is_overdue(now)),
            high_risk_count=sum(risk_stats[level.value] for level in HIGH_RISK_LEVELS),
            urgent_cases=sum(1 for a in assessed if a.urgency_level is UrgencyLevel.IMMEDIATE),
            matched_patients=len(rows),
            last_updated=now,
            patients=rows[offset:end],
        )

    def analyze(
        self,
        assessments: List[RiskAssessment],
        period_days: int,
        patients: Optional[Mapping[str, PatientRef]] = None,
        now: Optional[datetime] = None,
    ) -> RiskAnalytics:
        """
        Aggregate every assessment computed within the trailing period.

        Superseded assessments count too, so the daily series shows
        assessment activity rather than the current population.
        """
        now = now or datetime.now(timezone.utc)
        start = now - timedelta(days=period_days)
        patients = patients or {}
        in_period = [a for a in assessments if start <= a.assessed_at <= now]

        level_counts = empty_level_counts()
        per_day: Dict[date, Counter] = {}
        by_age: Dict[str, Counter] = {}
        by_gender: Dict[str, Counter] = {}

        for assessment in in_period:
            level = assessment.risk_level.value
            level_counts[level] += 1
            per_day.setdefault(assessment.assessed_at.date(), Counter())[level] += 1

            patient = patients.get(assessment.patient_id)
            if patient is None:
                continue
            group = age_group(patient.age(assessment.assessed_at.date()))
            by_age.setdefault(group, Counter())[level] += 1
            by_gender.setdefault(patient.gender or "unknown", Counter())[level] += 1

        total = len(in_period)
        high_risk = sum(level_counts[level.value] for level in HIGH_RISK_LEVELS)

        return RiskAnalytics(
            period_days=period_days,
            start=start,
            end=now,
            total_assessments=total,
            average_risk_score=mean_score(in_period),
            high_risk_percentage=round(high_risk * 100 / total, 2) if total else 0.0,
            level_counts=level_counts,
            daily=[
                DailyRiskCounts(day, {**empty_level_counts(), **counts})
                for day, counts in sorted(per_day.items(), reverse=True)
            ],
            by_age_group={k: {**empty_level_counts(), **v} for k, v in sorted(by_age.items())},
            by_gender={k: {**empty_level_counts(), **v} for k, v in sorted(by_gender.items())},
        )
