"""
Diabetes risk scoring model.

Converts a HealthSignalSnapshot into a RiskAssessment using a table-driven
weighted sum:

1. Each factor maps its snapshot field(s) to a 0-1 severity via its band table
2. Contribution = severity * factor weight
3. Score = sum of contributions, rounded and clamped to 0-100

The model holds no mutable state and performs no I/O.
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

from emr_risk.core.scoring.rules import SCORE_MAX, SCORE_MIN, FactorHit, RuleSet, load_ruleset
from emr_risk.core.scoring.types import HealthSignalSnapshot, RiskAssessment


class RiskScoringModel:
    """
    Score diabetes risk from health signals.

    The risk score combines:
    1. Weighted factor contributions from the ruleset band tables
    2. Level cut points that bucket the score into a risk level
    3. Acute bands that escalate urgency one step above the level default
    """

    def __init__(self, ruleset: Optional[RuleSet] = None):
        """
        Initialize the scoring model.

        Args:
            ruleset: Scoring configuration. Uses the packaged ruleset if None.
        """
        self.ruleset = ruleset or load_ruleset()

    @property
    def version(self) -> str:
        return self.ruleset.version

    def evaluate_factors(self, snapshot: HealthSignalSnapshot) -> List[FactorHit]:
        """
        Evaluate every factor against the snapshot.

        Returns:
            Matched factors sorted by contribution descending; ties keep
            ruleset order
        """
        hits = [
            hit
            for order, factor in enumerate(self.ruleset.factors)
            if (hit := factor.evaluate(snapshot, order)) is not None
        ]
        return sorted(hits, key=lambda hit: (-hit.contribution, hit.order))

    def calculate_score(self, hits: List[FactorHit]) -> int:
        total = sum(hit.contribution for hit in hits)
        return max(SCORE_MIN, min(SCORE_MAX, int(round(total))))

    def score(
        self, snapshot: HealthSignalSnapshot, assessed_at: Optional[datetime] = None
    ) -> RiskAssessment:
        """
        Produce a risk assessment for one snapshot.

        Args:
            snapshot: Health signals for one patient
            assessed_at: Assessment timestamp. Defaults to now (UTC).

        Returns:
            RiskAssessment

        Raises:
            InvalidInput: If the snapshot fails structural validation
        """
        snapshot.validate()
        assessed_at = assessed_at or datetime.now(timezone.utc)

        hits = self.evaluate_factors(snapshot)
        risk_score = self.calculate_score(hits)
        level_rule = self.ruleset.level_for(risk_score)

        significant = [hit for hit in hits if hit.contribution >= self.ruleset.min_contribution]

        urgency = level_rule.urgency
        if any(hit.acute for hit in significant):
            urgency = urgency.escalate()

        return RiskAssessment(
            patient_id=snapshot.patient_id,
            risk_score=risk_score,
            risk_level=level_rule.level,
            urgency_level=urgency,
            contributing_factors=tuple(hit.label for hit in significant),
            recommendations=self.build_recommendations(level_rule.recommendations, significant),
            next_screening_date=assessed_at + timedelta(days=level_rule.screening_interval_days),
            assessed_at=assessed_at,
            assessed_from_version=self.ruleset.version,
        )

    def build_recommendations(self, level_recommendations, hits: List[FactorHit]) -> tuple:
        """
        Level recommendations first, then factor recommendations in
        contribution order; deduplicated and capped.
        """
        factors = {factor.key: factor for factor in self.ruleset.factors}
        ordered = list(level_recommendations)
        for hit in hits:
            ordered.extend(factors[hit.key].recommendations)

        recommendations = list(dict.fromkeys(ordered))
        return tuple(recommendations[: self.ruleset.max_recommendations])
