"""
Ruleset loading for the diabetes risk scoring model.

A ruleset is pure data: risk level cut points, screening intervals, and the
factor band tables that turn snapshot fields into severities. It is read from
YAML so that adding a factor or moving a cut point never touches scoring code.
"""

import operator
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import yaml

from emr_risk.core.scoring.types import (
    HealthSignalSnapshot,
    RiskLevel,
    UrgencyLevel,
)

DEFAULT_RULESET_PATH = Path(__file__).parent / "rulesets" / "diabetes_v1.yaml"

SCORE_MIN = 0
SCORE_MAX = 100

# Band comparison keys
_COMPARATORS: Dict[str, Callable[[float, float], bool]] = {
    "min": operator.ge,
    "above": operator.gt,
    "max": operator.le,
    "below": operator.lt,
}

FACTOR_KINDS = ("numeric", "flag", "category")


class RulesetError(ValueError):
    """Raised when a ruleset file is malformed."""


@dataclass(frozen=True)
class Band:
    """One row of a factor's threshold table."""

    severity: float
    label: str
    acute: bool = False
    comparator: Optional[str] = None
    thresholds: Tuple[float, ...] = ()
    category: Optional[str] = None

    def matches(self, values: Sequence[Any]) -> bool:
        if self.category is not None:
            return values[0] == self.category
        compare = _COMPARATORS[self.comparator]
        return any(
            value is not None and compare(value, threshold)
            for value, threshold in zip(values, self.thresholds)
        )


@dataclass(frozen=True)
class FactorHit:
    """A factor that matched a band for a given snapshot."""

    key: str
    label: str
    severity: float
    weight: float
    acute: bool
    order: int

    @property
    def contribution(self) -> float:
        return self.severity * self.weight


@dataclass(frozen=True)
class Factor:
    """A weighted risk factor and its band table."""

    key: str
    kind: str
    fields: Tuple[str, ...]
    weight: float
    bands: Tuple[Band, ...]
    recommendations: Tuple[str, ...] = ()
    sex: Optional[str] = None

    def evaluate(self, snapshot: HealthSignalSnapshot, order: int) -> Optional[FactorHit]:
        """
        Match the snapshot against this factor's bands.

        Returns:
            The first matching band as a FactorHit, or None when the factor
            does not apply or its inputs are missing
        """
        if self.sex is not None and snapshot.sex != self.sex:
            return None

        values = [snapshot.value_of(name) for name in self.fields]
        if all(value is None for value in values):
            return None

        if self.kind == "flag":
            if not values[0]:
                return None
            band = self.bands[0]
            return FactorHit(self.key, band.label, band.severity, self.weight, band.acute, order)

        for band in self.bands:
            if band.matches(values):
                return FactorHit(self.key, band.label, band.severity, self.weight, band.acute, order)
        return None


@dataclass(frozen=True)
class LevelRule:
    """Score range and follow-up policy for one risk level."""

    level: RiskLevel
    min_score: int
    max_score: int
    urgency: UrgencyLevel
    screening_interval_days: int
    recommendations: Tuple[str, ...] = ()

    def contains(self, score: int) -> bool:
        return self.min_score <= score <= self.max_score


@dataclass(frozen=True)
class RuleSet:
    """Complete, validated scoring configuration."""

    version: str
    levels: Tuple[LevelRule, ...]
    factors: Tuple[Factor, ...]
    min_contribution: float = 1.0
    max_recommendations: int = 8

    def level_for(self, score: int) -> LevelRule:
        """
        Find the level whose range contains the score.

        Raises:
            ValueError: If the score is outside 0-100
        """
        for rule in self.levels:
            if rule.contains(score):
                return rule
        raise ValueError(f"Risk score {score} is outside {SCORE_MIN}-{SCORE_MAX}")

    def rule_for(self, level: RiskLevel) -> LevelRule:
        for rule in self.levels:
            if rule.level == level:
                return rule
        raise KeyError(level)

    @property
    def cut_points(self) -> Dict[RiskLevel, Tuple[int, int]]:
        return {rule.level: (rule.min_score, rule.max_score) for rule in self.levels}


def _parse_band(factor_key: str, raw: Dict[str, Any], field_count: int) -> Band:
    comparators = [key for key in _COMPARATORS if key in raw]
    if len(comparators) != 1:
        raise RulesetError(
            f"Factor '{factor_key}': each band needs exactly one of {sorted(_COMPARATORS)}"
        )
    comparator = comparators[0]
    threshold = raw[comparator]
    thresholds = tuple(threshold) if isinstance(threshold, list) else (threshold,)
    if len(thresholds) != field_count:
        raise RulesetError(
            f"Factor '{factor_key}': band has {len(thresholds)} thresholds for {field_count} fields"
        )
    return Band(
        severity=_parse_severity(factor_key, raw.get("severity")),
        label=_require(factor_key, raw, "label"),
        acute=bool(raw.get("acute", False)),
        comparator=comparator,
        thresholds=tuple(float(t) for t in thresholds),
    )


def _parse_severity(factor_key: str, value: Any) -> float:
    if value is None:
        raise RulesetError(f"Factor '{factor_key}': band is missing a severity")
    severity = float(value)
    if not 0.0 <= severity <= 1.0:
        raise RulesetError(f"Factor '{factor_key}': severity {severity} is outside 0-1")
    return severity


def _require(context: str, raw: Dict[str, Any], key: str) -> Any:
    if key not in raw:
        raise RulesetError(f"'{context}' is missing required key '{key}'")
    return raw[key]


def _parse_factor(raw: Dict[str, Any]) -> Factor:
    key = _require("factor", raw, "key")
    kind = raw.get("kind", "numeric")
    if kind not in FACTOR_KINDS:
        raise RulesetError(f"Factor '{key}': unknown kind '{kind}'")

    fields = tuple(_require(key, raw, "fields"))
    known = HealthSignalSnapshot.field_names()
    for name in fields:
        if name not in known:
            raise RulesetError(f"Factor '{key}': unknown snapshot field '{name}'")

    weight = float(_require(key, raw, "weight"))
    if weight <= 0:
        raise RulesetError(f"Factor '{key}': weight must be positive")

    if kind == "flag":
        bands = (
            Band(
                severity=_parse_severity(key, raw.get("severity", 1.0)),
                label=_require(key, raw, "label"),
                acute=bool(raw.get("acute", False)),
            ),
        )
    elif kind == "category":
        bands = tuple(
            Band(
                severity=_parse_severity(key, band_raw.get("severity")),
                label=_require(key, band_raw, "label"),
                acute=bool(band_raw.get("acute", False)),
                category=value,
            )
            for value, band_raw in _require(key, raw, "values").items()
        )
    else:
        bands = tuple(_parse_band(key, band, len(fields)) for band in _require(key, raw, "bands"))

    if not bands:
        raise RulesetError(f"Factor '{key}': no bands defined")

    return Factor(
        key=key,
        kind=kind,
        fields=fields,
        weight=weight,
        bands=bands,
        recommendations=tuple(raw.get("recommendations", ())),
        sex=raw.get("sex"),
    )


def _parse_levels(raw_levels: List[Dict[str, Any]]) -> Tuple[LevelRule, ...]:
    try:
        levels = tuple(
            LevelRule(
                level=RiskLevel(raw["level"]),
                min_score=int(raw["min_score"]),
                max_score=int(raw["max_score"]),
                urgency=UrgencyLevel(raw["urgency"]),
                screening_interval_days=int(raw["screening_interval_days"]),
                recommendations=tuple(raw.get("recommendations", ())),
            )
            for raw in raw_levels
        )
    except (KeyError, ValueError) as e:
        raise RulesetError(f"Invalid level definition: {e}") from e

    validate_cut_points(levels)
    return levels


def validate_cut_points(levels: Sequence[LevelRule]) -> None:
    """
    Check that the levels partition 0-100 without gaps or overlaps.

    Levels must appear in ascending RiskLevel order, each exactly once, and
    every screening interval must be positive.

    Raises:
        RulesetError: If the table is not a monotonic partition
    """
    if [rule.level for rule in levels] != list(RiskLevel):
        raise RulesetError(
            f"Levels must be listed once each in order {[level.value for level in RiskLevel]}"
        )

    expected_min = SCORE_MIN
    for rule in levels:
        if rule.min_score != expected_min:
            raise RulesetError(
                f"Level '{rule.level.value}' starts at {rule.min_score}, expected {expected_min}"
            )
        if rule.max_score < rule.min_score:
            raise RulesetError(f"Level '{rule.level.value}' has an empty range")
        if rule.screening_interval_days <= 0:
            raise RulesetError(f"Level '{rule.level.value}' needs a positive screening interval")
        expected_min = rule.max_score + 1

    if levels[-1].max_score != SCORE_MAX:
        raise RulesetError(f"Levels must end at {SCORE_MAX}, got {levels[-1].max_score}")


def parse_ruleset(data: Dict[str, Any]) -> RuleSet:
    """Build a validated RuleSet from parsed YAML data."""
    if not isinstance(data, dict):
        raise RulesetError("Ruleset must be a mapping")

    factors = tuple(_parse_factor(raw) for raw in _require("ruleset", data, "factors"))
    keys = [factor.key for factor in factors]
    if len(set(keys)) != len(keys):
        raise RulesetError("Factor keys must be unique")

    max_recommendations = int(data.get("max_recommendations", 8))
    if max_recommendations < 1:
        raise RulesetError("max_recommendations must be at least 1")

    return RuleSet(
        version=str(_require("ruleset", data, "version")),
        levels=_parse_levels(_require("ruleset", data, "levels")),
        factors=factors,
        min_contribution=float(data.get("min_contribution", 1.0)),
        max_recommendations=max_recommendations,
    )


def load_ruleset(path: Optional[Union[str, Path]] = None) -> RuleSet:
    """
    Load a ruleset from YAML.

    Args:
        path: Ruleset file. Uses the packaged diabetes ruleset if None.

    Returns:
        Validated RuleSet
    """
    path = Path(path) if path else DEFAULT_RULESET_PATH
    with open(path, "r", encoding="utf-8") as f:
        return parse_ruleset(yaml.safe_load(f))
