"""ROI scoring for value chain steps.

Turns the four subjective 0-10 node metrics into a bounded automation ROI
score and a priority category:

    effort = (time_intensity + capital_intensity + complexity) / 3
    score  = 100                                   if effort == 0
             min(100, round(potential / effort * 100))   otherwise

The score is used for display and ranking only. Nothing here touches the
database; the same functions back the node read model, the priority ranking
and the ad-hoc ``/roi/score`` endpoint.
"""
from __future__ import annotations

import enum
import math
from dataclasses import dataclass
from fractions import Fraction
from typing import Any, Mapping

from valuechain.core.exceptions import InvalidArgument

METRIC_MIN = 0
METRIC_MAX = 10
DEFAULT_METRIC = 5

METRIC_FIELDS = ("time_intensity", "capital_intensity", "complexity", "automation_potential")

# camelCase spellings used by diagram clients
_ALIASES = {
    "timeIntensity": "time_intensity",
    "capitalIntensity": "capital_intensity",
    "automationPotential": "automation_potential",
}


class RoiCategory(str, enum.Enum):
    EXCELLENT = "Excellent"
    GOOD = "Good"
    MODERATE = "Moderate"
    LOW = "Low"


# Lower bounds, checked top-down; inclusive on the lower end
_CATEGORY_THRESHOLDS: tuple[tuple[int, RoiCategory], ...] = (
    (80, RoiCategory.EXCELLENT),
    (50, RoiCategory.GOOD),
    (25, RoiCategory.MODERATE),
)


def normalize_metric(value: Any, field: str) -> int:
    """Coerce one raw metric to an int in [0, 10].

    ``None`` means "not assessed" and becomes the neutral default. Numbers
    (and numeric strings) are rounded half-up and clamped. Anything else,
    including NaN and booleans, is rejected.
    """
    if value is None:
        return DEFAULT_METRIC
    if isinstance(value, bool):
        raise InvalidArgument(f"{field} must be a number", field=field)
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            raise InvalidArgument(f"{field} must be a number", field=field) from None
    if not isinstance(value, (int, float)):
        raise InvalidArgument(f"{field} must be a number", field=field)
    if isinstance(value, float):
        if math.isnan(value):
            raise InvalidArgument(f"{field} must be a number", field=field)
        if math.isinf(value):
            return METRIC_MAX if value > 0 else METRIC_MIN
        value = math.floor(value + 0.5)
    return max(METRIC_MIN, min(METRIC_MAX, int(value)))


@dataclass(frozen=True)
class MetricSet:
    """Fully populated metric values for one node.

    Build instances through :meth:`from_values`, which performs default
    filling and clamping once so that no reader needs a fallback.
    """

    time_intensity: int = DEFAULT_METRIC
    capital_intensity: int = DEFAULT_METRIC
    complexity: int = DEFAULT_METRIC
    automation_potential: int = DEFAULT_METRIC

    @classmethod
    def from_values(cls, values: Mapping[str, Any] | None = None) -> MetricSet:
        raw = _canonical_keys(values or {})
        return cls(**{f: normalize_metric(raw.get(f), f) for f in METRIC_FIELDS})

    @classmethod
    def from_node(cls, node: Any) -> MetricSet:
        return cls.from_values({f: getattr(node, f, None) for f in METRIC_FIELDS})

    def merged(self, changes: Mapping[str, Any]) -> MetricSet:
        """Return a copy with only the supplied fields replaced (and normalized)."""
        raw = _canonical_keys(changes)
        current = self.as_dict()
        for f in METRIC_FIELDS:
            if f in raw:
                current[f] = normalize_metric(raw[f], f)
        return MetricSet(**current)

    @property
    def effort_total(self) -> int:
        return self.time_intensity + self.capital_intensity + self.complexity

    @property
    def effort(self) -> float:
        return self.effort_total / 3

    def as_dict(self) -> dict[str, int]:
        return {f: getattr(self, f) for f in METRIC_FIELDS}


def _canonical_keys(values: Mapping[str, Any]) -> dict[str, Any]:
    return {_ALIASES.get(k, k): v for k, v in values.items()}


@dataclass(frozen=True)
class RoiResult:
    score: int
    category: RoiCategory
    effort: float

    def as_dict(self) -> dict:
        return {
            "score": self.score,
            "category": self.category.value,
            "effort": round(self.effort, 2),
        }


def roi_score(metrics: MetricSet) -> int:
    """Integer ROI score in [0, 100]."""
    if metrics.effort_total == 0:
        # A step that costs nothing is the most attractive candidate, whatever its potential
        return 100
    # potential / (total / 3) * 100, kept exact so that .5 cases round up
    raw = Fraction(metrics.automation_potential * 300, metrics.effort_total)
    return min(100, math.floor(raw + Fraction(1, 2)))


def roi_category(score: int) -> RoiCategory:
    for lower_bound, category in _CATEGORY_THRESHOLDS:
        if score >= lower_bound:
            return category
    return RoiCategory.LOW


def evaluate(metrics: MetricSet | Mapping[str, Any] | None = None) -> RoiResult:
    if not isinstance(metrics, MetricSet):
        metrics = MetricSet.from_values(metrics)
    score = roi_score(metrics)
    return RoiResult(score=score, category=roi_category(score), effort=metrics.effort)
