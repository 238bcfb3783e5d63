"""Weighted score aggregation shared by the pipeline and every analyzer."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, Mapping, Sequence, Tuple


DEFAULT_MODULE_WEIGHTS: Dict[str, float] = {
    "seo": 1.5,
    "performance": 1.5,
    "accessibility": 1.2,
    "security": 1.5,
    "mobile": 1.2,
    "content": 1.0,
    "cross_browser": 1.0,
    "analytics": 0.8,
    "chatbot": 0.5,
}


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative scores (Python's round() is banker's)."""
    if value < 0:
        return -int(math.floor(-value + 0.5))
    return int(math.floor(value + 0.5))


def clamp_score(value: float, low: int = 0, high: int = 100) -> int:
    return max(low, min(high, round_half_up(value)))


def weighted_average(pairs: Iterable[Tuple[float, float]]) -> int:
    """Return round(sum(score * weight) / sum(weight)); 0 when nothing contributes."""
    numerator = 0.0
    denominator = 0.0
    for score, weight in pairs:
        numerator += float(score) * float(weight)
        denominator += float(weight)
    if denominator <= 0:
        return 0
    return round_half_up(numerator / denominator)


@dataclass(frozen=True)
class ScoringWeights:
    """Relative importance of each module in the overall audit score."""

    weights: Mapping[str, float] = field(default_factory=lambda: dict(DEFAULT_MODULE_WEIGHTS))
    default_weight: float = 1.0

    def weight_for(self, module: str) -> float:
        return float(self.weights.get(module, self.default_weight))


def overall_score(results: Sequence, weights: ScoringWeights | None = None) -> int:
    """Aggregate ModuleResults; failed modules are included with their zero score."""
    table = weights or ScoringWeights()
    return weighted_average(
        (result.score, table.weight_for(getattr(result.module, "value", result.module))) for result in results
    )
