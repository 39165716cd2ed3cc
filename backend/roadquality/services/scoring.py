from __future__ import annotations

import math
from dataclasses import dataclass, fields
from enum import Enum

from roadquality.core.errors import InvalidFeatureError
from roadquality.services.features import FeatureSet


class Severity(str, Enum):
    GOOD = "Good"
    FAIR = "Fair"
    POOR = "Poor"
    SEVERE = "Severe"

    @property
    def alerts(self) -> bool:
        return self in (Severity.POOR, Severity.SEVERE)


@dataclass(frozen=True)
class ScoringConfig:
    """Weights and scales for the road-quality heuristic.

    Each feature is divided by its scale and clipped to [0, 1] to give a
    penalty; penalties are combined with the weights (which sum to 1) and
    the result mapped onto 0-100 where 100 is the smoothest road.
    """

    variance_scale: float = 2.0  # (m/s^2)^2
    spike_density_scale: float = 0.05  # fraction of samples flagged as spikes
    jerk_scale: float = 200.0  # m/s^3 RMS
    kurtosis_scale: float = 10.0  # excess kurtosis
    skewness_scale: float = 2.0
    magnitude_scale: float = 1.0  # m/s^2 amplitude of the dominant frequency

    variance_weight: float = 0.30
    spike_weight: float = 0.25
    jerk_weight: float = 0.20
    kurtosis_weight: float = 0.10
    skewness_weight: float = 0.05
    magnitude_weight: float = 0.10

    good_min: float = 80.0
    fair_min: float = 50.0
    poor_min: float = 20.0

    def __post_init__(self) -> None:
        weights = [getattr(self, f.name) for f in fields(self) if f.name.endswith("_weight")]
        if any(w < 0 for w in weights) or not math.isclose(sum(weights), 1.0, abs_tol=1e-9):
            raise ValueError("scoring weights must be non-negative and sum to 1")
        scales = [getattr(self, f.name) for f in fields(self) if f.name.endswith("_scale")]
        if any(s <= 0 for s in scales):
            raise ValueError("scoring scales must be positive")
        if not (100.0 >= self.good_min >= self.fair_min >= self.poor_min >= 0.0):
            raise ValueError("category cut points must be ordered within 0-100")

    def categorize(self, score: float) -> Severity:
        if score >= self.good_min:
            return Severity.GOOD
        if score >= self.fair_min:
            return Severity.FAIR
        if score >= self.poor_min:
            return Severity.POOR
        return Severity.SEVERE


DEFAULT_SCORING = ScoringConfig()


def _clip01(value: float) -> float:
    return min(1.0, max(0.0, value))


def feature_penalties(features: FeatureSet, config: ScoringConfig = DEFAULT_SCORING) -> dict[str, float]:
    """Normalised [0, 1] penalty per feature; each is non-decreasing in its input."""
    spike_density = features.spike_count / features.sample_count
    return {
        "variance": _clip01(features.variance / config.variance_scale),
        "spikes": _clip01(spike_density / config.spike_density_scale),
        "jerk": _clip01(features.jerk_rms / config.jerk_scale),
        "kurtosis": _clip01(max(features.kurtosis, 0.0) / config.kurtosis_scale),
        "skewness": _clip01(abs(features.skewness) / config.skewness_scale),
        "magnitude": _clip01(features.dominant_magnitude / config.magnitude_scale),
    }


def score_features(
    features: FeatureSet,
    config: ScoringConfig = DEFAULT_SCORING,
) -> tuple[float, Severity]:
    """Map a feature set to a 0-100 quality score and a severity category."""
    values = [getattr(features, f.name) for f in fields(features)]
    if not all(isinstance(v, (int, float)) and math.isfinite(v) for v in values):
        raise InvalidFeatureError("feature set contains non-finite values")

    p = feature_penalties(features, config)
    penalty = (
        config.variance_weight * p["variance"]
        + config.spike_weight * p["spikes"]
        + config.jerk_weight * p["jerk"]
        + config.kurtosis_weight * p["kurtosis"]
        + config.skewness_weight * p["skewness"]
        + config.magnitude_weight * p["magnitude"]
    )
    score = round(100.0 * (1.0 - _clip01(penalty)), 2)
    return score, config.categorize(score)
