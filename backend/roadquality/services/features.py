from __future__ import annotations

import math
from dataclasses import asdict, dataclass, fields

import numpy as np

from roadquality.core.errors import InsufficientDataError, InvalidFeatureError
from roadquality.services.samples import SensorBatch

FEATURE_VERSION_V1 = 1

DEFAULT_MIN_WINDOW_SAMPLES = 16
DEFAULT_SPIKE_K = 2.5

# Standard deviation below which a detrended window counts as flat.
FLAT_STD = 1e-9


@dataclass(frozen=True)
class FeatureSet:
    """Per-batch vibration features; validated on construction."""

    sample_count: int
    sample_rate_hz: float
    variance: float
    skewness: float
    kurtosis: float  # excess (Fisher) kurtosis
    dominant_frequency_hz: float
    dominant_magnitude: float
    spike_count: int
    jerk_rms: float

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise InvalidFeatureError(f"{f.name} must be numeric")
            if not math.isfinite(value):
                raise InvalidFeatureError(f"{f.name} is not finite")
        if self.sample_count <= 0:
            raise InvalidFeatureError("sample_count must be positive")
        if self.variance < 0 or self.jerk_rms < 0 or self.dominant_magnitude < 0:
            raise InvalidFeatureError("variance, jerk and magnitude must be non-negative")
        if self.spike_count < 0 or self.spike_count > self.sample_count:
            raise InvalidFeatureError("spike_count out of range")

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> FeatureSet:
        try:
            return cls(**{f.name: data[f.name] for f in fields(cls)})
        except KeyError as exc:
            raise InvalidFeatureError(f"missing feature {exc.args[0]}") from exc


def _detrend(t: np.ndarray, values: np.ndarray) -> np.ndarray:
    """Remove the least-squares linear trend (gravity, slow tilt)."""
    slope, intercept = np.polyfit(t, values, 1)
    return values - (slope * t + intercept)


def _moments(x: np.ndarray) -> tuple[float, float, float]:
    centered = x - x.mean()
    variance = float(np.mean(centered**2))
    if variance <= FLAT_STD**2:
        # Flat signal: shape statistics are undefined, report no asymmetry/tails.
        return 0.0, 0.0, 0.0
    std = math.sqrt(variance)
    skewness = float(np.mean(centered**3)) / std**3
    kurtosis = float(np.mean(centered**4)) / variance**2 - 3.0
    return variance, skewness, kurtosis


def _dominant_frequency(x: np.ndarray, sample_rate_hz: float) -> tuple[float, float]:
    n = x.size
    # Single-sided amplitude spectrum in the signal's units.
    amplitudes = np.abs(np.fft.rfft(x)) * 2.0 / n
    freqs = np.fft.rfftfreq(n, d=1.0 / sample_rate_hz)
    if amplitudes.size < 2:
        return 0.0, 0.0
    k = int(np.argmax(amplitudes[1:])) + 1
    magnitude = float(amplitudes[k])
    if magnitude <= 0.0:
        return 0.0, 0.0
    return float(freqs[k]), magnitude


def _count_spikes(x: np.ndarray, spike_k: float) -> int:
    """Count samples above mean + k*std; dips below the mean are not spikes."""
    std = float(x.std())
    if std <= FLAT_STD:
        return 0
    return int(np.count_nonzero(x > x.mean() + spike_k * std))


def extract_features(
    batch: SensorBatch,
    min_window: int = DEFAULT_MIN_WINDOW_SAMPLES,
    spike_k: float = DEFAULT_SPIKE_K,
) -> FeatureSet:
    """Compute vibration features over the batch's acceleration magnitude.

    Steps run in a fixed order: detrend, moments, spectrum, spikes, jerk.
    """
    n = len(batch)
    if n < min_window:
        raise InsufficientDataError(f"batch has {n} samples; need at least {min_window}")

    t = np.array([s.timestamp for s in batch.samples], dtype=np.float64)
    t = t - t[0]
    magnitude = np.array([s.magnitude for s in batch.samples], dtype=np.float64)
    if not (np.all(np.isfinite(t)) and np.all(np.isfinite(magnitude))):
        raise InvalidFeatureError("batch contains non-finite readings")

    duration = float(t[-1])
    if duration <= 0.0:
        raise InsufficientDataError("batch spans no time")
    sample_rate_hz = (n - 1) / duration

    detrended = _detrend(t, magnitude)
    variance, skewness, kurtosis = _moments(detrended)
    dominant_hz, dominant_mag = _dominant_frequency(detrended, sample_rate_hz)
    spike_count = _count_spikes(detrended, spike_k)

    # Jerk: discrete derivative of the detrended acceleration.
    jerk = np.diff(detrended) / np.diff(t)
    jerk_rms = float(np.sqrt(np.mean(jerk**2)))

    return FeatureSet(
        sample_count=n,
        sample_rate_hz=float(sample_rate_hz),
        variance=variance,
        skewness=skewness,
        kurtosis=kurtosis,
        dominant_frequency_hz=dominant_hz,
        dominant_magnitude=dominant_mag,
        spike_count=spike_count,
        jerk_rms=jerk_rms,
    )
