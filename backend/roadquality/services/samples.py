from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Sequence
from uuid import uuid4

from roadquality.core.errors import InvalidBatchError

MAX_SESSION_ID_LENGTH = 128


@dataclass(frozen=True)
class SensorSample:
    timestamp: float  # seconds since the unix epoch
    ax: float
    ay: float
    az: float
    lat: float | None = None
    lon: float | None = None
    speed_mps: float | None = None

    @property
    def has_fix(self) -> bool:
        return self.lat is not None and self.lon is not None

    @property
    def magnitude(self) -> float:
        return math.sqrt(self.ax * self.ax + self.ay * self.ay + self.az * self.az)


@dataclass(frozen=True)
class SensorBatch:
    session_id: str
    samples: tuple[SensorSample, ...]
    batch_id: str = field(default_factory=lambda: str(uuid4()))

    def __len__(self) -> int:
        return len(self.samples)

    @property
    def location(self) -> tuple[float, float]:
        """Centroid of the samples carrying a GPS fix."""
        fixes = [(s.lat, s.lon) for s in self.samples if s.has_fix]
        if not fixes:
            raise InvalidBatchError("batch has no GPS fix")
        lat = sum(p[0] for p in fixes) / len(fixes)
        # Average longitudes relative to the first fix so a track crossing the
        # antimeridian does not average to the opposite side of the globe.
        ref = fixes[0][1]
        offset = sum(((p[1] - ref + 180.0) % 360.0) - 180.0 for p in fixes) / len(fixes)
        lon = ((ref + offset + 180.0) % 360.0) - 180.0
        return lat, lon

    @property
    def mean_speed_mps(self) -> float | None:
        speeds = [s.speed_mps for s in self.samples if s.speed_mps is not None]
        if not speeds:
            return None
        return sum(speeds) / len(speeds)

    @property
    def recorded_at(self) -> datetime:
        return datetime.fromtimestamp(self.samples[-1].timestamp, tz=timezone.utc)


def _check_sample(index: int, sample: SensorSample) -> None:
    values = [sample.timestamp, sample.ax, sample.ay, sample.az]
    if not all(math.isfinite(v) for v in values):
        raise InvalidBatchError(f"sample {index} has a non-finite value")
    if (sample.lat is None) != (sample.lon is None):
        raise InvalidBatchError(f"sample {index} has a partial GPS fix")
    if sample.has_fix:
        if not (math.isfinite(sample.lat) and -90.0 <= sample.lat <= 90.0):
            raise InvalidBatchError(f"sample {index} latitude out of range")
        if not (math.isfinite(sample.lon) and -180.0 <= sample.lon <= 180.0):
            raise InvalidBatchError(f"sample {index} longitude out of range")
    if sample.speed_mps is not None and not (
        math.isfinite(sample.speed_mps) and sample.speed_mps >= 0
    ):
        raise InvalidBatchError(f"sample {index} has an invalid speed")


def build_batch(
    session_id: str,
    samples: Sequence[SensorSample],
    *,
    max_samples: int,
) -> SensorBatch:
    """Validate raw samples and freeze them into a batch.

    Raises InvalidBatchError for an empty or oversized batch, timestamps that
    do not strictly increase, non-finite readings, or a batch without any
    GPS fix.
    """
    if not session_id:
        raise InvalidBatchError("session_id is required")
    if len(session_id) > MAX_SESSION_ID_LENGTH:
        raise InvalidBatchError(f"session_id is longer than {MAX_SESSION_ID_LENGTH} characters")
    if not samples:
        raise InvalidBatchError("batch is empty")
    if len(samples) > max_samples:
        raise InvalidBatchError(f"batch has {len(samples)} samples; limit is {max_samples}")

    previous: float | None = None
    for i, sample in enumerate(samples):
        _check_sample(i, sample)
        if previous is not None and sample.timestamp <= previous:
            raise InvalidBatchError(f"timestamps must strictly increase (sample {i})")
        previous = sample.timestamp

    if not any(s.has_fix for s in samples):
        raise InvalidBatchError("batch has no GPS fix")

    return SensorBatch(session_id=session_id, samples=tuple(samples))
