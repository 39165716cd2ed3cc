from __future__ import annotations

import bisect
import itertools
import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Protocol

from geoalchemy2.functions import ST_Intersects, ST_MakeEnvelope
from geoalchemy2.shape import from_shape
from shapely.geometry import Point
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from roadquality.core.errors import PersistenceError
from roadquality.models.condition_record import ConditionRecordRow
from roadquality.services.features import FEATURE_VERSION_V1, FeatureSet
from roadquality.services.geo import BoundingBox
from roadquality.services.scoring import Severity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConditionRecord:
    batch_id: str
    session_id: str
    lat: float
    lon: float
    score: float
    category: Severity
    features: FeatureSet
    recorded_at: datetime
    mean_speed_mps: float | None = None
    feature_version: int = FEATURE_VERSION_V1
    record_id: int | None = None


class RecordStore(Protocol):
    """Append-only store of scored records with bounding-box range lookups."""

    def save_record(self, record: ConditionRecord) -> ConditionRecord: ...

    def range_query(self, bbox: BoundingBox) -> list[ConditionRecord]: ...


class InMemoryRecordStore:
    """Thread-safe store keeping records sorted by latitude.

    Range lookups bisect the latitude index and filter longitude on the
    resulting slice.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._lats: list[float] = []
        self._records: list[ConditionRecord] = []
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self._records)

    def save_record(self, record: ConditionRecord) -> ConditionRecord:
        with self._lock:
            saved = replace(record, record_id=next(self._ids))
            i = bisect.bisect_right(self._lats, saved.lat)
            self._lats.insert(i, saved.lat)
            self._records.insert(i, saved)
        return saved

    def range_query(self, bbox: BoundingBox) -> list[ConditionRecord]:
        with self._lock:
            lo = bisect.bisect_left(self._lats, bbox.min_lat)
            hi = bisect.bisect_right(self._lats, bbox.max_lat)
            candidates = self._records[lo:hi]
        return [r for r in candidates if bbox.contains(r.lat, r.lon)]


def _row_to_record(row: ConditionRecordRow) -> ConditionRecord:
    return ConditionRecord(
        record_id=row.id,
        batch_id=row.batch_id,
        session_id=row.session_id,
        lat=row.lat,
        lon=row.lon,
        score=row.score,
        category=Severity(row.category),
        features=FeatureSet.from_dict(row.features_json),
        recorded_at=row.recorded_at,
        mean_speed_mps=row.mean_speed_mps,
        feature_version=row.feature_version,
    )


class SqlRecordStore:
    """PostGIS-backed store; each call runs in its own session."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def save_record(self, record: ConditionRecord) -> ConditionRecord:
        row = ConditionRecordRow(
            batch_id=record.batch_id,
            session_id=record.session_id,
            lat=record.lat,
            lon=record.lon,
            geom=from_shape(Point(record.lon, record.lat), srid=4326),
            score=record.score,
            category=record.category.value,
            mean_speed_mps=record.mean_speed_mps,
            feature_version=record.feature_version,
            features_json=record.features.to_dict(),
            recorded_at=record.recorded_at,
        )
        try:
            with self._session_factory() as db:
                db.add(row)
                db.commit()
                db.refresh(row)
                return replace(record, record_id=row.id)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"could not save record for batch {record.batch_id}") from exc

    def range_query(self, bbox: BoundingBox) -> list[ConditionRecord]:
        try:
            with self._session_factory() as db:
                records: list[ConditionRecord] = []
                for box in bbox.split_antimeridian():
                    envelope = ST_MakeEnvelope(box.min_lon, box.min_lat, box.max_lon, box.max_lat, 4326)
                    rows = (
                        db.query(ConditionRecordRow)
                        .filter(ST_Intersects(ConditionRecordRow.geom, envelope))
                        .all()
                    )
                    records.extend(_row_to_record(row) for row in rows)
                return records
        except SQLAlchemyError as exc:
            raise PersistenceError("range query failed") from exc
