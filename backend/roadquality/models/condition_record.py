from datetime import datetime

from geoalchemy2 import Geometry
from sqlalchemy import DateTime, Float, Index, Integer, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from roadquality.models.base import Base


class ConditionRecordRow(Base):
    __tablename__ = "condition_records"
    __table_args__ = (Index("ix_condition_records_lat_lon", "lat", "lon"),)

    id: Mapped[int] = mapped_column(primary_key=True)

    # one record per processed batch; corrections arrive as new batches
    batch_id: Mapped[str] = mapped_column(String(36), unique=True)
    session_id: Mapped[str] = mapped_column(String(128), index=True)

    lat: Mapped[float] = mapped_column(Float)
    lon: Mapped[float] = mapped_column(Float)
    geom: Mapped[str] = mapped_column(
        Geometry(geometry_type="POINT", srid=4326, spatial_index=True)
    )

    score: Mapped[float] = mapped_column(Float)
    category: Mapped[str] = mapped_column(String(16), index=True)
    mean_speed_mps: Mapped[float | None] = mapped_column(Float, nullable=True)

    feature_version: Mapped[int] = mapped_column(Integer, nullable=False)
    features_json: Mapped[dict] = mapped_column(JSONB, nullable=False)

    # timestamp of the batch's last sample
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
