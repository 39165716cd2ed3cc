"""Condition records table with PostGIS point geometry."""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from geoalchemy2 import Geometry
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS postgis")

    op.create_table(
        "condition_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("batch_id", sa.String(length=36), nullable=False),
        sa.Column("session_id", sa.String(length=128), nullable=False),
        sa.Column("lat", sa.Float(), nullable=False),
        sa.Column("lon", sa.Float(), nullable=False),
        sa.Column(
            "geom",
            Geometry(geometry_type="POINT", srid=4326, spatial_index=False),
            nullable=False,
        ),
        sa.Column("score", sa.Float(), nullable=False),
        sa.Column("category", sa.String(length=16), nullable=False),
        sa.Column("mean_speed_mps", sa.Float(), nullable=True),
        sa.Column("feature_version", sa.Integer(), nullable=False),
        sa.Column("features_json", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("batch_id", name="uq_condition_records_batch_id"),
    )
    op.create_index("ix_condition_records_session_id", "condition_records", ["session_id"], unique=False)
    op.create_index("ix_condition_records_category", "condition_records", ["category"], unique=False)
    op.create_index("ix_condition_records_recorded_at", "condition_records", ["recorded_at"], unique=False)
    op.create_index("ix_condition_records_lat_lon", "condition_records", ["lat", "lon"], unique=False)
    op.create_index(
        "ix_condition_records_geom_gist",
        "condition_records",
        ["geom"],
        unique=False,
        postgresql_using="gist",
    )


def downgrade() -> None:
    op.drop_index("ix_condition_records_geom_gist", table_name="condition_records", postgresql_using="gist")
    op.drop_index("ix_condition_records_lat_lon", table_name="condition_records")
    op.drop_index("ix_condition_records_recorded_at", table_name="condition_records")
    op.drop_index("ix_condition_records_category", table_name="condition_records")
    op.drop_index("ix_condition_records_session_id", table_name="condition_records")
    op.drop_table("condition_records")
