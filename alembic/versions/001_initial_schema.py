"""Initial schema: GTFS tables read by the pattern builder, plus error tables.

Revision ID: 001
Revises:
Create Date: 2024-01-01 00:00:00.000000

"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Create stops table
    op.create_table(
        "stops",
        sa.Column("stop_id", sa.String(64), nullable=False),
        sa.Column("stop_name", sa.String(255), nullable=True),
        sa.Column("stop_lat", sa.Float(), nullable=True),
        sa.Column("stop_lon", sa.Float(), nullable=True),
        sa.PrimaryKeyConstraint("stop_id"),
    )

    # Create locations table (GTFS-Flex zones)
    op.create_table(
        "locations",
        sa.Column("location_id", sa.String(64), nullable=False),
        sa.Column("stop_name", sa.String(255), nullable=True),
        sa.Column("stop_desc", sa.String(255), nullable=True),
        sa.PrimaryKeyConstraint("location_id"),
    )

    # Create location_groups table
    op.create_table(
        "location_groups",
        sa.Column("location_group_id", sa.String(64), nullable=False),
        sa.Column("location_group_name", sa.String(255), nullable=True),
        sa.PrimaryKeyConstraint("location_group_id"),
    )

    # Create location_group_stops table
    op.create_table(
        "location_group_stops",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("location_group_id", sa.String(64), nullable=False),
        sa.Column("stop_id", sa.String(64), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["location_group_id"],
            ["location_groups.location_group_id"],
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(["stop_id"], ["stops.stop_id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_location_group_stops_group_id", "location_group_stops", ["location_group_id"]
    )

    # Create routes table
    op.create_table(
        "routes",
        sa.Column("route_id", sa.String(64), nullable=False),
        sa.Column("route_short_name", sa.String(64), nullable=True),
        sa.Column("route_long_name", sa.String(255), nullable=True),
        sa.PrimaryKeyConstraint("route_id"),
    )

    # Create trips table (pattern_id is added by the pattern builder)
    op.create_table(
        "trips",
        sa.Column("trip_id", sa.String(128), nullable=False),
        sa.Column("route_id", sa.String(64), nullable=False),
        sa.Column("service_id", sa.String(64), nullable=False),
        sa.Column("direction_id", sa.Integer(), nullable=True),
        sa.Column("shape_id", sa.String(64), nullable=True),
        sa.Column("trip_headsign", sa.String(255), nullable=True),
        sa.PrimaryKeyConstraint("trip_id"),
        sa.ForeignKeyConstraint(["route_id"], ["routes.route_id"], ondelete="CASCADE"),
    )
    op.create_index("ix_trips_route_id", "trips", ["route_id"])

    # Create stop_times table
    op.create_table(
        "stop_times",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("trip_id", sa.String(128), nullable=False),
        sa.Column("stop_sequence", sa.Integer(), nullable=False),
        sa.Column("stop_id", sa.String(64), nullable=True),
        sa.Column("location_group_id", sa.String(64), nullable=True),
        sa.Column("location_id", sa.String(64), nullable=True),
        sa.Column("arrival_time", sa.Integer(), nullable=True),
        sa.Column("departure_time", sa.Integer(), nullable=True),
        sa.Column("start_pickup_drop_off_window", sa.Integer(), nullable=True),
        sa.Column("end_pickup_drop_off_window", sa.Integer(), nullable=True),
        sa.Column("stop_headsign", sa.String(255), nullable=True),
        sa.Column("pickup_type", sa.Integer(), nullable=True),
        sa.Column("drop_off_type", sa.Integer(), nullable=True),
        sa.Column("continuous_pickup", sa.Integer(), nullable=True),
        sa.Column("continuous_drop_off", sa.Integer(), nullable=True),
        sa.Column("shape_dist_traveled", sa.Float(), nullable=True),
        sa.Column("timepoint", sa.Integer(), nullable=True),
        sa.Column("pickup_booking_rule_id", sa.String(64), nullable=True),
        sa.Column("drop_off_booking_rule_id", sa.String(64), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["trip_id"], ["trips.trip_id"], ondelete="CASCADE"),
    )
    # Not unique: sequences are shifted in place while a pattern is reconciled
    op.create_index("ix_stop_times_trip_sequence", "stop_times", ["trip_id", "stop_sequence"])

    # Create errors table
    op.create_table(
        "errors",
        sa.Column("error_id", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("type", sa.String(64), nullable=False),
        sa.Column("problems", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("error_id"),
    )

    # Create error_refs table
    op.create_table(
        "error_refs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("error_id", sa.Integer(), nullable=False),
        sa.Column("entity_type", sa.String(64), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=True),
        sa.Column("entity_id", sa.String(128), nullable=True),
        sa.Column("sequence_number", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["error_id"], ["errors.error_id"], ondelete="CASCADE"),
    )
    op.create_index("ix_error_refs_error_id", "error_refs", ["error_id"])


def downgrade() -> None:
    # Drop tables in reverse order (respecting foreign key constraints)
    op.drop_table("error_refs")
    op.drop_table("errors")
    op.drop_table("stop_times")
    op.drop_table("trips")
    op.drop_table("routes")
    op.drop_table("location_group_stops")
    op.drop_table("location_groups")
    op.drop_table("locations")
    op.drop_table("stops")
