"""GTFS static data models (including GTFS-Flex locations)."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from transit_patterns.models.base import Base


class Stop(Base):
    """Fixed transit stop/station."""

    __tablename__ = "stops"

    stop_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    stop_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    stop_lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    stop_lon: Mapped[Optional[float]] = mapped_column(Float, nullable=True)


class Location(Base):
    """GTFS-Flex zone (a row of locations.geojson)."""

    __tablename__ = "locations"

    location_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    stop_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    stop_desc: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)


class LocationGroup(Base):
    """Named group of stops that can be served as one flex halt."""

    __tablename__ = "location_groups"

    location_group_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    location_group_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)


class LocationGroupStop(Base):
    """Membership of a stop in a location group."""

    __tablename__ = "location_group_stops"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    location_group_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("location_groups.location_group_id", ondelete="CASCADE"),
        nullable=False,
    )
    stop_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("stops.stop_id", ondelete="CASCADE"), nullable=False
    )

    __table_args__ = (Index("ix_location_group_stops_group_id", "location_group_id"),)


class Route(Base):
    """Transit route."""

    __tablename__ = "routes"

    route_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    route_short_name: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    route_long_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    trips: Mapped[list[Trip]] = relationship("Trip", back_populates="route", lazy="selectin")


class Trip(Base):
    """Transit trip. ``pattern_id`` is added by the pattern builder."""

    __tablename__ = "trips"

    trip_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    route_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("routes.route_id", ondelete="CASCADE"), nullable=False
    )
    service_id: Mapped[str] = mapped_column(String(64), nullable=False)
    direction_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    shape_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    trip_headsign: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    route: Mapped[Route] = relationship("Route", back_populates="trips")

    __table_args__ = (Index("ix_trips_route_id", "route_id"),)


class StopTime(Base):
    """One visit of a trip to a stop, location or location group.

    Exactly one of ``stop_id``, ``location_group_id`` and ``location_id`` is set.
    Flex rows use the pickup/drop-off window instead of arrival/departure.
    """

    __tablename__ = "stop_times"

    # Surrogate key: stop_sequence is shifted in place when patterns are edited.
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    trip_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("trips.trip_id", ondelete="CASCADE"), nullable=False
    )
    stop_sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    stop_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    location_group_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    location_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Seconds from midnight of the service day
    arrival_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    departure_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    start_pickup_drop_off_window: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    end_pickup_drop_off_window: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    stop_headsign: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    pickup_type: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    drop_off_type: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    continuous_pickup: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    continuous_drop_off: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    shape_dist_traveled: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    timepoint: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    pickup_booking_rule_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    drop_off_booking_rule_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    __table_args__ = (Index("ix_stop_times_trip_sequence", "trip_id", "stop_sequence"),)
