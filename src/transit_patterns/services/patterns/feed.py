"""Read trips, stop times and lookups for pattern discovery."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Optional

from sqlalchemy import text

from transit_patterns.logging import get_logger
from transit_patterns.services.patterns.records import (
    FeedLookups,
    FeedPattern,
    LocationGroupRecord,
    LocationGroupStopRecord,
    LocationRecord,
    StopRecord,
    StopTimeRecord,
    TripRecord,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

_STOP_TIME_COLUMNS = (
    "stop_sequence",
    "stop_id",
    "location_group_id",
    "location_id",
    "arrival_time",
    "departure_time",
    "start_pickup_drop_off_window",
    "end_pickup_drop_off_window",
    "pickup_type",
    "drop_off_type",
    "timepoint",
    "stop_headsign",
    "shape_dist_traveled",
    "continuous_pickup",
    "continuous_drop_off",
    "pickup_booking_rule_id",
    "drop_off_booking_rule_id",
)


def feed_pattern_order(pattern: FeedPattern) -> tuple[int, int, str]:
    """Sort key placing "2" before "10"."""
    if pattern.pattern_id.isdecimal():
        return (0, int(pattern.pattern_id), pattern.pattern_id)
    return (1, 0, pattern.pattern_id)


class FeedReader:
    """Read side of the GTFS tables."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def iter_trips_with_stop_times(
        self,
    ) -> AsyncIterator[tuple[TripRecord, list[StopTimeRecord]]]:
        """Yield each trip with its stop times ordered by stop_sequence.

        Trips come in trip_id order. Trips without stop times are skipped.
        """
        columns = ", ".join(f"st.{column}" for column in _STOP_TIME_COLUMNS)
        result = await self.session.stream(
            text(
                f"SELECT t.trip_id, t.route_id, t.shape_id, t.direction_id, {columns} "
                "FROM trips t JOIN stop_times st ON st.trip_id = t.trip_id "
                "ORDER BY t.trip_id, st.stop_sequence"
            )
        )

        trip: Optional[TripRecord] = None
        stop_times: list[StopTimeRecord] = []
        async for row in result.mappings():
            if trip is None or row["trip_id"] != trip.trip_id:
                if trip is not None:
                    yield trip, stop_times
                trip = TripRecord(
                    trip_id=row["trip_id"],
                    route_id=row["route_id"],
                    shape_id=row["shape_id"],
                    direction_id=row["direction_id"],
                )
                stop_times = []
            stop_times.append(
                StopTimeRecord(
                    trip_id=row["trip_id"],
                    **{column: row[column] for column in _STOP_TIME_COLUMNS},
                )
            )
        if trip is not None:
            yield trip, stop_times

    async def load_lookups(self) -> FeedLookups:
        lookups = FeedLookups()

        result = await self.session.execute(text("SELECT stop_id, stop_name FROM stops"))
        for stop_id, stop_name in result.fetchall():
            lookups.stops[stop_id] = StopRecord(stop_id, stop_name)

        result = await self.session.execute(text("SELECT location_id, stop_name FROM locations"))
        for location_id, stop_name in result.fetchall():
            lookups.locations[location_id] = LocationRecord(location_id, stop_name)

        result = await self.session.execute(
            text("SELECT location_group_id, location_group_name FROM location_groups")
        )
        for group_id, group_name in result.fetchall():
            lookups.location_groups[group_id] = LocationGroupRecord(group_id, group_name)

        result = await self.session.execute(
            text("SELECT location_group_id, stop_id FROM location_group_stops ORDER BY id")
        )
        for group_id, stop_id in result.fetchall():
            # One entry per group is enough to resolve its name
            lookups.location_group_stops.setdefault(
                group_id, LocationGroupStopRecord(group_id, stop_id)
            )

        logger.info(
            "Loaded pattern lookups",
            stops=len(lookups.stops),
            locations=len(lookups.locations),
            location_groups=len(lookups.location_groups),
        )
        return lookups

    async def load_feed_patterns(self) -> list[FeedPattern] | None:
        """Patterns already in the ``patterns`` table, or None if it does not exist.

        Ids are reused by position, so the rows come back in the order the
        builder numbered them: numeric ids by value, then any others by id.
        """
        result = await self.session.execute(text("SELECT to_regclass('patterns')"))
        if result.scalar() is None:
            return None

        result = await self.session.execute(
            text("SELECT pattern_id, name, route_id FROM patterns")
        )
        patterns = sorted(
            (
                FeedPattern(pattern_id=pattern_id, name=name, route_id=route_id)
                for pattern_id, name, route_id in result.fetchall()
            ),
            key=feed_pattern_order,
        )
        logger.info("Loaded feed patterns", count=len(patterns))
        return patterns
