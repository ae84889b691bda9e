"""Rewrite stop times of every trip on a pattern from its halts' default times."""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import TextClause, text

from transit_patterns.logging import get_logger
from transit_patterns.services.patterns.batch import BatchTracker
from transit_patterns.services.patterns.errors import InterpolationError
from transit_patterns.services.patterns.records import PatternStop, halt_from_row
from transit_patterns.services.patterns.tables import DEFAULT_TABLES

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from transit_patterns.services.patterns.records import PatternHalt
    from transit_patterns.services.patterns.tables import PatternTables

logger = get_logger(__name__)

_PATTERN_TRIP = "trips.trip_id = stop_times.trip_id AND trips.pattern_id = :pattern_id"

_NORMAL_SET = "arrival_time = :arrival, departure_time = :departure"
_FLEX_SET = "start_pickup_drop_off_window = :arrival, end_pickup_drop_off_window = :departure"


def _update_sql(set_clause: str, single_trip: bool) -> TextClause:
    trip_filter = "stop_times.trip_id = :trip_id AND " if single_trip else ""
    return text(
        f"UPDATE stop_times SET {set_clause} FROM trips "
        f"WHERE {trip_filter}{_PATTERN_TRIP} AND stop_times.stop_sequence = :stop_sequence"
    )


@dataclass(frozen=True)
class HaltTimes:
    stop_sequence: int
    arrival: int
    departure: int
    is_flex: bool = False


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def seed_time(row: Any, begin_stop_sequence: int) -> Optional[int]:
    """Starting clock for a trip from the stop time just before the range.

    Uses the departure (or end of window for flex rows) when the range starts
    after the first halt, else the arrival (or start of window).
    """
    if row is None:
        return None
    is_flex = not row["stop_id"]
    if begin_stop_sequence > 0:
        return row["end_pickup_drop_off_window"] if is_flex else row["departure_time"]
    return row["start_pickup_drop_off_window"] if is_flex else row["arrival_time"]


def accumulate_halt_times(seed: int, halts: Sequence[PatternHalt]) -> list[HaltTimes]:
    """``arrival = cumulative + travel`` and ``departure = arrival + dwell`` per halt."""
    cumulative = seed
    times: list[HaltTimes] = []
    for halt in halts:
        arrival = cumulative + halt.travel_time
        departure = arrival + halt.dwell_time
        times.append(HaltTimes(halt.stop_sequence, arrival, departure, halt.is_flex))
        cumulative = departure
    return times


def interpolate_stop_times(
    seed: int, stops: Sequence[PatternStop], interpolate: bool
) -> list[HaltTimes]:
    """Times for fixed stops, optionally interpolating between timepoints.

    With ``interpolate`` set, only timepoints use their default travel time.
    A stop between two timepoints is placed at the previous timepoint's
    departure plus its distance from it divided by the speed implied by the
    next timepoint. Interpolated stops do not move the clock used for later
    timepoints.

    Raises:
        InterpolationError: If a stop has no shape distance, the range does not
            start at a timepoint, or there are fewer than 2 timepoints.
    """
    if not interpolate:
        return accumulate_halt_times(seed, stops)

    distances: dict[int, float] = {}
    for stop in stops:
        if stop.shape_dist_traveled is None:
            raise InterpolationError(
                "Shape_dist_traveled must be defined for all stops in order to perform interpolation"
            )
        distances[stop.stop_sequence] = stop.shape_dist_traveled
    timepoints = [stop for stop in stops if stop.timepoint == 1]
    if len(timepoints) < 2:
        raise InterpolationError(
            "Issue in pattern stops which prevents interpolation (e.g. less than 2 timepoints)"
        )

    cumulative = seed
    timepoints_seen = 0
    previous_timepoint: Optional[PatternStop] = None
    times: list[HaltTimes] = []
    for stop in stops:
        if stop.timepoint == 1:
            arrival = cumulative + stop.travel_time
            departure = arrival + stop.dwell_time
            cumulative = departure
            timepoints_seen += 1
            previous_timepoint = stop
            times.append(HaltTimes(stop.stop_sequence, arrival, departure))
            continue

        if previous_timepoint is None or timepoints_seen >= len(timepoints):
            raise InterpolationError(
                "Issue in pattern stops which prevents interpolation (e.g. less than 2 timepoints)"
            )
        next_timepoint = timepoints[timepoints_seen]
        previous_distance = distances[previous_timepoint.stop_sequence]
        distance = distances[next_timepoint.stop_sequence] - previous_distance
        if not next_timepoint.default_travel_time or distance <= 0:
            raise InterpolationError(
                "Error with stop time interpolation: timepoint travel time or shape_dist_traveled is invalid"
            )
        speed = distance / next_timepoint.default_travel_time
        offset = _round_half_up((distances[stop.stop_sequence] - previous_distance) / speed)
        # Interpolated stops get no dwell
        times.append(HaltTimes(stop.stop_sequence, cumulative + offset, cumulative + offset))
    return times


class _StatementTracker:
    """Single-trip and all-trips update batches for one halt kind."""

    def __init__(self, session: AsyncSession, set_clause: str, label: str) -> None:
        self.single_trip = BatchTracker(
            session, f"{label}, single trip", _update_sql(set_clause, single_trip=True)
        )
        self.all_trips = BatchTracker(
            session, f"{label}, all trips", _update_sql(set_clause, single_trip=False)
        )

    def tracker(self, trip_id: str | None) -> BatchTracker:
        return self.single_trip if trip_id is not None else self.all_trips

    async def execute_remaining(self) -> int:
        return await self.single_trip.execute_remaining() + await self.all_trips.execute_remaining()


class StopTimeNormalizer:
    """Recomputes arrival/departure (or flex window) values for a pattern's trips.

    Does not commit. Must run after reconciliation so stop_times sequences
    mirror the pattern's halts.
    """

    def __init__(self, session: AsyncSession, tables: PatternTables = DEFAULT_TABLES) -> None:
        self.session = session
        self.tables = tables
        self._normal = _StatementTracker(session, _NORMAL_SET, "Normal stop")
        self._flex = _StatementTracker(session, _FLEX_SET, "Flex stop")

    async def load_halts(self, pattern_id: str, begin_stop_sequence: int = 0) -> list[PatternHalt]:
        result = await self.session.execute(
            text(
                f"SELECT * FROM {self.tables.pattern_stops.name} "
                "WHERE pattern_id = :pattern_id AND stop_sequence >= :begin "
                "ORDER BY stop_sequence"
            ),
            {"pattern_id": pattern_id, "begin": begin_stop_sequence},
        )
        return [halt_from_row(row._mapping) for row in result.fetchall()]

    async def _seed_times(self, pattern_id: str, first_stop_sequence: int) -> dict[str, int]:
        previous_sequence = first_stop_sequence - 1 if first_stop_sequence > 0 else 0
        result = await self.session.execute(
            text(
                "SELECT trips.trip_id, st.stop_id, st.arrival_time, st.departure_time, "
                "st.start_pickup_drop_off_window, st.end_pickup_drop_off_window "
                "FROM trips LEFT JOIN stop_times st "
                "ON st.trip_id = trips.trip_id AND st.stop_sequence = :previous_sequence "
                "WHERE trips.pattern_id = :pattern_id ORDER BY trips.trip_id"
            ),
            {"pattern_id": pattern_id, "previous_sequence": previous_sequence},
        )
        seeds: dict[str, int] = {}
        for row in result.fetchall():
            mapping = row._mapping
            seed = seed_time(mapping, first_stop_sequence)
            if seed is None:
                logger.warning(
                    "Missing previous stop time, starting from zero",
                    pattern_id=pattern_id,
                    trip_id=mapping["trip_id"],
                    stop_sequence=previous_sequence,
                )
                seed = 0
            seeds[mapping["trip_id"]] = seed
        return seeds

    async def _add_update(
        self, pattern_id: str, times: HaltTimes, trip_id: str | None
    ) -> None:
        tracker = (self._flex if times.is_flex else self._normal).tracker(trip_id)
        params: dict[str, Any] = {
            "arrival": times.arrival,
            "departure": times.departure,
            "pattern_id": pattern_id,
            "stop_sequence": times.stop_sequence,
        }
        if trip_id is not None:
            params["trip_id"] = trip_id
        await tracker.add(params)

    async def _execute_all(self) -> int:
        updated = await self._flex.execute_remaining() + await self._normal.execute_remaining()
        logger.info("Updated stop times", updated=updated)
        return updated

    async def normalize_from(self, begin_stop_sequence: int, pattern_id: str) -> int:
        """Normalize every halt kind from ``begin_stop_sequence`` (inclusive).

        Returns:
            Number of stop time updates executed.
        """
        halts = await self.load_halts(pattern_id, begin_stop_sequence)
        if not halts:
            return 0
        seeds = await self._seed_times(pattern_id, halts[0].stop_sequence)
        for trip_id, seed in seeds.items():
            for times in accumulate_halt_times(seed, halts):
                await self._add_update(pattern_id, times, trip_id)
        return await self._execute_all()

    async def normalize_stop_times(
        self, pattern_id: str, begin_stop_sequence: int = 0, interpolate: bool = False
    ) -> int:
        """Normalize fixed stops only, optionally interpolating between timepoints.

        Raises:
            InterpolationError: If interpolation is requested but not possible.
        """
        halts = await self.load_halts(pattern_id, begin_stop_sequence)
        stops = [halt for halt in halts if isinstance(halt, PatternStop)]
        if not stops:
            return 0
        seeds = await self._seed_times(pattern_id, stops[0].stop_sequence)
        for trip_id, seed in seeds.items():
            for times in interpolate_stop_times(seed, stops, interpolate):
                await self._add_update(pattern_id, times, trip_id)
        return await self._execute_all()

    async def update_pattern_frequencies(self, halts: Sequence[PatternHalt]) -> int:
        """Rewrite stop times of every trip on a frequency-based pattern from time 0."""
        ordered = sorted(halts, key=lambda halt: halt.stop_sequence)
        if not ordered:
            return 0
        pattern_id = ordered[0].pattern_id
        if pattern_id is None:
            raise ValueError("Frequency update needs halts that carry their pattern_id")
        for times in accumulate_halt_times(0, ordered):
            await self._add_update(pattern_id, times, None)
        return await self._execute_all()

