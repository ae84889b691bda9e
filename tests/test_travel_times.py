"""Tests for derived default travel and dwell times."""

from __future__ import annotations

from typing import Optional

import pytest

from transit_patterns.services.patterns.builder import (
    build_pattern_halts,
    calculate_dwell_time,
    calculate_previous_departure_times,
    calculate_travel_time,
)
from transit_patterns.services.patterns.key import PatternKey
from transit_patterns.services.patterns.records import (
    PatternLocation,
    PatternLocationGroupStop,
    PatternStop,
    StopTimeRecord,
    subtract_or_missing,
)

from .fixtures.pattern_fixture import flex_stop_time


def _fixed_key(departures: list[Optional[int]], arrivals: list[Optional[int]] | None = None) -> PatternKey:
    arrivals = arrivals if arrivals is not None else departures
    key = PatternKey("R1")
    for sequence, (arrival, departure) in enumerate(zip(arrivals, departures)):
        key.add_halt(
            StopTimeRecord(
                trip_id="T1",
                stop_sequence=sequence,
                stop_id=f"S{sequence + 1}",
                arrival_time=arrival,
                departure_time=departure,
            )
        )
    return key


def _mixed_key() -> PatternKey:
    return PatternKey.from_stop_times(
        "R1",
        [
            StopTimeRecord(trip_id="T1", stop_sequence=0, stop_id="S1", arrival_time=100, departure_time=110),
            flex_stop_time("T1", 1, 200, 400, location_id="Z1"),
            StopTimeRecord(trip_id="T1", stop_sequence=2, stop_id="S2", arrival_time=500, departure_time=520),
        ],
    )


class TestSubtractOrMissing:
    @pytest.mark.parametrize(
        ("minuend", "subtrahend", "expected"),
        [
            (10, 4, 6),
            (4, 10, -6),
            (None, 4, None),
            (10, None, None),
            (None, None, None),
        ],
    )
    def test_values(self, minuend: Optional[int], subtrahend: Optional[int], expected: Optional[int]) -> None:
        assert subtract_or_missing(minuend, subtrahend) == expected


class TestPreviousDepartureTimes:
    def test_increasing_departures(self) -> None:
        key = _fixed_key([2, 3, 4, 5, 6])
        assert calculate_previous_departure_times(key) == [0, 2, 3, 4, 5]

    def test_regression_holds_baseline(self) -> None:
        key = _fixed_key([2, 3, 0, 1, 6])
        assert calculate_previous_departure_times(key) == [0, 2, 3, 3, 3]

    def test_missing_departure_holds_baseline(self) -> None:
        key = _fixed_key([2, None, 5])
        assert calculate_previous_departure_times(key) == [0, 2, 2]

    def test_consecutive_flex_stops_reset_to_zero(self) -> None:
        key = PatternKey.from_stop_times(
            "R1",
            [
                flex_stop_time("T1", 0, 300, 600, location_id="Z1"),
                flex_stop_time("T1", 1, 600, 720, location_group_id="G1"),
            ],
        )
        assert calculate_previous_departure_times(key) == [0, 0]

    def test_flex_end_window_feeds_next_fixed_stop(self) -> None:
        assert calculate_previous_departure_times(_mixed_key()) == [0, 110, 400]

    def test_non_decreasing(self) -> None:
        key = _fixed_key([50, 10, 70, 20, 90, 0])
        previous = calculate_previous_departure_times(key)
        assert previous[0] == 0
        assert all(a <= b for a, b in zip(previous, previous[1:]))


class TestTravelAndDwell:
    def test_fixed_stops(self) -> None:
        key = _fixed_key(departures=[110, 330, 600], arrivals=[100, 300, 600])
        previous = calculate_previous_departure_times(key)

        assert [calculate_travel_time(key, i, previous) for i in range(3)] == [0, 190, 270]
        assert [calculate_dwell_time(key, i) for i in range(3)] == [10, 30, 0]

    def test_mixed_fixed_and_flex(self) -> None:
        key = _mixed_key()
        previous = calculate_previous_departure_times(key)

        assert [calculate_travel_time(key, i, previous) for i in range(3)] == [0, 90, 100]
        assert [calculate_dwell_time(key, i) for i in range(3)] == [10, 200, 20]

    def test_travel_between_flex_halts_is_zero(self) -> None:
        key = PatternKey.from_stop_times(
            "R1",
            [
                flex_stop_time("T1", 0, 300, 600, location_id="Z1"),
                flex_stop_time("T1", 1, 900, 1200, location_id="Z1"),
            ],
        )
        previous = calculate_previous_departure_times(key)
        assert calculate_travel_time(key, 1, previous) == 0

    def test_missing_arrival_propagates(self) -> None:
        key = _fixed_key(departures=[100, 200, 300], arrivals=[100, None, 300])
        previous = calculate_previous_departure_times(key)

        assert calculate_travel_time(key, 1, previous) is None
        assert calculate_dwell_time(key, 1) is None

    def test_missing_flex_window_propagates(self) -> None:
        key = PatternKey.from_stop_times(
            "R1",
            [
                StopTimeRecord(trip_id="T1", stop_sequence=0, stop_id="S1", arrival_time=0, departure_time=0),
                flex_stop_time("T1", 1, None, 600, location_id="Z1"),
            ],
        )
        previous = calculate_previous_departure_times(key)

        assert calculate_travel_time(key, 1, previous) is None
        assert calculate_dwell_time(key, 1) is None


class TestBuildPatternHalts:
    def test_halt_variants_and_defaults(self) -> None:
        key = PatternKey.from_stop_times(
            "R1",
            [
                StopTimeRecord(
                    trip_id="T1",
                    stop_sequence=0,
                    stop_id="S1",
                    arrival_time=100,
                    departure_time=110,
                    timepoint=1,
                    shape_dist_traveled=0.0,
                ),
                flex_stop_time("T1", 1, 200, 400, location_id="Z1"),
                flex_stop_time("T1", 2, 400, 500, location_group_id="G1"),
            ],
        )

        halts = build_pattern_halts(key, "7")

        stop, location, group = halts
        assert isinstance(stop, PatternStop)
        assert isinstance(location, PatternLocation)
        assert isinstance(group, PatternLocationGroupStop)
        assert [halt.stop_sequence for halt in halts] == [0, 1, 2]
        assert all(halt.pattern_id == "7" for halt in halts)
        assert (stop.default_travel_time, stop.default_dwell_time) == (0, 10)
        assert stop.timepoint == 1
        assert stop.shape_dist_traveled == 0.0
        assert (location.flex_default_travel_time, location.flex_default_zone_time) == (90, 200)
        assert (group.flex_default_travel_time, group.flex_default_zone_time) == (0, 100)

    def test_missing_times_stored_as_none(self) -> None:
        key = _fixed_key(departures=[100, 200], arrivals=[100, None])

        halts = build_pattern_halts(key, "1")

        row = halts[1].to_row()
        assert row["default_travel_time"] is None
        assert row["default_dwell_time"] is None
        # Normalization treats missing defaults as zero
        assert halts[1].travel_time == 0
        assert halts[1].dwell_time == 0

    def test_pickup_types_are_resolved(self) -> None:
        key = _fixed_key([100, 200])

        halts = build_pattern_halts(key, "1")

        assert [halt.pickup_type for halt in halts] == [0, 0]
        assert [halt.drop_off_type for halt in halts] == [0, 0]
