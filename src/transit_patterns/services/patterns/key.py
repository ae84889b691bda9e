"""Identity of a trip's stop pattern."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Optional

from transit_patterns.services.patterns.errors import PatternError
from transit_patterns.services.patterns.records import StopTimeRecord, resolve_or_default


class PatternKey:
    """Parallel per-position sequences describing the halts of a trip.

    Two keys are equal when the route, the halt identities, the resolved
    pickup/drop-off types and the flex windows match position by position.
    Clock times and other payload sequences are carried along but do not take
    part in equality, so trips run at different times share a key.
    """

    def __init__(self, route_id: str) -> None:
        self.route_id = route_id
        self._frozen = False

        # Identity
        self.is_flex_stop: list[bool] = []
        self.stops: list[str] = []
        self.location_group_ids: list[str] = []
        self.location_ids: list[str] = []
        self.pickup_types: list[int] = []
        self.dropoff_types: list[int] = []
        self.start_pickup_drop_off_windows: list[Optional[int]] = []
        self.end_pickup_drop_off_windows: list[Optional[int]] = []

        # Payload
        self.arrival_times: list[Optional[int]] = []
        self.departure_times: list[Optional[int]] = []
        self.timepoints: list[Optional[int]] = []
        self.stop_headsigns: list[Optional[str]] = []
        self.shape_distances: list[Optional[float]] = []
        self.continuous_pickups: list[Optional[int]] = []
        self.continuous_drop_offs: list[Optional[int]] = []
        self.pickup_booking_rule_ids: list[Optional[str]] = []
        self.drop_off_booking_rule_ids: list[Optional[str]] = []

    @classmethod
    def from_stop_times(cls, route_id: str, stop_times: Iterable[StopTimeRecord]) -> PatternKey:
        key = cls(route_id)
        for stop_time in stop_times:
            key.add_halt(stop_time)
        return key

    def add_halt(self, stop_time: StopTimeRecord) -> None:
        if self._frozen:
            raise PatternError("Cannot add halts to a pattern key that is already in use")

        self.is_flex_stop.append(stop_time.is_flex)
        self.stops.append(stop_time.stop_id or "")
        self.location_group_ids.append(stop_time.location_group_id or "")
        self.location_ids.append(stop_time.location_id or "")
        self.pickup_types.append(resolve_or_default(stop_time.pickup_type))
        self.dropoff_types.append(resolve_or_default(stop_time.drop_off_type))
        self.start_pickup_drop_off_windows.append(stop_time.start_pickup_drop_off_window)
        self.end_pickup_drop_off_windows.append(stop_time.end_pickup_drop_off_window)

        self.arrival_times.append(stop_time.arrival_time)
        self.departure_times.append(stop_time.departure_time)
        self.timepoints.append(stop_time.timepoint)
        self.stop_headsigns.append(stop_time.stop_headsign)
        self.shape_distances.append(stop_time.shape_dist_traveled)
        self.continuous_pickups.append(stop_time.continuous_pickup)
        self.continuous_drop_offs.append(stop_time.continuous_drop_off)
        self.pickup_booking_rule_ids.append(stop_time.pickup_booking_rule_id)
        self.drop_off_booking_rule_ids.append(stop_time.drop_off_booking_rule_id)

    def freeze(self) -> PatternKey:
        """Mark the key immutable. Called before it is used as a dict key."""
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def ordered_halts(self) -> list[str]:
        """Reference id per position (stop, else location group, else location)."""
        return [
            stop or group or location
            for stop, group, location in zip(
                self.stops, self.location_group_ids, self.location_ids
            )
        ]

    def _identity(self) -> tuple:
        return (
            self.route_id,
            tuple(self.stops),
            tuple(self.location_group_ids),
            tuple(self.location_ids),
            tuple(self.pickup_types),
            tuple(self.dropoff_types),
            tuple(self.start_pickup_drop_off_windows),
            tuple(self.end_pickup_drop_off_windows),
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PatternKey):
            return NotImplemented
        return self._identity() == other._identity()

    def __hash__(self) -> int:
        return hash(self._identity())

    def __len__(self) -> int:
        return len(self.stops)

    def __repr__(self) -> str:
        return f"PatternKey(route_id={self.route_id!r}, halts={self.ordered_halts!r})"
