"""Plain records shared by pattern discovery, persistence and editing.

Optional numeric values are ``None`` when missing. Arithmetic on a missing
operand yields ``None`` rather than a substituted zero.
"""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from transit_patterns.services.patterns.errors import MissingReferenceIdError


def subtract_or_missing(minuend: Optional[int], subtrahend: Optional[int]) -> Optional[int]:
    """Return ``minuend - subtrahend``, or None if either value is missing."""
    if minuend is None or subtrahend is None:
        return None
    return minuend - subtrahend


def resolve_or_default(value: Optional[int], default: int = 0) -> int:
    return default if value is None else value


def _first_present(*values: Optional[str]) -> Optional[str]:
    for value in values:
        if value:
            return value
    return None


@dataclass(frozen=True)
class StopTimeRecord:
    """One row of ``stop_times`` as read for pattern discovery."""

    trip_id: str
    stop_sequence: int
    stop_id: Optional[str] = None
    location_group_id: Optional[str] = None
    location_id: Optional[str] = None
    arrival_time: Optional[int] = None
    departure_time: Optional[int] = None
    start_pickup_drop_off_window: Optional[int] = None
    end_pickup_drop_off_window: Optional[int] = None
    pickup_type: Optional[int] = None
    drop_off_type: Optional[int] = None
    timepoint: Optional[int] = None
    stop_headsign: Optional[str] = None
    shape_dist_traveled: Optional[float] = None
    continuous_pickup: Optional[int] = None
    continuous_drop_off: Optional[int] = None
    pickup_booking_rule_id: Optional[str] = None
    drop_off_booking_rule_id: Optional[str] = None

    @property
    def reference_id(self) -> Optional[str]:
        return _first_present(self.stop_id, self.location_group_id, self.location_id)

    @property
    def is_flex(self) -> bool:
        return not self.stop_id


@dataclass(frozen=True)
class TripRecord:
    trip_id: str
    route_id: str
    shape_id: Optional[str] = None
    direction_id: Optional[int] = None


@dataclass(frozen=True)
class StopRecord:
    stop_id: str
    stop_name: Optional[str] = None


@dataclass(frozen=True)
class LocationRecord:
    location_id: str
    stop_name: Optional[str] = None


@dataclass(frozen=True)
class LocationGroupRecord:
    location_group_id: str
    location_group_name: Optional[str] = None


@dataclass(frozen=True)
class LocationGroupStopRecord:
    location_group_id: str
    stop_id: Optional[str] = None


@dataclass
class FeedLookups:
    """Id-keyed lookups used to name patterns.

    ``location_group_stops`` is keyed by location group id.
    """

    stops: dict[str, StopRecord] = field(default_factory=dict)
    locations: dict[str, LocationRecord] = field(default_factory=dict)
    location_groups: dict[str, LocationGroupRecord] = field(default_factory=dict)
    location_group_stops: dict[str, LocationGroupStopRecord] = field(default_factory=dict)


@dataclass(frozen=True)
class FeedPattern:
    """A pattern row supplied by the feed itself (patterns.txt)."""

    pattern_id: str
    name: Optional[str] = None
    route_id: Optional[str] = None


class HaltKind(str, enum.Enum):
    STOP = "stop"
    LOCATION = "location"
    LOCATION_GROUP = "location_group"


@dataclass(kw_only=True)
class _HaltBase:
    pattern_id: Optional[str] = None
    stop_sequence: int = 0
    pickup_type: Optional[int] = None
    drop_off_type: Optional[int] = None
    timepoint: Optional[int] = None
    stop_headsign: Optional[str] = None
    continuous_pickup: Optional[int] = None
    continuous_drop_off: Optional[int] = None
    pickup_booking_rule_id: Optional[str] = None
    drop_off_booking_rule_id: Optional[str] = None

    def _common_row(self) -> dict[str, Any]:
        return {
            "pattern_id": self.pattern_id,
            "stop_sequence": self.stop_sequence,
            "stop_id": None,
            "location_group_id": None,
            "location_id": None,
            "stop_headsign": self.stop_headsign,
            "default_travel_time": None,
            "default_dwell_time": None,
            "flex_default_travel_time": None,
            "flex_default_zone_time": None,
            "drop_off_type": self.drop_off_type,
            "pickup_type": self.pickup_type,
            "shape_dist_traveled": None,
            "timepoint": self.timepoint,
            "continuous_pickup": self.continuous_pickup,
            "continuous_drop_off": self.continuous_drop_off,
            "pickup_booking_rule_id": self.pickup_booking_rule_id,
            "drop_off_booking_rule_id": self.drop_off_booking_rule_id,
        }


@dataclass(kw_only=True)
class PatternStop(_HaltBase):
    """A fixed stop within a pattern."""

    stop_id: str
    default_travel_time: Optional[int] = None
    default_dwell_time: Optional[int] = None
    shape_dist_traveled: Optional[float] = None

    def __post_init__(self) -> None:
        if not self.stop_id:
            raise MissingReferenceIdError()

    kind = HaltKind.STOP
    is_flex = False

    @property
    def reference_id(self) -> str:
        return self.stop_id

    @property
    def travel_time(self) -> int:
        return resolve_or_default(self.default_travel_time)

    @property
    def dwell_time(self) -> int:
        return resolve_or_default(self.default_dwell_time)

    def to_row(self) -> dict[str, Any]:
        row = self._common_row()
        row.update(
            stop_id=self.stop_id,
            default_travel_time=self.default_travel_time,
            default_dwell_time=self.default_dwell_time,
            shape_dist_traveled=self.shape_dist_traveled,
        )
        return row


@dataclass(kw_only=True)
class _FlexHalt(_HaltBase):
    flex_default_travel_time: Optional[int] = None
    flex_default_zone_time: Optional[int] = None

    is_flex = True

    @property
    def travel_time(self) -> int:
        return resolve_or_default(self.flex_default_travel_time)

    @property
    def dwell_time(self) -> int:
        return resolve_or_default(self.flex_default_zone_time)

    def _flex_row(self) -> dict[str, Any]:
        row = self._common_row()
        row.update(
            flex_default_travel_time=self.flex_default_travel_time,
            flex_default_zone_time=self.flex_default_zone_time,
        )
        return row


@dataclass(kw_only=True)
class PatternLocation(_FlexHalt):
    """A flex zone (location) within a pattern."""

    location_id: str

    def __post_init__(self) -> None:
        if not self.location_id:
            raise MissingReferenceIdError()

    kind = HaltKind.LOCATION

    @property
    def reference_id(self) -> str:
        return self.location_id

    def to_row(self) -> dict[str, Any]:
        row = self._flex_row()
        row["location_id"] = self.location_id
        return row


@dataclass(kw_only=True)
class PatternLocationGroupStop(_FlexHalt):
    """A location group within a pattern."""

    location_group_id: str

    def __post_init__(self) -> None:
        if not self.location_group_id:
            raise MissingReferenceIdError()

    kind = HaltKind.LOCATION_GROUP

    @property
    def reference_id(self) -> str:
        return self.location_group_id

    def to_row(self) -> dict[str, Any]:
        row = self._flex_row()
        row["location_group_id"] = self.location_group_id
        return row


PatternHalt = Union[PatternStop, PatternLocation, PatternLocationGroupStop]

REFERENCE_ID_FIELDS = ("stop_id", "location_group_id", "location_id")

_COMMON_FIELDS = (
    "pattern_id",
    "pickup_type",
    "drop_off_type",
    "timepoint",
    "stop_headsign",
    "continuous_pickup",
    "continuous_drop_off",
    "pickup_booking_rule_id",
    "drop_off_booking_rule_id",
)


def halt_from_row(row: Mapping[str, Any]) -> PatternHalt:
    """Build the halt variant matching whichever reference id the row carries.

    Raises:
        MissingReferenceIdError: If the row does not have exactly one of
            stop_id, location_group_id or location_id.
    """
    reference_ids = [name for name in REFERENCE_ID_FIELDS if row.get(name)]
    if len(reference_ids) > 1:
        raise MissingReferenceIdError(
            "A pattern stop must contain a value for only one of stop_id, "
            f"location_group_id or location_id (got {', '.join(reference_ids)})."
        )

    common: dict[str, Any] = {name: row.get(name) for name in _COMMON_FIELDS}
    common["stop_sequence"] = row.get("stop_sequence") or 0

    if row.get("stop_id"):
        return PatternStop(
            stop_id=row["stop_id"],
            default_travel_time=row.get("default_travel_time"),
            default_dwell_time=row.get("default_dwell_time"),
            shape_dist_traveled=row.get("shape_dist_traveled"),
            **common,
        )
    if row.get("location_group_id"):
        return PatternLocationGroupStop(
            location_group_id=row["location_group_id"],
            flex_default_travel_time=row.get("flex_default_travel_time"),
            flex_default_zone_time=row.get("flex_default_zone_time"),
            **common,
        )
    if row.get("location_id"):
        return PatternLocation(
            location_id=row["location_id"],
            flex_default_travel_time=row.get("flex_default_travel_time"),
            flex_default_zone_time=row.get("flex_default_zone_time"),
            **common,
        )
    raise MissingReferenceIdError()
