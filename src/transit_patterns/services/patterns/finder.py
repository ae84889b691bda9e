"""Group trips into patterns by their sequence of halts."""

from __future__ import annotations

from collections.abc import Collection, Iterable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from transit_patterns.config import get_settings
from transit_patterns.logging import get_logger
from transit_patterns.services.patterns.errors import (
    ErrorCollector,
    ErrorType,
    GtfsError,
    PatternFinderStateError,
)
from transit_patterns.services.patterns.key import PatternKey
from transit_patterns.services.patterns.namer import rename_patterns
from transit_patterns.services.patterns.records import FeedLookups, FeedPattern

if TYPE_CHECKING:
    from transit_patterns.services.patterns.errors import ErrorSink
    from transit_patterns.services.patterns.records import StopTimeRecord, TripRecord

logger = get_logger(__name__)


def sorted_shapes(shapes: Collection[Optional[str]], keep_missing: bool = False) -> list[Optional[str]]:
    """Shape ids in sort order, with None (no shape) last when kept."""
    ordered: list[Optional[str]] = sorted(shape for shape in shapes if shape is not None)
    if keep_missing and None in shapes:
        ordered.append(None)
    return ordered


@dataclass(eq=False)
class Pattern:
    """A discovered sequence of halts shared by one or more trips."""

    pattern_id: Optional[str]
    route_id: str
    ordered_halts: list[str]
    associated_trips: list[str] = field(default_factory=list)
    # None stands for trips without a shape_id
    associated_shapes: set[Optional[str]] = field(default_factory=set)
    direction_id: Optional[int] = None
    name: Optional[str] = None
    errors: list[GtfsError] = field(default_factory=list)

    def to_row(self) -> dict[str, object]:
        return {
            "pattern_id": self.pattern_id,
            "route_id": self.route_id,
            "name": self.name,
            "direction_id": self.direction_id,
            "shape_id": next(iter(sorted_shapes(self.associated_shapes)), None),
        }


class PatternFinder:
    """Accumulates trips, then produces one :class:`Pattern` per distinct key.

    ``create_pattern_objects`` may be called once. After that the finder is
    finalized and rejects further trips.
    """

    def __init__(self, progress_interval: int | None = None) -> None:
        self._trips_for_key: dict[PatternKey, list[TripRecord]] = {}
        self._trips_processed = 0
        self._finalized = False
        self._progress_interval = progress_interval or get_settings().pattern_progress_interval

    @property
    def trips_processed(self) -> int:
        return self._trips_processed

    @property
    def pattern_count(self) -> int:
        return len(self._trips_for_key)

    def process_trip(self, trip: TripRecord, ordered_stop_times: Iterable[StopTimeRecord]) -> None:
        if self._finalized:
            raise PatternFinderStateError("Pattern objects have already been created")

        self._trips_processed += 1
        if self._trips_processed % self._progress_interval == 0:
            logger.info("Processed trips", trips=self._trips_processed)

        key = PatternKey.from_stop_times(trip.route_id, ordered_stop_times).freeze()
        self._trips_for_key.setdefault(key, []).append(trip)

    def can_use_feed_patterns(self, feed_patterns: Optional[Sequence[FeedPattern]]) -> bool:
        """Feed patterns are reused only when there is exactly one per distinct key."""
        usable = feed_patterns is not None and len(feed_patterns) == len(self._trips_for_key)
        logger.info("Using patterns from feed", usable=usable)
        return usable

    def create_pattern_objects(
        self,
        lookups: FeedLookups,
        feed_patterns: Optional[Sequence[FeedPattern]] = None,
        error_sink: ErrorSink | None = None,
    ) -> dict[PatternKey, Pattern]:
        """Build patterns in first-seen key order.

        Ids and names come from ``feed_patterns`` by position when they can be
        reused, otherwise ids are "1", "2", ... and patterns are named.

        Raises:
            PatternFinderStateError: If called more than once.
        """
        if self._finalized:
            raise PatternFinderStateError("Pattern objects have already been created")
        self._finalized = True

        use_feed_patterns = self.can_use_feed_patterns(feed_patterns)
        patterns: dict[PatternKey, Pattern] = {}

        for index, (key, trips) in enumerate(self._trips_for_key.items()):
            pattern = Pattern(
                pattern_id=None,
                route_id=key.route_id,
                ordered_halts=key.ordered_halts,
                associated_trips=[trip.trip_id for trip in trips],
                direction_id=trips[0].direction_id,
            )
            if use_feed_patterns and feed_patterns is not None:
                pattern.pattern_id = feed_patterns[index].pattern_id
                pattern.name = feed_patterns[index].name
            else:
                # 1-based so no pattern id is ever "0"
                pattern.pattern_id = str(index + 1)

            pattern.associated_shapes = {trip.shape_id or None for trip in trips}
            if len(pattern.associated_shapes) > 1:
                error = GtfsError.for_entity(
                    "Pattern",
                    pattern.pattern_id,
                    ErrorType.MULTIPLE_SHAPES_FOR_PATTERN,
                    bad_value=str(sorted_shapes(pattern.associated_shapes, keep_missing=True)),
                )
                pattern.errors.append(error)
                if error_sink is not None:
                    error_sink.store_error(error)

            patterns[key] = pattern

        if not use_feed_patterns:
            rename_patterns(patterns.values(), lookups)

        logger.info("Pattern objects created", total=len(patterns), trips=self._trips_processed)
        return patterns


@dataclass
class DiscoveryResult:
    patterns: dict[PatternKey, Pattern]
    errors: list[GtfsError]
    reuse_feed_patterns: bool


def discover_patterns(
    trips_with_stop_times: Iterable[tuple[TripRecord, Sequence[StopTimeRecord]]],
    feed_patterns: Optional[Sequence[FeedPattern]],
    lookups: FeedLookups,
    error_sink: ErrorSink | None = None,
) -> DiscoveryResult:
    """Run pattern discovery over every trip and collect non-fatal errors."""
    finder = PatternFinder()
    for trip, stop_times in trips_with_stop_times:
        finder.process_trip(trip, stop_times)

    collector = ErrorCollector()
    reuse = finder.can_use_feed_patterns(feed_patterns)
    patterns = finder.create_pattern_objects(lookups, feed_patterns, collector)
    if error_sink is not None:
        for error in collector.errors:
            error_sink.store_error(error)

    return DiscoveryResult(patterns=patterns, errors=collector.errors, reuse_feed_patterns=reuse)
