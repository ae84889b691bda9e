"""Human-readable, per-route unique pattern names."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from transit_patterns.logging import get_logger

if TYPE_CHECKING:
    from transit_patterns.services.patterns.finder import Pattern
    from transit_patterns.services.patterns.records import FeedLookups

logger = get_logger(__name__)

FROM_UNKNOWN = "fromTerminusNameUnknown"
TO_UNKNOWN = "toTerminusNameUnknown"
STOP_NAME_UNKNOWN = "stopNameUnknown"


@dataclass
class _RouteNaming:
    from_stops: dict[str, list[Pattern]] = field(default_factory=dict)
    to_stops: dict[str, list[Pattern]] = field(default_factory=dict)
    vias: dict[str, list[Pattern]] = field(default_factory=dict)
    patterns: list[Pattern] = field(default_factory=list)


def _add(multimap: dict[str, list[Pattern]], name: str, pattern: Pattern) -> None:
    members = multimap.setdefault(name, [])
    if not any(member is pattern for member in members):
        members.append(pattern)


def _intersect(left: list[Pattern], right: list[Pattern]) -> list[Pattern]:
    return [pattern for pattern in left if any(pattern is other for other in right)]


def terminus_name(pattern: Pattern, lookups: FeedLookups, *, is_from: bool) -> str:
    """Name of the first (or last) halt: stop, then location, then location group."""
    halt_id = pattern.ordered_halts[0 if is_from else -1]

    stop = lookups.stops.get(halt_id)
    if stop is not None:
        return stop.stop_name or stop.stop_id
    location = lookups.locations.get(halt_id)
    if location is not None:
        return location.stop_name or location.location_id
    if halt_id in lookups.location_group_stops:
        group = lookups.location_groups.get(halt_id)
        if group is not None:
            return group.location_group_name or group.location_group_id
        return halt_id
    return FROM_UNKNOWN if is_from else TO_UNKNOWN


def halt_name(halt_id: str, lookups: FeedLookups) -> str:
    """Display name of an intermediate halt."""
    stop = lookups.stops.get(halt_id)
    if stop is not None:
        return stop.stop_name or STOP_NAME_UNKNOWN
    location = lookups.locations.get(halt_id)
    if location is not None:
        return location.stop_name or STOP_NAME_UNKNOWN
    group_stop = lookups.location_group_stops.get(halt_id)
    if group_stop is not None:
        group = lookups.location_groups.get(group_stop.location_group_id)
        if group is not None and group.location_group_name:
            return group.location_group_name
    return STOP_NAME_UNKNOWN


def rename_patterns(patterns: Iterable[Pattern], lookups: FeedLookups) -> None:
    """Assign ``pattern.name`` in place, unique within each route.

    Rules, first match wins:

    1. ``from F to T`` when no other pattern on the route shares both termini.
    2. ``from F to T via V`` for the first halt name V, in halt order, that
       only this pattern among those sharing F and T passes through.
    3. ``from F to T local`` / ``express`` when exactly two patterns share F
       and T and their halt counts differ (more halts is local).
    4. ``from F to T like trip X`` with X the pattern's first trip.

    Each name is then prefixed with the halt count and suffixed with the trip
    count. Patterns with no trips or no halts are left untouched.
    """
    logger.info("Generating unique names for patterns")
    naming_by_route: dict[str, _RouteNaming] = {}

    for pattern in patterns:
        if not pattern.associated_trips or not pattern.ordered_halts:
            continue

        info = naming_by_route.setdefault(pattern.route_id, _RouteNaming())
        from_name = terminus_name(pattern, lookups, is_from=True)
        to_name = terminus_name(pattern, lookups, is_from=False)
        _add(info.from_stops, from_name, pattern)
        _add(info.to_stops, to_name, pattern)

        # Only fixed stops can act as vias
        for halt_id in pattern.ordered_halts:
            stop = lookups.stops.get(halt_id)
            if stop is None or not stop.stop_name or stop.stop_name in (from_name, to_name):
                continue
            _add(info.vias, stop.stop_name, pattern)
        info.patterns.append(pattern)

    for info in naming_by_route.values():
        for pattern in info.patterns:
            pattern.name = _base_name(pattern, info, lookups)
        for pattern in info.patterns:
            pattern.name = (
                f"{len(pattern.ordered_halts)} stops {pattern.name} "
                f"({len(pattern.associated_trips)} trips)"
            )


def _base_name(pattern: Pattern, info: _RouteNaming, lookups: FeedLookups) -> str:
    from_name = terminus_name(pattern, lookups, is_from=True)
    to_name = terminus_name(pattern, lookups, is_from=False)
    prefix = f"from {from_name} to {to_name}"

    sharing = _intersect(info.from_stops[from_name], info.to_stops[to_name])
    if len(sharing) == 1:
        return prefix

    for halt_id in pattern.ordered_halts:
        via = halt_name(halt_id, lookups)
        if len(_intersect(sharing, info.vias.get(via, []))) == 1:
            return f"{prefix} via {via}"

    if len(sharing) == 2:
        other = sharing[1] if sharing[0] is pattern else sharing[0]
        if len(pattern.ordered_halts) > len(other.ordered_halts):
            return f"{prefix} local"
        if len(pattern.ordered_halts) < len(other.ordered_halts):
            return f"{prefix} express"

    return f"{prefix} like trip {pattern.associated_trips[0]}"
