"""Apply one structural edit of a pattern's halts to the stop times of its trips.

Reconciliation runs in two steps. :func:`stage_reconciliation` compares the
stored reference ids with the new halts and returns a :class:`PatternDiff`
(or raises when the edit is not a single supported change).
:func:`apply_reconciliation` then runs the matching SQL for every trip on the
pattern. Only one addition, deletion or move may be made at a time, except
that several halts may be appended to the end.
"""

from __future__ import annotations

import enum
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import text

from transit_patterns.logging import get_logger
from transit_patterns.services.patterns.batch import InsertBatch
from transit_patterns.services.patterns.errors import (
    MissingReferenceIdError,
    ReconciliationError,
)
from transit_patterns.services.patterns.records import PatternStop
from transit_patterns.services.patterns.tables import DEFAULT_TABLES

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from transit_patterns.services.patterns.records import PatternHalt
    from transit_patterns.services.patterns.tables import PatternTables

logger = get_logger(__name__)

ONE_AT_A_TIME_MSG = (
    "Changes to trip pattern stops must be made one at a time "
    "if the pattern contains at least one trip."
)
SUBSTITUTION_MSG = (
    "Pattern substitutions are not supported. Swapping out a stop for another is prohibited."
)
NOT_A_SINGLE_MOVE_MSG = "Pattern stop change is not a simple, single move."
ADD_AT_END_MSG = "When adding multiple stops to patterns, new stops must all be at the end."
MULTIPLE_ADDITIONS_MSG = "Multiple differences found when trying to detect stop addition."
MULTIPLE_REMOVALS_MSG = "Multiple differences found when trying to detect stop removal."

# Restricts a stop_times UPDATE/DELETE to the trips on one pattern.
_JOIN_TO_TRIPS = "trips.trip_id = stop_times.trip_id AND trips.pattern_id = :pattern_id"


class DiffKind(str, enum.Enum):
    NONE = "none"
    ADD_ONE = "add_one"
    DELETE = "delete"
    TRANSPOSE = "transpose"
    ADD_MULTIPLE = "add_multiple"


@dataclass(frozen=True)
class PatternDiff:
    """A classified, validated edit ready to be applied.

    ``difference_index`` is the inserted/deleted position for ADD_ONE and
    DELETE, and the first appended position for ADD_MULTIPLE. TRANSPOSE moves
    the halt at ``move_from`` to ``move_to``.
    """

    kind: DiffKind
    pattern_id: str
    new_halts: tuple[PatternHalt, ...] = ()
    trip_ids: tuple[str, ...] = ()
    difference_index: Optional[int] = None
    move_from: Optional[int] = None
    move_to: Optional[int] = None

    @property
    def changed(self) -> bool:
        return self.kind is not DiffKind.NONE

    @property
    def first_changed_index(self) -> int:
        if self.move_from is not None and self.move_to is not None:
            return min(self.move_from, self.move_to)
        return self.difference_index or 0


def _required(diff: PatternDiff, name: str) -> int:
    value = getattr(diff, name)
    if value is None:
        raise ReconciliationError(
            f"{diff.kind.value} edit of pattern {diff.pattern_id} has no {name}"
        )
    return value


def reference_id_from_row(row: Any) -> str:
    """Reference id of a stored pattern_stops row (stop, location group, location)."""
    for value in (row[0], row[1], row[2]):
        if value is not None:
            return value
    raise MissingReferenceIdError()


def _first_difference(original: Sequence[str], new: Sequence[str]) -> int:
    """First index where the sequences differ, or the shorter length."""
    for i, (old_id, new_id) in enumerate(zip(original, new)):
        if old_id != new_id:
            return i
    return min(len(original), len(new))


def _find_insertion(original: Sequence[str], new: Sequence[str]) -> int:
    index = _first_difference(original, new)
    if list(original[index:]) != list(new[index + 1 :]):
        raise ReconciliationError(MULTIPLE_ADDITIONS_MSG)
    return index


def _find_removal(original: Sequence[str], new: Sequence[str]) -> int:
    index = _first_difference(original, new)
    if list(original[index + 1 :]) != list(new[index:]):
        raise ReconciliationError(MULTIPLE_REMOVALS_MSG)
    return index


def _find_move(original: Sequence[str], new: Sequence[str]) -> tuple[int, int]:
    first = _first_difference(original, new)
    last = len(original) - 1
    while original[last] == new[last]:
        last -= 1

    if first == last:
        raise ReconciliationError(SUBSTITUTION_MSG)

    if original[first] == new[last]:
        # Moved forward: the halts in between shift down by one
        move_from, move_to = first, last
        unchanged = all(new[i] == original[i + 1] for i in range(first, last))
    elif new[first] == original[last]:
        # Moved backward: the halts in between shift up by one
        move_from, move_to = last, first
        unchanged = all(new[i] == original[i - 1] for i in range(first + 1, last + 1))
    else:
        raise ReconciliationError(NOT_A_SINGLE_MOVE_MSG)

    if not unchanged:
        raise ReconciliationError(ONE_AT_A_TIME_MSG)
    return move_from, move_to


def stage_reconciliation(
    pattern_id: str,
    original_reference_ids: Sequence[str],
    new_halts: Sequence[PatternHalt],
    trip_ids: Sequence[str],
) -> PatternDiff:
    """Classify the edit from ``original_reference_ids`` to ``new_halts``.

    Raises:
        ReconciliationError: If the edit is more than one supported change.
    """
    new_ids = [halt.reference_id for halt in new_halts]
    base = {"pattern_id": pattern_id, "new_halts": tuple(new_halts), "trip_ids": tuple(trip_ids)}

    if not trip_ids or list(original_reference_ids) == new_ids:
        return PatternDiff(kind=DiffKind.NONE, **base)

    size_diff = len(new_ids) - len(original_reference_ids)
    if size_diff == 1:
        index = _find_insertion(original_reference_ids, new_ids)
        return PatternDiff(kind=DiffKind.ADD_ONE, difference_index=index, **base)
    if size_diff == -1:
        index = _find_removal(original_reference_ids, new_ids)
        return PatternDiff(kind=DiffKind.DELETE, difference_index=index, **base)
    if size_diff == 0:
        move_from, move_to = _find_move(original_reference_ids, new_ids)
        return PatternDiff(kind=DiffKind.TRANSPOSE, move_from=move_from, move_to=move_to, **base)
    if size_diff > 1:
        if new_ids[: len(original_reference_ids)] != list(original_reference_ids):
            raise ReconciliationError(ADD_AT_END_MSG)
        return PatternDiff(
            kind=DiffKind.ADD_MULTIPLE, difference_index=len(original_reference_ids), **base
        )
    raise ReconciliationError(ONE_AT_A_TIME_MSG)


def blank_stop_time(halt: PatternHalt, trip_id: str, stop_sequence: int) -> dict[str, Any]:
    """A stop_times row with the halt's references and flags but no times."""
    row = halt.to_row()
    return {
        "trip_id": trip_id,
        "stop_sequence": stop_sequence,
        "stop_id": row["stop_id"],
        "location_group_id": row["location_group_id"],
        "location_id": row["location_id"],
        "arrival_time": None,
        "departure_time": None,
        "start_pickup_drop_off_window": None,
        "end_pickup_drop_off_window": None,
        "stop_headsign": None,
        "pickup_type": halt.pickup_type,
        "drop_off_type": halt.drop_off_type,
        "continuous_pickup": halt.continuous_pickup,
        "continuous_drop_off": halt.continuous_drop_off,
        "shape_dist_traveled": halt.shape_dist_traveled if isinstance(halt, PatternStop) else None,
        "timepoint": halt.timepoint,
        "pickup_booking_rule_id": halt.pickup_booking_rule_id,
        "drop_off_booking_rule_id": halt.drop_off_booking_rule_id,
    }


async def _insert_blank_stop_times(
    session: AsyncSession, diff: PatternDiff, start: int, count: int, tables: PatternTables
) -> int:
    batch = InsertBatch(session, tables.stop_times)
    for stop_sequence in range(start, start + count):
        halt = diff.new_halts[stop_sequence]
        for trip_id in diff.trip_ids:
            await batch.add(blank_stop_time(halt, trip_id, stop_sequence))
    inserted = await batch.execute_remaining()
    logger.info("Inserted blank stop times", pattern_id=diff.pattern_id, inserted=inserted)
    return inserted


async def apply_reconciliation(
    session: AsyncSession, diff: PatternDiff, tables: PatternTables = DEFAULT_TABLES
) -> int:
    """Run the SQL for a staged edit. Returns the number of stop_times rows touched."""
    params: dict[str, Any] = {"pattern_id": diff.pattern_id}
    logger.info("Reconciling pattern", pattern_id=diff.pattern_id, operation=diff.kind.value)

    match diff.kind:
        case DiffKind.NONE:
            return 0

        case DiffKind.ADD_ONE:
            index = _required(diff, "difference_index")
            # Shift first so the blank rows never collide with existing ones
            result = await session.execute(
                text(
                    "UPDATE stop_times SET stop_sequence = stop_sequence + 1 FROM trips "
                    f"WHERE stop_sequence >= :index AND {_JOIN_TO_TRIPS}"
                ),
                {**params, "index": index},
            )
            shifted = result.rowcount or 0
            inserted = await _insert_blank_stop_times(session, diff, index, 1, tables)
            return shifted + inserted

        case DiffKind.DELETE:
            index = _required(diff, "difference_index")
            deleted = await session.execute(
                text(
                    "DELETE FROM stop_times USING trips "
                    f"WHERE stop_sequence = :index AND {_JOIN_TO_TRIPS}"
                ),
                {**params, "index": index},
            )
            shifted = await session.execute(
                text(
                    "UPDATE stop_times SET stop_sequence = stop_sequence - 1 FROM trips "
                    f"WHERE stop_sequence > :index AND {_JOIN_TO_TRIPS}"
                ),
                {**params, "index": index},
            )
            logger.info(
                "Deleted stop times",
                pattern_id=diff.pattern_id,
                deleted=deleted.rowcount,
                shifted=shifted.rowcount,
            )
            return (deleted.rowcount or 0) + (shifted.rowcount or 0)

        case DiffKind.TRANSPOSE:
            move_from = _required(diff, "move_from")
            move_to = _required(diff, "move_to")
            operator = "-" if move_from < move_to else "+"
            result = await session.execute(
                text(
                    "UPDATE stop_times SET stop_sequence = CASE "
                    "WHEN stop_sequence = :move_from THEN :move_to "
                    f"WHEN stop_sequence BETWEEN :low AND :high THEN stop_sequence {operator} 1 "
                    "ELSE stop_sequence END "
                    f"FROM trips WHERE {_JOIN_TO_TRIPS}"
                ),
                {
                    **params,
                    "move_from": move_from,
                    "move_to": move_to,
                    "low": min(move_from, move_to),
                    "high": max(move_from, move_to),
                },
            )
            return result.rowcount or 0

        case DiffKind.ADD_MULTIPLE:
            index = _required(diff, "difference_index")
            return await _insert_blank_stop_times(
                session, diff, index, len(diff.new_halts) - index, tables
            )


class PatternReconciler:
    """Reconciles an edited halt list against the stored pattern and its trips.

    Does not commit. The caller owns the transaction and must serialize edits
    to the same pattern.
    """

    def __init__(self, session: AsyncSession, tables: PatternTables = DEFAULT_TABLES) -> None:
        self.session = session
        self.tables = tables

    async def original_reference_ids(self, pattern_id: str) -> list[str]:
        result = await self.session.execute(
            text(
                "SELECT stop_id, location_group_id, location_id, stop_sequence "
                f"FROM {self.tables.pattern_stops.name} "
                "WHERE pattern_id = :pattern_id ORDER BY stop_sequence"
            ),
            {"pattern_id": pattern_id},
        )
        return [reference_id_from_row(row) for row in result.fetchall()]

    async def trip_ids(self, pattern_id: str) -> list[str]:
        result = await self.session.execute(
            text("SELECT trip_id FROM trips WHERE pattern_id = :pattern_id ORDER BY trip_id"),
            {"pattern_id": pattern_id},
        )
        return [row[0] for row in result.fetchall()]

    async def stage(self, pattern_id: str, new_halts: Sequence[PatternHalt]) -> PatternDiff:
        ordered = sorted(new_halts, key=lambda halt: halt.stop_sequence)
        trip_ids = await self.trip_ids(pattern_id)
        if not trip_ids:
            logger.info("No trips on pattern, reconciliation not required", pattern_id=pattern_id)
            return PatternDiff(kind=DiffKind.NONE, pattern_id=pattern_id, new_halts=tuple(ordered))
        original = await self.original_reference_ids(pattern_id)
        return stage_reconciliation(pattern_id, original, ordered, trip_ids)

    async def reconcile(self, pattern_id: str, new_halts: Sequence[PatternHalt]) -> bool:
        """Apply the edit to every trip on the pattern.

        Returns:
            True if stop_times were changed.

        Raises:
            ReconciliationError: If the edit is rejected.
        """
        diff = await self.stage(pattern_id, new_halts)
        if not diff.changed:
            return False
        await apply_reconciliation(self.session, diff, self.tables)
        return True
