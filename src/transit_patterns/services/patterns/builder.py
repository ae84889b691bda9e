"""Persist discovered patterns and assign every trip its pattern id."""

from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping
from typing import TYPE_CHECKING, Optional

from sqlalchemy import text

from transit_patterns.config import get_settings
from transit_patterns.database import copy_file_to_table, supports_copy
from transit_patterns.logging import get_logger
from transit_patterns.services.patterns.batch import InsertBatch
from transit_patterns.services.patterns.errors import PatternPersistenceError
from transit_patterns.services.patterns.records import (
    PatternHalt,
    PatternLocation,
    PatternLocationGroupStop,
    PatternStop,
    subtract_or_missing,
)
from transit_patterns.services.patterns.tables import DEFAULT_TABLES, TableDef

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from transit_patterns.services.patterns.finder import Pattern
    from transit_patterns.services.patterns.key import PatternKey
    from transit_patterns.services.patterns.tables import PatternTables

logger = get_logger(__name__)

TEMP_TABLE = TableDef(
    name="pattern_for_trips",
    columns=(("trip_id", "varchar"), ("pattern_id", "varchar")),
)


def calculate_previous_departure_times(key: PatternKey) -> list[int]:
    """Latest known departure before each position, never decreasing.

    Between two consecutive flex halts the value is 0. A missing departure
    keeps the previous baseline.
    """
    previous: list[int] = []
    for i in range(len(key)):
        if i == 0 or (key.is_flex_stop[i - 1] and key.is_flex_stop[i]):
            previous.append(0)
            continue
        if key.is_flex_stop[i - 1]:
            prev_departure = key.end_pickup_drop_off_windows[i - 1]
        else:
            prev_departure = key.departure_times[i - 1]
        baseline = previous[i - 1]
        previous.append(baseline if prev_departure is None else max(baseline, prev_departure))
    return previous


def calculate_travel_time(
    key: PatternKey, index: int, previous_departure_times: list[int]
) -> Optional[int]:
    """Travel time into position ``index``; None when an operand is missing."""
    if index == 0:
        return 0
    if not key.is_flex_stop[index]:
        return subtract_or_missing(key.arrival_times[index], previous_departure_times[index])
    if not key.is_flex_stop[index - 1]:
        return subtract_or_missing(
            key.start_pickup_drop_off_windows[index], previous_departure_times[index]
        )
    return 0


def calculate_dwell_time(key: PatternKey, index: int) -> Optional[int]:
    """Time spent at position ``index`` (departure - arrival, or window length)."""
    if key.is_flex_stop[index]:
        return subtract_or_missing(
            key.end_pickup_drop_off_windows[index], key.start_pickup_drop_off_windows[index]
        )
    return subtract_or_missing(key.departure_times[index], key.arrival_times[index])


def build_pattern_halts(key: PatternKey, pattern_id: str) -> list[PatternHalt]:
    """Pattern halts for a key, with derived default travel and dwell times."""
    previous = calculate_previous_departure_times(key)
    halts: list[PatternHalt] = []
    for i in range(len(key)):
        common = {
            "pattern_id": pattern_id,
            "stop_sequence": i,
            "pickup_type": key.pickup_types[i],
            "drop_off_type": key.dropoff_types[i],
            "timepoint": key.timepoints[i],
            "stop_headsign": key.stop_headsigns[i],
            "continuous_pickup": key.continuous_pickups[i],
            "continuous_drop_off": key.continuous_drop_offs[i],
            "pickup_booking_rule_id": key.pickup_booking_rule_ids[i],
            "drop_off_booking_rule_id": key.drop_off_booking_rule_ids[i],
        }
        travel_time = calculate_travel_time(key, i, previous)
        dwell_time = calculate_dwell_time(key, i)

        halt: PatternHalt
        if not key.is_flex_stop[i]:
            halt = PatternStop(
                stop_id=key.stops[i],
                default_travel_time=travel_time,
                default_dwell_time=dwell_time,
                shape_dist_traveled=key.shape_distances[i],
                **common,
            )
        elif key.location_group_ids[i]:
            halt = PatternLocationGroupStop(
                location_group_id=key.location_group_ids[i],
                flex_default_travel_time=travel_time,
                flex_default_zone_time=dwell_time,
                **common,
            )
        else:
            halt = PatternLocation(
                location_id=key.location_ids[i],
                flex_default_travel_time=travel_time,
                flex_default_zone_time=dwell_time,
                **common,
            )
        halts.append(halt)
    return halts


def _copy_escape(value: str) -> str:
    return (
        value.replace("\\", "\\\\")
        .replace("\t", "\\t")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
    )


def _copy_unescape(value: str) -> str:
    out: list[str] = []
    chars = iter(value)
    for char in chars:
        if char != "\\":
            out.append(char)
            continue
        escaped = next(chars, "")
        out.append({"t": "\t", "n": "\n", "r": "\r"}.get(escaped, escaped))
    return "".join(out)


class PatternBuilder:
    """Writes ``patterns`` and ``pattern_stops`` and backfills ``trips.pattern_id``.

    The whole load runs in the session's transaction and is committed at the
    end. Trip ids are staged in a tab-separated file, bulk loaded into a
    temporary table and applied with one join UPDATE.
    """

    def __init__(
        self,
        session: AsyncSession,
        tables: PatternTables = DEFAULT_TABLES,
        batch_size: int | None = None,
        staging_dir: str | None = None,
    ) -> None:
        settings = get_settings()
        self.session = session
        self.tables = tables
        self.batch_size = batch_size if batch_size is not None else settings.pattern_batch_size
        self.staging_dir = staging_dir if staging_dir is not None else settings.pattern_staging_dir

    async def create(
        self, patterns: Mapping[PatternKey, Pattern], use_patterns_from_feed: bool
    ) -> int:
        """Persist all patterns.

        Returns:
            Number of trips assigned a pattern id.

        Raises:
            PatternPersistenceError: On any failure; the transaction is rolled back.
        """
        logger.info(
            "Creating pattern and pattern stops tables",
            patterns=len(patterns),
            use_patterns_from_feed=use_patterns_from_feed,
        )
        staging_path: str | None = None
        try:
            await self._create_tables(use_patterns_from_feed)

            pattern_batch = InsertBatch(self.session, self.tables.patterns, self.batch_size)
            stop_batch = InsertBatch(self.session, self.tables.pattern_stops, self.batch_size)

            with tempfile.NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                prefix="pattern_for_trips_",
                suffix=".tsv",
                dir=self.staging_dir,
                delete=False,
            ) as staging:
                staging_path = staging.name
                for key, pattern in patterns.items():
                    if not use_patterns_from_feed:
                        await pattern_batch.add(pattern.to_row())
                    for halt in build_pattern_halts(key, str(pattern.pattern_id)):
                        await stop_batch.add(halt.to_row())
                    for trip_id in pattern.associated_trips:
                        staging.write(
                            f"{_copy_escape(trip_id)}\t{_copy_escape(str(pattern.pattern_id))}\n"
                        )

            await pattern_batch.execute_remaining()
            stop_count = await stop_batch.execute_remaining()

            trip_count = await self._update_trips(staging_path)
            await self._add_keys(use_patterns_from_feed)
            await self.session.commit()
        except Exception as exc:
            await self.session.rollback()
            logger.error("Pattern persistence failed", exc_info=exc)
            raise PatternPersistenceError(f"Failed to persist patterns: {exc}") from exc
        finally:
            if staging_path is not None and os.path.exists(staging_path):
                os.remove(staging_path)

        logger.info(
            "Patterns persisted",
            patterns=len(patterns),
            pattern_stops=stop_count,
            trips=trip_count,
        )
        return trip_count

    async def _create_tables(self, use_patterns_from_feed: bool) -> None:
        await self.session.execute(
            text("ALTER TABLE trips ADD COLUMN IF NOT EXISTS pattern_id varchar")
        )
        if not use_patterns_from_feed:
            await self.session.execute(self.tables.patterns.drop_sql())
            await self.session.execute(self.tables.patterns.create_sql())
        await self.session.execute(self.tables.pattern_stops.drop_sql())
        await self.session.execute(self.tables.pattern_stops.create_sql())

    async def _update_trips(self, staging_path: str) -> int:
        logger.info("Updating trips with pattern ids")
        await self.session.execute(
            text(
                f"CREATE TEMP TABLE {TEMP_TABLE.name} "
                "(trip_id varchar, pattern_id varchar) ON COMMIT DROP"
            )
        )
        await self._load_staging_file(staging_path)
        await self.session.execute(
            text(f"CREATE INDEX {TEMP_TABLE.name}_trip_id_idx ON {TEMP_TABLE.name} (trip_id)")
        )
        result = await self.session.execute(
            text(
                f"UPDATE trips SET pattern_id = {TEMP_TABLE.name}.pattern_id "
                f"FROM {TEMP_TABLE.name} WHERE trips.trip_id = {TEMP_TABLE.name}.trip_id"
            )
        )
        return result.rowcount if result.rowcount else 0

    async def _load_staging_file(self, staging_path: str) -> None:
        if await supports_copy(self.session):
            await copy_file_to_table(
                self.session, TEMP_TABLE.name, staging_path, TEMP_TABLE.column_names
            )
            return

        # Drivers without COPY support get batched multi-row INSERTs
        batch = InsertBatch(self.session, TEMP_TABLE, self.batch_size)
        with open(staging_path, encoding="utf-8") as staging:
            for line in staging:
                trip_id, pattern_id = line.rstrip("\n").split("\t")
                await batch.add(
                    {"trip_id": _copy_unescape(trip_id), "pattern_id": _copy_unescape(pattern_id)}
                )
        await batch.execute_remaining()

    async def _add_keys(self, use_patterns_from_feed: bool) -> None:
        if not use_patterns_from_feed:
            await self.session.execute(self.tables.patterns.primary_key_sql())
        await self.session.execute(self.tables.pattern_stops.primary_key_sql())
        await self.session.execute(
            text("CREATE INDEX IF NOT EXISTS trips_pattern_id_idx ON trips (pattern_id)")
        )
