"""Column layouts of the tables written by the pattern builder and editor."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from sqlalchemy import TextClause, text

# asyncpg limit on bind parameters per statement
MAX_BIND_PARAMS = 32767


@dataclass(frozen=True)
class TableDef:
    """Immutable table layout: name plus ordered ``(column, sql_type)`` pairs."""

    name: str
    columns: tuple[tuple[str, str], ...]
    primary_key: tuple[str, ...] = ()

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(column for column, _ in self.columns)

    def create_sql(self) -> TextClause:
        # Primary keys are added after the bulk load
        column_sql = ", ".join(f"{column} {sql_type}" for column, sql_type in self.columns)
        return text(f"CREATE TABLE {self.name} ({column_sql})")

    def drop_sql(self) -> TextClause:
        return text(f"DROP TABLE IF EXISTS {self.name}")

    def primary_key_sql(self) -> TextClause:
        return text(f"ALTER TABLE {self.name} ADD PRIMARY KEY ({', '.join(self.primary_key)})")

    @property
    def max_rows_per_statement(self) -> int:
        return MAX_BIND_PARAMS // len(self.columns)

    def insert_sql(self, row_count: int = 1) -> TextClause:
        """Multi-row INSERT with ``:column_i`` placeholders for ``row_count`` rows.

        Raises:
            ValueError: If ``row_count`` would exceed :data:`MAX_BIND_PARAMS`.
        """
        if row_count > self.max_rows_per_statement:
            raise ValueError(
                f"{row_count} rows exceed the {self.max_rows_per_statement} row limit "
                f"of one INSERT into {self.name}"
            )
        names = self.column_names
        values_sql = ", ".join(
            "(" + ", ".join(f":{column}_{i}" for column in names) + ")"
            for i in range(row_count)
        )
        return text(f"INSERT INTO {self.name} ({', '.join(names)}) VALUES {values_sql}")

    def insert_params(self, rows: Sequence[dict[str, Any]]) -> dict[str, Any]:
        params: dict[str, Any] = {}
        for i, row in enumerate(rows):
            for column in self.column_names:
                params[f"{column}_{i}"] = row.get(column)
        return params


PATTERNS = TableDef(
    name="patterns",
    columns=(
        ("pattern_id", "varchar"),
        ("route_id", "varchar"),
        ("name", "varchar"),
        ("direction_id", "integer"),
        ("use_frequency", "integer"),
        ("shape_id", "varchar"),
    ),
    primary_key=("pattern_id",),
)

# Stops, locations and location groups share one table; exactly one of the
# three reference id columns is set per row.
PATTERN_STOPS = TableDef(
    name="pattern_stops",
    columns=(
        ("pattern_id", "varchar"),
        ("stop_sequence", "integer"),
        ("stop_id", "varchar"),
        ("location_group_id", "varchar"),
        ("location_id", "varchar"),
        ("stop_headsign", "varchar"),
        ("default_travel_time", "integer"),
        ("default_dwell_time", "integer"),
        ("flex_default_travel_time", "integer"),
        ("flex_default_zone_time", "integer"),
        ("drop_off_type", "smallint"),
        ("pickup_type", "smallint"),
        ("shape_dist_traveled", "double precision"),
        ("timepoint", "smallint"),
        ("continuous_pickup", "smallint"),
        ("continuous_drop_off", "smallint"),
        ("pickup_booking_rule_id", "varchar"),
        ("drop_off_booking_rule_id", "varchar"),
    ),
    primary_key=("pattern_id", "stop_sequence"),
)

# Columns written when blank stop_times rows are added to trips on a pattern.
STOP_TIMES = TableDef(
    name="stop_times",
    columns=(
        ("trip_id", "varchar"),
        ("stop_sequence", "integer"),
        ("stop_id", "varchar"),
        ("location_group_id", "varchar"),
        ("location_id", "varchar"),
        ("arrival_time", "integer"),
        ("departure_time", "integer"),
        ("start_pickup_drop_off_window", "integer"),
        ("end_pickup_drop_off_window", "integer"),
        ("stop_headsign", "varchar"),
        ("pickup_type", "smallint"),
        ("drop_off_type", "smallint"),
        ("continuous_pickup", "smallint"),
        ("continuous_drop_off", "smallint"),
        ("shape_dist_traveled", "double precision"),
        ("timepoint", "smallint"),
        ("pickup_booking_rule_id", "varchar"),
        ("drop_off_booking_rule_id", "varchar"),
    ),
)


@dataclass(frozen=True)
class PatternTables:
    """The table layouts handed to the builder and reconciler."""

    patterns: TableDef = PATTERNS
    pattern_stops: TableDef = PATTERN_STOPS
    stop_times: TableDef = STOP_TIMES


DEFAULT_TABLES = PatternTables()
