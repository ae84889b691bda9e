"""Tests for database migrations."""

import importlib.util
import sys
from pathlib import Path

import pytest


class TestMigrationScript:
    """Tests for migration script structure."""

    @pytest.fixture
    def migration_module(self) -> object:
        """Load the initial migration module."""
        migration_path = Path(__file__).parent.parent / "alembic/versions/001_initial_schema.py"
        spec = importlib.util.spec_from_file_location("migration_001", migration_path)
        assert spec is not None
        assert spec.loader is not None
        module = importlib.util.module_from_spec(spec)
        sys.modules["migration_001"] = module
        spec.loader.exec_module(module)
        return module

    def test_migration_has_revision_id(self, migration_module: object) -> None:
        """Verify migration has a revision identifier."""
        assert hasattr(migration_module, "revision")
        assert migration_module.revision == "001"  # type: ignore[attr-defined]

    def test_migration_has_down_revision(self, migration_module: object) -> None:
        """Verify migration has down_revision set."""
        assert hasattr(migration_module, "down_revision")
        assert migration_module.down_revision is None  # type: ignore[attr-defined]

    def test_migration_has_upgrade_function(self, migration_module: object) -> None:
        """Verify migration has upgrade function."""
        assert hasattr(migration_module, "upgrade")
        assert callable(migration_module.upgrade)  # type: ignore[attr-defined]

    def test_migration_has_downgrade_function(self, migration_module: object) -> None:
        """Verify migration has downgrade function."""
        assert hasattr(migration_module, "downgrade")
        assert callable(migration_module.downgrade)  # type: ignore[attr-defined]


class TestMigrationUpgradeOperations:
    """Tests for verifying the upgrade creates correct structures."""

    @pytest.fixture
    def migration_source(self) -> str:
        """Load migration source code for inspection."""
        migration_path = Path(__file__).parent.parent / "alembic/versions/001_initial_schema.py"
        return migration_path.read_text()

    @pytest.mark.parametrize(
        "table",
        [
            "stops",
            "locations",
            "location_groups",
            "location_group_stops",
            "routes",
            "trips",
            "stop_times",
            "errors",
            "error_refs",
        ],
    )
    def test_creates_table(self, migration_source: str, table: str) -> None:
        """Verify upgrade creates every table read or written by the pattern builder."""
        assert f'op.create_table(\n        "{table}"' in migration_source

    def test_does_not_create_derived_tables(self, migration_source: str) -> None:
        """patterns and pattern_stops are created by the pattern builder."""
        assert '"patterns"' not in migration_source
        assert '"pattern_stops"' not in migration_source

    def test_creates_stop_times_trip_sequence_index(self, migration_source: str) -> None:
        """Verify upgrade indexes stop_times by trip and sequence."""
        assert '"ix_stop_times_trip_sequence"' in migration_source

    def test_creates_location_group_index(self, migration_source: str) -> None:
        assert '"ix_location_group_stops_group_id"' in migration_source


class TestMigrationDowngradeOperations:
    """Tests for verifying the downgrade removes all structures."""

    @pytest.fixture
    def migration_source(self) -> str:
        """Load migration source code for inspection."""
        migration_path = Path(__file__).parent.parent / "alembic/versions/001_initial_schema.py"
        return migration_path.read_text()

    def test_downgrade_drops_all_tables(self, migration_source: str) -> None:
        """Verify downgrade drops all tables."""
        downgrade_section = migration_source.split("def downgrade")[1]
        for table in (
            "error_refs",
            "errors",
            "stop_times",
            "trips",
            "routes",
            "location_group_stops",
            "location_groups",
            "locations",
            "stops",
        ):
            assert f'op.drop_table("{table}")' in downgrade_section

    def test_downgrade_respects_fk_order(self, migration_source: str) -> None:
        """Verify downgrade drops tables in correct order (child tables first)."""
        downgrade_section = migration_source.split("def downgrade")[1]

        def position(table: str) -> int:
            return downgrade_section.find(f'op.drop_table("{table}")')

        # Child tables must be dropped before parent tables
        assert position("error_refs") < position("errors")
        assert position("stop_times") < position("trips")
        assert position("trips") < position("routes")
        assert position("location_group_stops") < position("location_groups")
        assert position("location_group_stops") < position("stops")
