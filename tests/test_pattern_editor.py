"""Tests for PatternEditor and the per-pattern lock."""

from __future__ import annotations

import gc
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from transit_patterns.services.patterns.editor import (
    PatternEditor,
    _pattern_locks,
    pattern_lock,
)
from transit_patterns.services.patterns.errors import (
    InterpolationError,
    PatternBusyError,
    ReconciliationError,
)
from transit_patterns.services.patterns.reconciliation import DiffKind, PatternDiff

from .fixtures.pattern_fixture import pattern_stop


@pytest.fixture
def services() -> Any:
    with (
        patch("transit_patterns.services.patterns.editor.PatternReconciler") as reconciler_cls,
        patch(
            "transit_patterns.services.patterns.editor.apply_reconciliation", new_callable=AsyncMock
        ) as apply,
        patch("transit_patterns.services.patterns.editor.StopTimeNormalizer") as normalizer_cls,
    ):
        reconciler_cls.return_value.stage = AsyncMock()
        normalizer = normalizer_cls.return_value
        normalizer.normalize_from = AsyncMock(return_value=4)
        normalizer.update_pattern_frequencies = AsyncMock(return_value=2)
        normalizer.normalize_stop_times = AsyncMock(return_value=5)
        yield reconciler_cls.return_value, apply, normalizer


class TestPatternLock:
    async def test_busy_after_timeout(self) -> None:
        async with pattern_lock("busy-pattern", timeout=1):
            with pytest.raises(PatternBusyError):
                async with pattern_lock("busy-pattern", timeout=0.01):
                    pass

    async def test_released_after_use(self) -> None:
        async with pattern_lock("free-pattern", timeout=1):
            pass
        async with pattern_lock("free-pattern", timeout=0.01):
            pass

    async def test_unused_locks_are_dropped(self) -> None:
        async with pattern_lock("short-lived", timeout=1):
            assert "short-lived" in _pattern_locks
        gc.collect()
        assert "short-lived" not in _pattern_locks


class TestUpdateHalts:
    async def test_renumbers_reconciles_and_normalizes(self, services: Any) -> None:
        reconciler, apply, normalizer = services
        reconciler.stage.return_value = PatternDiff(
            kind=DiffKind.ADD_ONE, pattern_id="7", difference_index=1
        )
        session = AsyncMock()
        halts = [pattern_stop("S1", 10, pattern_id="x"), pattern_stop("S9", 4), pattern_stop("S2", 0)]

        result = await PatternEditor(session).update_halts("7", halts)

        staged = reconciler.stage.await_args.args[1]
        assert [(halt.reference_id, halt.stop_sequence, halt.pattern_id) for halt in staged] == [
            ("S1", 0, "7"),
            ("S9", 1, "7"),
            ("S2", 2, "7"),
        ]
        apply.assert_awaited_once()
        normalizer.normalize_from.assert_awaited_once_with(1, "7")
        session.commit.assert_awaited_once()
        assert result.to_dict() == {
            "pattern_id": "7",
            "operation": "add_one",
            "reconciled": True,
            "halt_count": 3,
            "stop_times_updated": 4,
        }
        # DELETE + one multi-row INSERT into pattern_stops
        statements = [str(call.args[0]) for call in session.execute.call_args_list]
        assert statements[0] == "DELETE FROM pattern_stops WHERE pattern_id = :pattern_id"
        assert statements[1].startswith("INSERT INTO pattern_stops")

    async def test_unchanged_pattern_normalizes_from_start(self, services: Any) -> None:
        reconciler, apply, normalizer = services
        reconciler.stage.return_value = PatternDiff(kind=DiffKind.NONE, pattern_id="7")

        result = await PatternEditor(AsyncMock()).update_halts("7", [pattern_stop("S1")])

        apply.assert_not_called()
        normalizer.normalize_from.assert_awaited_once_with(0, "7")
        assert result.reconciled is False

    async def test_frequency_pattern(self, services: Any) -> None:
        reconciler, _, normalizer = services
        reconciler.stage.return_value = PatternDiff(kind=DiffKind.NONE, pattern_id="7")

        result = await PatternEditor(AsyncMock()).update_halts(
            "7", [pattern_stop("S1")], use_frequency=True
        )

        normalizer.update_pattern_frequencies.assert_awaited_once()
        normalizer.normalize_from.assert_not_called()
        assert result.stop_times_updated == 2

    async def test_skip_normalization(self, services: Any) -> None:
        reconciler, _, normalizer = services
        reconciler.stage.return_value = PatternDiff(kind=DiffKind.NONE, pattern_id="7")

        result = await PatternEditor(AsyncMock()).update_halts(
            "7", [pattern_stop("S1")], normalize=False
        )

        normalizer.normalize_from.assert_not_called()
        assert result.stop_times_updated == 0

    async def test_rejection_rolls_back(self, services: Any) -> None:
        reconciler, _, _ = services
        reconciler.stage.side_effect = ReconciliationError("Pattern stop change is not a simple, single move.")
        session = AsyncMock()

        with pytest.raises(ReconciliationError):
            await PatternEditor(session).update_halts("7", [pattern_stop("A")])

        session.rollback.assert_awaited_once()
        session.commit.assert_not_called()


class TestNormalize:
    async def test_commits(self, services: Any) -> None:
        _, _, normalizer = services
        session = AsyncMock()

        updated = await PatternEditor(session).normalize("7", 2, True)

        assert updated == 5
        normalizer.normalize_stop_times.assert_awaited_once_with("7", 2, True)
        session.commit.assert_awaited_once()

    async def test_interpolation_error_rolls_back(self, services: Any) -> None:
        _, _, normalizer = services
        normalizer.normalize_stop_times.side_effect = InterpolationError("less than 2 timepoints")
        session = AsyncMock()

        with pytest.raises(InterpolationError):
            await PatternEditor(session).normalize("7", interpolate=True)

        session.rollback.assert_awaited_once()


class TestEmptyEdit:
    async def test_clearing_a_used_pattern_keeps_its_halts(self) -> None:
        trips_result = MagicMock()
        trips_result.fetchall.return_value = [("T1",)]
        stops_result = MagicMock()
        stops_result.fetchall.return_value = [("S1", None, None, 0), ("S2", None, None, 1)]
        session = AsyncMock()
        session.execute.side_effect = [trips_result, stops_result]

        with pytest.raises(ReconciliationError):
            await PatternEditor(session).update_halts("1", [])

        statements = [str(call.args[0]) for call in session.execute.call_args_list]
        assert not any(sql.startswith("DELETE") for sql in statements)
        session.rollback.assert_awaited_once()
        session.commit.assert_not_called()
