"""Tests for the pattern build and edit endpoints."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient

from transit_patterns.services.patterns.editor import PatternEditResult
from transit_patterns.services.patterns.errors import (
    InterpolationError,
    PatternBusyError,
    PatternPersistenceError,
    ReconciliationError,
)
from transit_patterns.services.patterns.records import PatternLocation, PatternStop
from transit_patterns.services.patterns.runner import PatternBuildReport


@pytest.fixture
def mock_editor() -> Any:
    with patch("transit_patterns.routers.patterns.PatternEditor") as editor_cls:
        editor = editor_cls.return_value
        editor.update_halts = AsyncMock()
        editor.normalize = AsyncMock()
        yield editor


class TestBuildEndpoint:
    """Tests for POST /admin/patterns/build."""

    async def test_success(self, client: AsyncClient) -> None:
        report = PatternBuildReport(build_id="build-1")
        report.trip_count = 3
        report.pattern_count = 2
        report.trips_assigned = 3
        report.finish()

        with patch("transit_patterns.routers.admin.PatternBuildRunner") as runner_cls:
            runner_cls.return_value.run = AsyncMock(return_value=report)
            response = await client.post("/admin/patterns/build", json={"batch_size": 500})

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "success"
        assert data["build_id"] == "build-1"
        assert data["pattern_count"] == 2
        assert data["trips_assigned"] == 3
        runner_cls.assert_called_once_with(batch_size=500)

    async def test_without_body(self, client: AsyncClient) -> None:
        report = PatternBuildReport()
        report.finish()

        with patch("transit_patterns.routers.admin.PatternBuildRunner") as runner_cls:
            runner_cls.return_value.run = AsyncMock(return_value=report)
            response = await client.post("/admin/patterns/build")

        assert response.status_code == 200
        runner_cls.assert_called_once_with(batch_size=None)

    async def test_invalid_batch_size(self, client: AsyncClient) -> None:
        response = await client.post("/admin/patterns/build", json={"batch_size": 0})
        assert response.status_code == 422

    async def test_persistence_failure(self, client: AsyncClient) -> None:
        with patch("transit_patterns.routers.admin.PatternBuildRunner") as runner_cls:
            runner_cls.return_value.run = AsyncMock(
                side_effect=PatternPersistenceError("Failed to persist patterns: boom")
            )
            response = await client.post("/admin/patterns/build", json={})

        assert response.status_code == 500
        assert "boom" in response.json()["detail"]


class TestUpdateHaltsEndpoint:
    """Tests for PUT /patterns/{pattern_id}/halts."""

    async def test_success(self, client: AsyncClient, mock_session: AsyncMock, mock_editor: Any) -> None:
        mock_editor.update_halts.return_value = PatternEditResult(
            pattern_id="7", operation="add_one", reconciled=True, halt_count=3, stop_times_updated=6
        )

        response = await client.put(
            "/patterns/7/halts",
            json={
                "halts": [
                    {"stop_id": "S1", "default_travel_time": 0},
                    {"location_id": "Z1", "flex_default_zone_time": 300},
                    {"stop_id": "S2", "default_travel_time": 120, "timepoint": 1},
                ]
            },
        )

        assert response.status_code == 200
        assert response.json() == {
            "pattern_id": "7",
            "operation": "add_one",
            "reconciled": True,
            "halt_count": 3,
            "stop_times_updated": 6,
        }
        args, kwargs = mock_editor.update_halts.await_args
        pattern_id, halts = args
        assert pattern_id == "7"
        assert [type(halt) for halt in halts] == [PatternStop, PatternLocation, PatternStop]
        assert [halt.stop_sequence for halt in halts] == [0, 1, 2]
        assert halts[2].default_travel_time == 120
        assert kwargs == {"normalize": True, "use_frequency": False}

    async def test_halt_without_reference_id(
        self, client: AsyncClient, mock_session: AsyncMock, mock_editor: Any
    ) -> None:
        response = await client.put(
            "/patterns/7/halts", json={"halts": [{"stop_id": "S1"}, {"timepoint": 1}]}
        )

        assert response.status_code == 422
        assert "stop_id, location_group_id or location_id" in response.json()["detail"]
        mock_editor.update_halts.assert_not_called()

    async def test_halt_with_two_reference_ids(
        self, client: AsyncClient, mock_session: AsyncMock, mock_editor: Any
    ) -> None:
        response = await client.put(
            "/patterns/7/halts", json={"halts": [{"stop_id": "S1", "location_id": "Z1"}]}
        )

        assert response.status_code == 422
        assert "only one of" in response.json()["detail"]
        mock_editor.update_halts.assert_not_called()

    async def test_rejected_edit(self, client: AsyncClient, mock_session: AsyncMock, mock_editor: Any) -> None:
        mock_editor.update_halts.side_effect = ReconciliationError(
            "Pattern stop change is not a simple, single move."
        )

        response = await client.put(
            "/patterns/7/halts", json={"halts": [{"stop_id": "A"}, {"stop_id": "X"}]}
        )

        assert response.status_code == 409
        assert response.json()["detail"] == "Pattern stop change is not a simple, single move."

    async def test_busy_pattern(self, client: AsyncClient, mock_session: AsyncMock, mock_editor: Any) -> None:
        mock_editor.update_halts.side_effect = PatternBusyError("Pattern 7 is being edited")

        response = await client.put("/patterns/7/halts", json={"halts": [{"stop_id": "A"}]})

        assert response.status_code == 409

    async def test_unexpected_error(self, client: AsyncClient, mock_session: AsyncMock, mock_editor: Any) -> None:
        mock_editor.update_halts.side_effect = RuntimeError("connection reset")

        response = await client.put("/patterns/7/halts", json={"halts": [{"stop_id": "A"}]})

        assert response.status_code == 500
        assert "connection reset" not in response.text


class TestNormalizeEndpoint:
    """Tests for POST /patterns/{pattern_id}/normalize."""

    async def test_success(self, client: AsyncClient, mock_session: AsyncMock, mock_editor: Any) -> None:
        mock_editor.normalize.return_value = 12

        response = await client.post(
            "/patterns/7/normalize", json={"begin_stop_sequence": 2, "interpolate": True}
        )

        assert response.status_code == 200
        assert response.json() == {"pattern_id": "7", "updated": 12}
        mock_editor.normalize.assert_awaited_once_with("7", 2, True)

    async def test_defaults(self, client: AsyncClient, mock_session: AsyncMock, mock_editor: Any) -> None:
        mock_editor.normalize.return_value = 0

        response = await client.post("/patterns/7/normalize", json={})

        assert response.status_code == 200
        mock_editor.normalize.assert_awaited_once_with("7", 0, False)

    async def test_interpolation_error(
        self, client: AsyncClient, mock_session: AsyncMock, mock_editor: Any
    ) -> None:
        mock_editor.normalize.side_effect = InterpolationError(
            "Shape_dist_traveled must be defined for all stops in order to perform interpolation"
        )

        response = await client.post("/patterns/7/normalize", json={"interpolate": True})

        assert response.status_code == 409
        assert response.json()["detail"].startswith("Shape_dist_traveled")

    async def test_negative_begin_rejected(self, client: AsyncClient, mock_session: AsyncMock) -> None:
        response = await client.post("/patterns/7/normalize", json={"begin_stop_sequence": -1})
        assert response.status_code == 422


async def test_halts_endpoint_documents_rejected_substitutions(client: AsyncClient) -> None:
    response = await client.get("/openapi.json")

    description = response.json()["paths"]["/patterns/{pattern_id}/halts"]["put"]["description"]
    assert "Swapping one halt for another is rejected with 409." in description
    assert "plain substitution" not in description
