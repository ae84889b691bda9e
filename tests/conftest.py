"""Pytest configuration and fixtures."""

from collections.abc import AsyncGenerator
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from transit_patterns.database import get_session
from transit_patterns.main import app


@pytest.fixture
def mock_db_connection() -> Any:
    """Mock database connection check."""
    with patch("transit_patterns.main.check_database_connection", new_callable=AsyncMock) as mock:
        mock.return_value = True
        yield mock


@pytest.fixture
def mock_session() -> Any:
    """Replace the request-scoped database session with a mock."""
    session = AsyncMock()

    async def override() -> AsyncGenerator[Any, None]:
        yield session

    app.dependency_overrides[get_session] = override
    yield session
    app.dependency_overrides.pop(get_session, None)


@pytest.fixture
async def client(mock_db_connection: Any) -> AsyncGenerator[AsyncClient, None]:  # noqa: ARG001
    """Async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
