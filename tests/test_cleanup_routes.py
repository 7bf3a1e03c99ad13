from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from raffle.core.config import Settings
from raffle.dependencies import state as state_deps
from raffle.main import create_app


@pytest.fixture
def cleanup_client():
    app = create_app(Settings(rate_limit_requests=100))
    store = AsyncMock()
    store.backend_name = "postgres"
    store.supports_cleanup = True

    async def override_store():
        return store

    app.dependency_overrides[state_deps.get_state_store] = override_store
    try:
        yield TestClient(app), store
    finally:
        app.dependency_overrides.clear()


def test_cleanup_deletes_with_requested_retention(cleanup_client):
    client, store = cleanup_client
    store.cleanup_old_snapshots = AsyncMock(return_value=4)

    response = client.post("/api/state/cleanup", json={"retentionDays": 7})

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "deletedCount": 4,
        "retentionDays": 7,
        "message": "Deleted 4 snapshots older than 7 days",
    }
    store.cleanup_old_snapshots.assert_awaited_with(7)


def test_cleanup_defaults_to_thirty_days_without_body(cleanup_client):
    client, store = cleanup_client
    store.cleanup_old_snapshots = AsyncMock(return_value=0)

    response = client.post("/api/state/cleanup")

    assert response.status_code == 200
    store.cleanup_old_snapshots.assert_awaited_with(30)


@pytest.mark.parametrize("days", [0, 366, "10", 2.5])
def test_cleanup_rejects_invalid_retention(cleanup_client, days):
    client, store = cleanup_client

    response = client.post("/api/state/cleanup", json={"retentionDays": days})

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid retention days"}
    store.cleanup_old_snapshots.assert_not_awaited()


def test_cleanup_unavailable_for_file_backend(cleanup_client):
    client, store = cleanup_client
    store.backend_name = "file"
    store.supports_cleanup = False

    response = client.post("/api/state/cleanup", json={})

    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "Cleanup not available in file storage mode"}


def test_cleanup_failure_is_generic(cleanup_client):
    client, store = cleanup_client
    store.cleanup_old_snapshots = AsyncMock(side_effect=ConnectionError("db down"))

    response = client.post("/api/state/cleanup", json={"retentionDays": 30})

    assert response.status_code == 500
    assert response.json() == {"error": "Cleanup failed. Please try again."}
