import pytest
from fastapi.testclient import TestClient
from unittest.mock import MagicMock
from datetime import datetime, UTC


from api.main import app
from api.dependencies import get_market_data_service


def status_payload(state="ready", stale=False, stream_enabled=True, stream_state="connected"):
    return {
        "state": state,
        "stream": {
            "enabled": stream_enabled,
            "state": stream_state if stream_enabled else None,
            "reconnect_attempts": 0,
        },
        "snapshot": {
            "last_updated": datetime(2025, 9, 30, 10, 0, 0, tzinfo=UTC),
            "age_seconds": 1.5,
            "stale": stale,
            "fiat_source": "stream",
            "crypto_source": "coincap",
        },
        "subscribers": 2,
    }


@pytest.fixture
def mock_market_data():
    mock_service = MagicMock()
    mock_service.status.return_value = status_payload()
    return mock_service


@pytest.fixture
def client(mock_market_data):
    app.dependency_overrides[get_market_data_service] = lambda: mock_market_data
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


def test_health_check_all_healthy(client):
    response = client.get("/api/v1/health")

    assert response.status_code == 200
    data = response.json()

    assert data["status"] == "healthy"
    assert data["service"]["stream"]["state"] == "connected"
    assert data["service"]["snapshot"]["fiat_source"] == "stream"
    assert data["service"]["subscribers"] == 2
    assert "timestamp" in data


def test_health_check_stale_data_is_degraded(client, mock_market_data):
    mock_market_data.status.return_value = status_payload(stale=True)

    response = client.get("/api/v1/health")

    assert response.json()["status"] == "degraded"


def test_health_check_stream_down_is_degraded(client, mock_market_data):
    mock_market_data.status.return_value = status_payload(stream_state="disconnected")

    response = client.get("/api/v1/health")

    assert response.json()["status"] == "degraded"


def test_health_check_stream_disabled_is_healthy(client, mock_market_data):
    mock_market_data.status.return_value = status_payload(stream_enabled=False)

    response = client.get("/api/v1/health")

    assert response.json()["status"] == "healthy"


def test_health_check_not_ready_is_unhealthy(client, mock_market_data):
    mock_market_data.status.return_value = status_payload(state="initializing")

    response = client.get("/api/v1/health")

    assert response.status_code == 200
    assert response.json()["status"] == "unhealthy"
