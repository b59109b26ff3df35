from datetime import datetime, UTC
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from api.dependencies import get_market_data_service
from api.main import app
from domain.models.rates import RateSnapshot


def make_snapshot(eur):
    return RateSnapshot(
        timestamp=datetime(2025, 9, 30, 10, 0, 0, tzinfo=UTC),
        fiat={"EUR": eur},
        crypto={"BTC": 85000.0},
        fiat_source="stream",
        crypto_source="coincap",
    )


@pytest.fixture
def mock_market_data():
    mock_service = MagicMock()
    mock_service.subscription = MagicMock()
    mock_service.listeners = []

    def subscribe(callback):
        mock_service.listeners.append(callback)
        callback(make_snapshot(0.92))
        return mock_service.subscription

    mock_service.subscribe.side_effect = subscribe
    return mock_service


@pytest.fixture
def client(mock_market_data):
    app.dependency_overrides[get_market_data_service] = lambda: mock_market_data
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


def test_websocket_sends_current_snapshot(client):
    with client.websocket_connect("/api/v1/ws/rates") as websocket:
        data = websocket.receive_json()

    assert data["type"] == "rates"
    assert data["base_currency"] == "USD"
    assert data["fiat"] == {"EUR": 0.92, "USD": 1.0}
    assert data["crypto"] == {"BTC": 85000.0}
    assert data["stale"] is False


def test_websocket_pushes_later_snapshots(client, mock_market_data):
    with client.websocket_connect("/api/v1/ws/rates") as websocket:
        websocket.receive_json()
        mock_market_data.listeners[0](make_snapshot(0.95))
        data = websocket.receive_json()

    assert data["fiat"]["EUR"] == 0.95


def test_websocket_unsubscribes_on_disconnect(client, mock_market_data):
    with client.websocket_connect("/api/v1/ws/rates") as websocket:
        websocket.receive_json()

    mock_market_data.subscription.unsubscribe.assert_called_once()
