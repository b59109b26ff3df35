from datetime import UTC, datetime, timedelta

import pytest

from domain.models.rates import RateSnapshot, clean_changes, clean_rates


def test_clean_rates_normalizes_codes_and_drops_bad_values():
    raw = {
        "eur": "0.92",
        " gbp ": 0.78,
        "JPY": 0,
        "CHF": -0.88,
        "AUD": float("nan"),
        "CAD": float("inf"),
        "NZD": True,
        "MXN": None,
        "SEK": "ten",
        5: 1.0,
    }

    assert clean_rates(raw) == {"EUR": 0.92, "GBP": 0.78}


def test_snapshot_always_carries_usd_at_one():
    snapshot = RateSnapshot(
        timestamp=datetime.now(UTC),
        fiat={"USD": 2.0, "EUR": 0.9},
        crypto={},
    )

    assert snapshot.fiat["USD"] == 1.0
    assert snapshot.fiat["EUR"] == 0.9


def test_snapshot_adds_usd_when_missing():
    snapshot = RateSnapshot(timestamp=datetime.now(UTC), fiat={}, crypto={"BTC": 1.0})

    assert dict(snapshot.fiat) == {"USD": 1.0}


def test_snapshot_maps_are_read_only():
    snapshot = RateSnapshot(timestamp=datetime.now(UTC), fiat={"EUR": 0.9}, crypto={"BTC": 85000})

    with pytest.raises(TypeError):
        snapshot.fiat["EUR"] = 1.0
    with pytest.raises(TypeError):
        snapshot.crypto["BTC"] = 1.0


def test_snapshot_is_decoupled_from_source_dict():
    fiat = {"EUR": 0.9}
    snapshot = RateSnapshot(timestamp=datetime.now(UTC), fiat=fiat, crypto={})

    fiat["EUR"] = 5.0

    assert snapshot.fiat["EUR"] == 0.9


def test_age_and_knows():
    taken = datetime(2025, 1, 1, 12, 0, 0, tzinfo=UTC)
    snapshot = RateSnapshot(timestamp=taken, fiat={"EUR": 0.9}, crypto={"BTC": 85000})

    assert snapshot.age_seconds(taken + timedelta(seconds=45)) == 45
    assert snapshot.age_seconds(taken - timedelta(seconds=5)) == 0
    assert snapshot.knows("BTC")
    assert snapshot.knows("USD")
    assert not snapshot.knows("ZZZ")


def test_to_dict_is_plain_data():
    taken = datetime(2025, 1, 1, tzinfo=UTC)
    snapshot = RateSnapshot(
        timestamp=taken, fiat={"EUR": 0.9}, crypto={"ETH": 3200}, fiat_source="stream", stale=True
    )

    data = snapshot.to_dict()

    assert data["timestamp"] == taken.isoformat()
    assert data["fiat"] == {"EUR": 0.9, "USD": 1.0}
    assert data["crypto"] == {"ETH": 3200.0}
    assert data["fiat_source"] == "stream"
    assert data["crypto_source"] == "unknown"
    assert data["stale"] is True
    assert data["crypto_change_24h"] == {}


def test_clean_changes_keeps_zero_and_negative_moves():
    raw = {"btc": "-3.2", "ETH": 0, "SOL": float("nan"), "ADA": None, "DOT": False}

    assert clean_changes(raw) == {"BTC": -3.2, "ETH": 0.0}


def test_snapshot_changes_cover_only_known_assets():
    snapshot = RateSnapshot(
        timestamp=datetime.now(UTC),
        fiat={},
        crypto={"BTC": 85000, "ETH": 3200},
        crypto_change_24h={"BTC": -1.25, "DOGE": 12.0},
    )

    assert dict(snapshot.crypto_change_24h) == {"BTC": -1.25}
    assert snapshot.to_dict()["crypto_change_24h"] == {"BTC": -1.25}
    with pytest.raises(TypeError):
        snapshot.crypto_change_24h["BTC"] = 0.0
