#!/usr/bin/env python3
"""Tests for the push channel and query endpoints."""

import json
import time
from datetime import datetime, timezone

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from chain_pulse.api import create_app
from chain_pulse.broadcast_hub import BroadcastHub
from chain_pulse.errors import RetryExhausted, TransientNetworkError
from chain_pulse.models import TransactionRecord
from chain_pulse.tpm_tracker import TPMWindowTracker


@pytest.fixture
def tracker():
    return TPMWindowTracker(clock=lambda: 1000.0)


@pytest.fixture
def hub():
    return BroadcastHub()


@pytest.fixture
def client(tracker, hub, tmp_path):
    app = create_app(tracker, hub, tmp_path, status=lambda: {"status": "running"})
    with TestClient(app) as test_client:
        yield test_client


def wait_for_subscribers(client, hub, expected):
    for _ in range(100):
        if client.portal.call(hub.subscriber_count) == expected:
            return
        time.sleep(0.01)
    raise AssertionError(f"expected {expected} subscribers")


class TestTpmEndpoints:
    """Tests for the TPM analytics endpoints."""
    
    def test_current_tpm(self, client, tracker):
        tracker.record_acceptance(990.0)
        tracker.record_acceptance(999.0)
        
        response = client.get("/api/tpm")
        
        assert response.status_code == 200
        assert response.json() == {"tpm": 2}
    
    def test_history_timestamps_in_milliseconds(self, client, tracker):
        tracker.record_acceptance(999.5)
        
        response = client.get("/api/tpm/history")
        
        assert response.json() == [{"tpm": 1, "timestamp": 999500}]
    
    def test_empty_statistics(self, client):
        response = client.get("/api/tpm/statistics")
        
        assert response.json() == {
            "high": None,
            "low": None,
            "current": 0,
            "change_last_hour_pct": 0.0
        }


class TestHistoryEndpoints:
    """Tests for the price history file endpoints."""
    
    def test_price_history(self, client, tmp_path):
        entries = [
            {"time": "2024-01-01T00:00:00.000Z", "value": 0.99},
            {"time": "2024-01-02T00:00:00.000Z", "value": 1.01},
        ]
        (tmp_path / "fraxPriceHistory.json").write_text(json.dumps(entries))
        
        assert client.get("/api/fraxprice").json() == entries
        assert client.get("/api/fraxprice/latest").json() == entries[-1]
    
    def test_gas_price_history(self, client, tmp_path):
        entries = [{"time": "2024-01-01T00:00:00.000Z", "value": "2.00000000000000000000"}]
        (tmp_path / "gasPriceHistory.json").write_text(json.dumps(entries))
        
        assert client.get("/api/gasprice").json() == entries
    
    def test_missing_file_is_server_error(self, client):
        response = client.get("/api/ethprice")
        
        assert response.status_code == 500
        assert response.json() == {"error": "Failed to read eth price history file"}
    
    def test_corrupt_file_is_server_error(self, client, tmp_path):
        (tmp_path / "ethPriceHistory.json").write_text("[{")
        
        assert client.get("/api/ethprice/latest").status_code == 500
    
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "running"}


class TestPushChannel:
    """Tests for the WebSocket transaction stream."""
    
    @pytest.mark.parametrize("path", ["/", "/ws"])
    def test_receives_published_record(self, client, hub, path):
        record = TransactionRecord(
            hash="0x" + "cd" * 32,
            observed_at=datetime(2024, 1, 1, 12, tzinfo=timezone.utc),
            block_number=42,
            gas_limit="50000",
            sender="0x742d35Cc6634C0532925a3b844Bc9e7595f8fA49",
            recipient="0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
            value="0.5",
            nonce=3,
            gas_price="0.001",
            method_signature="approve(address,uint256)",
            event_count=1
        )
        
        with client.websocket_connect(path) as websocket:
            wait_for_subscribers(client, hub, 1)
            client.portal.call(hub.publish, record)
            
            message = websocket.receive_json()
        
        assert message == record.to_dict()
        assert message["time"] == "2024-01-01T12:00:00Z"
        wait_for_subscribers(client, hub, 0)


class TestLiveEndpoints:
    """Tests for the latest transaction lookup and current prices."""
    
    @pytest.fixture
    def finder(self):
        return AsyncMock()
    
    @pytest.fixture
    def price_feed(self):
        return AsyncMock()
    
    @pytest.fixture
    def live_client(self, tracker, hub, tmp_path, finder, price_feed):
        app = create_app(tracker, hub, tmp_path, latest_transactions=finder, price_feed=price_feed)
        with TestClient(app) as test_client:
            yield test_client
    
    def test_latest_transactions(self, live_client, finder):
        record = TransactionRecord(
            hash="0x" + "ef" * 32,
            observed_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            block_number=7,
            gas_limit="21000",
            sender="0x742d35Cc6634C0532925a3b844Bc9e7595f8fA49",
            recipient=None,
            value="1.0",
            nonce=0,
            gas_price="0.001",
            method_signature="0x",
            event_count=0
        )
        finder.find.return_value = [record]
        
        response = live_client.get("/last10tx")
        
        assert response.status_code == 200
        assert response.json() == [record.to_dict()]
    
    def test_latest_transactions_failure(self, live_client, finder):
        finder.find.side_effect = RetryExhausted("head block lookup", 5, ConnectionError("refused"))
        
        response = live_client.get("/last10tx")
        
        assert response.status_code == 500
        assert "head block lookup failed after 5 attempts" in response.json()["error"]
    
    @pytest.mark.parametrize("series", ["frax", "eth"])
    def test_current_price(self, live_client, price_feed, series):
        candle = {"time": "2024-01-01T00:00:00.000Z", "open": "0.998", "high": "0.998", "low": "0.998", "close": "0.998"}
        price_feed.current_price.return_value = candle
        
        response = live_client.get(f"/api/{series}price/current")
        
        assert response.status_code == 200
        assert response.json() == candle
        price_feed.current_price.assert_awaited_once_with(series)
    
    def test_current_price_failure(self, live_client, price_feed):
        price_feed.current_price.side_effect = TransientNetworkError("rate limited")
        
        response = live_client.get("/api/ethprice/current")
        
        assert response.status_code == 500
        assert response.json() == {"error": "Error fetching the latest price"}
    
    def test_routes_absent_without_sources(self, client):
        assert client.get("/last10tx").status_code == 404
        assert client.get("/api/fraxprice/current").status_code == 404
