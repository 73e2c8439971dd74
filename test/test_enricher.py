#!/usr/bin/env python3
"""Tests for transaction enrichment."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from chain_pulse.enricher import TransactionEnricher, format_units
from chain_pulse.errors import TransientNetworkError
from chain_pulse.utils.retry import RetryExecutor

EXCLUDED = "0xDeaDDEaDDeAdDeAdDEAdDEaddeAddEAdDEAd0001"
SENDER = "0x742d35Cc6634C0532925a3b844Bc9e7595f8fA49"
RECIPIENT = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"


async def no_sleep(delay):
    return None


@pytest.fixture
def provider():
    mock = MagicMock()
    mock.get_transaction_receipt = AsyncMock(return_value={"logs": [{}, {}]})
    return mock


@pytest.fixture
def resolver():
    mock = MagicMock()
    mock.resolve = AsyncMock(return_value="transfer(address,uint256)")
    return mock


@pytest.fixture
def enricher(provider, resolver):
    return TransactionEnricher(
        provider=provider,
        resolver=resolver,
        retry=RetryExecutor(max_attempts=3, initial_delay=1.0, sleep=no_sleep),
        exclude_address=EXCLUDED.lower()
    )


@pytest.fixture
def block():
    return {"number": 100, "timestamp": 1700000000, "transactions": ["0xabc"]}


def make_tx(**overrides):
    tx = {
        "hash": "0xabc",
        "from": SENDER,
        "to": RECIPIENT,
        "value": 1_500_000_000_000_000_000,
        "gasLimit": 21000,
        "gasPrice": 1_000_000_000,
        "nonce": 7,
        "data": "0xa9059cbb" + "0" * 128,
        "blockNumber": 100,
    }
    tx.update(overrides)
    return tx


class TestFormatUnits:
    """Tests for human-readable unit formatting."""
    
    def test_whole_ether(self):
        assert format_units(10**18, "ether") == "1.0"
    
    def test_fractional_ether(self):
        assert format_units(1_500_000_000_000_000_000, "ether") == "1.5"
    
    def test_smallest_unit_without_exponent(self):
        assert format_units(1, "ether") == "0.000000000000000001"
    
    def test_gwei(self):
        assert format_units(1_234_567_890, "gwei") == "1.23456789"
    
    def test_missing_amount(self):
        assert format_units(None, "gwei") == "0"
    
    def test_zero_amount(self):
        assert format_units(0, "ether") == "0"
        assert format_units(0, "gwei") == "0"


class TestTransactionEnricher:
    """Test suite for TransactionEnricher."""
    
    @pytest.mark.asyncio
    async def test_builds_record(self, enricher, resolver, block):
        """Test that a normal transaction becomes a complete record."""
        record = await enricher.enrich(make_tx(), block)
        
        assert record is not None
        assert record.hash == "0xabc"
        assert record.observed_at == datetime.fromtimestamp(1700000000, tz=timezone.utc)
        assert record.block_number == 100
        assert record.gas_limit == "21000"
        assert record.sender == SENDER
        assert record.recipient == RECIPIENT
        assert record.value == "1.5"
        assert record.nonce == 7
        assert record.gas_price == "1.0"
        assert record.method_signature == "transfer(address,uint256)"
        assert record.event_count == 2
        resolver.resolve.assert_awaited_once_with("0xa9059cbb")
        assert enricher.transactions_enriched == 1
    
    @pytest.mark.asyncio
    async def test_wire_format(self, enricher, block):
        record = await enricher.enrich(make_tx(), block)
        
        wire = record.to_dict()
        
        assert wire["time"] == "2023-11-14T22:13:20Z"
        assert wire["block"] == 100
        assert wire["gas"] == "21000"
        assert wire["from"] == SENDER
        assert wire["gasPrice"] == "1.0"
        assert wire["method"] == "transfer(address,uint256)"
        assert wire["eventCount"] == 2
    
    @pytest.mark.asyncio
    async def test_excluded_sender_any_case(self, enricher, provider, resolver, block):
        """Test that the exclusion filter ignores address case."""
        for sender in (EXCLUDED, EXCLUDED.lower(), EXCLUDED.upper().replace("0X", "0x")):
            assert await enricher.enrich(make_tx(**{"from": sender}), block) is None
        
        assert enricher.transactions_excluded == 3
        assert resolver.resolve.await_count == 0
        assert provider.get_transaction_receipt.await_count == 0
    
    def test_is_excluded(self, enricher):
        assert enricher.is_excluded(make_tx(**{"from": EXCLUDED.upper().replace("0X", "0x")}))
        assert not enricher.is_excluded(make_tx())
        assert not enricher.is_excluded(make_tx(**{"from": None}))
    
    @pytest.mark.asyncio
    async def test_missing_receipt_counts_zero_events(self, enricher, provider, block):
        provider.get_transaction_receipt.return_value = None
        
        record = await enricher.enrich(make_tx(), block)
        
        assert record.event_count == 0
    
    @pytest.mark.asyncio
    async def test_absent_numeric_fields_default(self, enricher, block):
        """Test that absent amounts default instead of failing the record."""
        tx = make_tx(value=None, gasPrice=None, gasLimit=None, nonce=None, to=None, data=None)
        
        record = await enricher.enrich(tx, block)
        
        assert record.value == "0"
        assert record.gas_price == "0"
        assert record.gas_limit == "0"
        assert record.nonce == 0
        assert record.recipient is None
    
    @pytest.mark.asyncio
    async def test_zero_value_transaction(self, enricher, block):
        """Test that zero value and gas price format like absent ones."""
        record = await enricher.enrich(make_tx(value=0, gasPrice=0), block)
        
        assert record.value == "0"
        assert record.gas_price == "0"
    
    @pytest.mark.asyncio
    async def test_plain_transfer_selector(self, enricher, resolver, block):
        await enricher.enrich(make_tx(data="0x"), block)
        
        resolver.resolve.assert_awaited_once_with("0x")
    
    @pytest.mark.asyncio
    async def test_block_number_falls_back_to_block(self, enricher, block):
        record = await enricher.enrich(make_tx(blockNumber=None), block)
        
        assert record.block_number == 100
    
    @pytest.mark.asyncio
    async def test_receipt_failure_skips_transaction(self, enricher, provider, block):
        """Test that a receipt failing after retries yields no record."""
        provider.get_transaction_receipt.side_effect = TransientNetworkError("timeout")
        
        record = await enricher.enrich(make_tx(), block)
        
        assert record is None
        assert provider.get_transaction_receipt.await_count == 3
        assert enricher.transactions_failed == 1
    
    @pytest.mark.asyncio
    async def test_missing_hash_is_invalid(self, enricher, block):
        assert await enricher.enrich(make_tx(hash=None), block) is None
        assert enricher.get_metrics()["transactions_invalid"] == 1
