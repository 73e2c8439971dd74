#!/usr/bin/env python3
"""Tests for the ChainProvider wrapper."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from web3.exceptions import TransactionNotFound

from chain_pulse.errors import TransientNetworkError
from chain_pulse.utils.chain_provider import ChainProvider, to_hex_str


async def value(result):
    return result


@pytest.fixture
def w3():
    mock = MagicMock()
    mock.eth.get_block = AsyncMock()
    mock.eth.get_transaction = AsyncMock()
    mock.eth.get_transaction_receipt = AsyncMock()
    return mock


@pytest.fixture
def provider(w3):
    return ChainProvider("https://rpc.frax.com", w3=w3)


def test_to_hex_str():
    assert to_hex_str(b"\xa9\x05\x9c\xbb") == "0xa9059cbb"
    assert to_hex_str("a9059cbb") == "0xa9059cbb"
    assert to_hex_str("0xa9059cbb") == "0xa9059cbb"
    assert to_hex_str(None) is None


class TestChainProvider:
    """Test suite for ChainProvider."""
    
    @pytest.mark.asyncio
    async def test_block_number(self, provider, w3):
        w3.eth.block_number = value(1234)
        
        assert await provider.get_block_number() == 1234
    
    @pytest.mark.asyncio
    async def test_get_block_normalises_hashes(self, provider, w3):
        w3.eth.get_block.return_value = {
            "number": 5,
            "timestamp": 1700000000,
            "transactions": [b"\x12\x34", b"\xab\xcd"],
        }
        
        block = await provider.get_block(5)
        
        assert block == {"number": 5, "timestamp": 1700000000, "transactions": ["0x1234", "0xabcd"]}
        w3.eth.get_block.assert_awaited_once_with(5)
    
    @pytest.mark.asyncio
    async def test_get_transaction_normalises_fields(self, provider, w3):
        w3.eth.get_transaction.return_value = {
            "hash": bytes.fromhex("11" * 32),
            "from": "0x742d35Cc6634C0532925a3b844Bc9e7595f8fA49",
            "to": None,
            "value": 0,
            "gas": 53000,
            "gasPrice": 1_000_000,
            "nonce": 9,
            "input": b"\x60\x80",
            "blockNumber": 5,
        }
        
        tx = await provider.get_transaction("0x" + "11" * 32)
        
        assert tx["hash"] == "0x" + "11" * 32
        assert tx["to"] is None
        assert tx["gasLimit"] == 53000
        assert tx["data"] == "0x6080"
        assert tx["blockNumber"] == 5
    
    @pytest.mark.asyncio
    async def test_unknown_transaction_is_none(self, provider, w3):
        w3.eth.get_transaction.side_effect = TransactionNotFound("not found")
        w3.eth.get_transaction_receipt.side_effect = TransactionNotFound("not found")
        
        assert await provider.get_transaction("0x01") is None
        assert await provider.get_transaction_receipt("0x01") is None
    
    @pytest.mark.asyncio
    async def test_receipt_logs(self, provider, w3):
        w3.eth.get_transaction_receipt.return_value = {"logs": [{"logIndex": 0}], "status": 1}
        
        receipt = await provider.get_transaction_receipt("0x01")
        
        assert receipt == {"logs": [{"logIndex": 0}]}
    
    @pytest.mark.asyncio
    async def test_network_errors_wrapped(self, provider, w3):
        w3.eth.get_block.side_effect = OSError("connection reset by peer")
        
        with pytest.raises(TransientNetworkError, match="connection reset"):
            await provider.get_block(5)
