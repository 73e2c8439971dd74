"""
Chain provider wrapper around AsyncWeb3 for block and transaction fetches.
"""

import logging
from collections.abc import Awaitable
from typing import Any, TypeVar

import aiohttp
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound

from ..errors import TransientNetworkError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def to_hex_str(value: Any) -> str | None:
    """
    Normalise a hash, address or calldata value to a 0x-prefixed hex string.
    
    Providers return these either as bytes (HexBytes) or as hex strings with
    or without the prefix.
    
    :param value: bytes, str or None
    :return: 0x-prefixed hex string, or None when value is None
    """
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(bytes(value))
    text = str(value)
    return text if text.startswith('0x') else '0x' + text


class ChainProvider:
    """
    Read-only access to the chain node over JSON-RPC.
    
    Every call is network I/O that may fail; failures other than "not found"
    are raised as TransientNetworkError so the RetryExecutor can retry them.
    """

    def __init__(self, rpc_url: str, request_timeout: int = 30, w3: AsyncWeb3 | None = None) -> None:
        """
        Initialize the ChainProvider.
        
        Args:
            rpc_url: HTTP(S) RPC endpoint of the node
            request_timeout: Per-request timeout in seconds
            w3: Pre-built AsyncWeb3 instance (tests inject a mock)
        """
        if not rpc_url:
            raise ValueError("RPC URL is required")
        
        self.rpc_url = rpc_url
        self.w3 = w3 or AsyncWeb3(AsyncHTTPProvider(
            rpc_url,
            request_kwargs={'timeout': aiohttp.ClientTimeout(total=request_timeout)}
        ))

    async def _call(self, description: str, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except TransactionNotFound:
            raise
        except Exception as e:
            raise TransientNetworkError(f"{description} failed: {e}") from e

    async def get_chain_id(self) -> int:
        """Return the chain ID reported by the node."""
        return await self._call("eth_chainId", self.w3.eth.chain_id)

    async def get_block_number(self) -> int:
        """Return the latest block number."""
        return await self._call("eth_blockNumber", self.w3.eth.block_number)

    async def get_block(self, number: int) -> dict[str, Any]:
        """
        Fetch a block with transaction hashes only.
        
        :param number: Block number to fetch
        :return: Dict with number, timestamp and transactions (hash list)
        """
        block = await self._call(f"eth_getBlockByNumber({number})", self.w3.eth.get_block(number))
        return {
            'number': block.get('number', number),
            'timestamp': block.get('timestamp', 0),
            'transactions': [to_hex_str(tx_hash) for tx_hash in block.get('transactions', [])]
        }

    async def get_transaction(self, tx_hash: str) -> dict[str, Any] | None:
        """
        Fetch a transaction by hash.
        
        :param tx_hash: Transaction hash
        :return: Normalised transaction dict, or None if the node does not know it
        """
        try:
            tx = await self._call(f"eth_getTransactionByHash({tx_hash})", self.w3.eth.get_transaction(tx_hash))
        except TransactionNotFound:
            logger.debug(f"Transaction {tx_hash} not found")
            return None
        
        return {
            'hash': to_hex_str(tx.get('hash')) or tx_hash,
            'from': tx.get('from'),
            'to': tx.get('to'),
            'value': tx.get('value'),
            'gasLimit': tx.get('gas'),
            'gasPrice': tx.get('gasPrice'),
            'nonce': tx.get('nonce'),
            'data': to_hex_str(tx.get('input')),
            'blockNumber': tx.get('blockNumber')
        }

    async def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        """
        Fetch a transaction receipt by hash.
        
        :param tx_hash: Transaction hash
        :return: Dict with the receipt logs, or None if no receipt exists yet
        """
        try:
            receipt = await self._call(
                f"eth_getTransactionReceipt({tx_hash})",
                self.w3.eth.get_transaction_receipt(tx_hash)
            )
        except TransactionNotFound:
            return None
        
        if receipt is None:
            return None
        return {'logs': list(receipt.get('logs') or [])}
