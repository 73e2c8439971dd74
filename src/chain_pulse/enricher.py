#!/usr/bin/env python3
"""Transaction enrichment for the chain pulse service.

This module turns raw provider transactions into TransactionRecords:
applying the sender exclusion filter, resolving the method name, counting
receipt logs and formatting amounts in human-readable units.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from web3 import Web3

from .errors import MalformedData, RetryExhausted, TransientNetworkError
from .method_resolver import MethodNameResolver, decode_selector
from .models import TransactionRecord
from .utils.chain_provider import ChainProvider
from .utils.retry import RetryExecutor

# Get logger for this module
logger = logging.getLogger(__name__)


def format_units(amount: Any, unit: str) -> str:
    """Format a wei amount as a decimal string in the given unit.
    
    Absent or zero amounts format as "0". Whole numbers keep one fractional digit
    ("1.0"), matching what dashboard clients expect.
    
    Args:
        amount: Integer amount in wei, or None
        unit: Web3 unit name ("ether", "gwei", ...)
        
    Returns:
        Decimal string without exponent notation
    """
    if not amount:
        return "0"
    text = format(Decimal(Web3.from_wei(int(amount), unit)), "f")
    return text if "." in text else f"{text}.0"


class TransactionEnricher:
    """Builds TransactionRecords from raw transactions.
    
    This class is responsible for:
    - Skipping transactions sent by the configured exclusion address
    - Resolving the method selector to a signature
    - Fetching the receipt to count emitted events
    - Defaulting absent numeric fields instead of failing the record
    - Maintaining metrics on enriched and skipped transactions
    """
    
    def __init__(
        self,
        provider: ChainProvider,
        resolver: MethodNameResolver,
        retry: RetryExecutor,
        exclude_address: str
    ) -> None:
        """Initialize the TransactionEnricher.
        
        Args:
            provider: Chain provider used for receipt fetches
            resolver: Method name resolver
            retry: Executor applied to receipt fetches
            exclude_address: Sender address to filter out (any case)
        """
        self.provider = provider
        self.resolver = resolver
        self.retry = retry
        self.exclude_address = exclude_address.lower()
        
        # Metrics tracking
        self.transactions_enriched = 0
        self.transactions_excluded = 0
        self.transactions_invalid = 0
        self.transactions_failed = 0
    
    def is_excluded(self, tx: dict[str, Any]) -> bool:
        """Check whether a transaction comes from the exclusion address."""
        sender = tx.get('from')
        return bool(sender) and str(sender).lower() == self.exclude_address
    
    async def enrich(self, tx: dict[str, Any], block: dict[str, Any]) -> TransactionRecord | None:
        """Enrich a raw transaction into a TransactionRecord.
        
        Failures of the receipt fetch after retries are logged and the
        transaction is skipped; they never propagate to sibling transactions.
        
        Args:
            tx: Normalised transaction from the ChainProvider
            block: Block the transaction belongs to
            
        Returns:
            TransactionRecord, or None if the transaction is skipped
        """
        if self.is_excluded(tx):
            self.transactions_excluded += 1
            logger.debug(f"Skipping transaction {tx.get('hash')} from excluded sender")
            return None
        
        tx_hash = tx.get('hash')
        sender = tx.get('from')
        if not tx_hash or not sender:
            self.transactions_invalid += 1
            error = MalformedData(f"Transaction without hash or sender in block {block.get('number')}")
            logger.warning(f"{error}: {tx}")
            return None
        
        try:
            method_signature = await self.resolver.resolve(decode_selector(tx.get('data')))
            
            receipt = await self.retry.run(
                lambda: self.provider.get_transaction_receipt(tx_hash),
                description=f"receipt fetch for {tx_hash}"
            )
        except (RetryExhausted, TransientNetworkError) as e:
            self.transactions_failed += 1
            logger.error(f"Error processing transaction {tx_hash}: {e}")
            return None
        
        event_count = len(receipt.get('logs') or []) if receipt else 0
        
        record = TransactionRecord(
            hash=tx_hash,
            observed_at=datetime.fromtimestamp(block.get('timestamp') or 0, tz=timezone.utc),
            block_number=tx.get('blockNumber') or block.get('number') or 0,
            gas_limit=str(tx['gasLimit']) if tx.get('gasLimit') is not None else "0",
            sender=sender,
            recipient=tx.get('to'),
            value=format_units(tx.get('value'), 'ether'),
            nonce=tx.get('nonce') or 0,
            gas_price=format_units(tx.get('gasPrice'), 'gwei'),
            method_signature=method_signature,
            event_count=event_count
        )
        
        self.transactions_enriched += 1
        logger.debug(f"Enriched {record}")
        return record
    
    def get_metrics(self) -> dict[str, int]:
        """Get current enrichment metrics."""
        return {
            "transactions_enriched": self.transactions_enriched,
            "transactions_excluded": self.transactions_excluded,
            "transactions_invalid": self.transactions_invalid,
            "transactions_failed": self.transactions_failed
        }
