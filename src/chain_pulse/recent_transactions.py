#!/usr/bin/env python3
"""Lookup of the most recent broadcastable transactions.

Used by dashboard clients on page load, before the push channel has
delivered anything: walks back from the chain head and enriches the newest
transactions not sent by the exclusion address.
"""

import logging

from .enricher import TransactionEnricher
from .models import TransactionRecord
from .utils.chain_provider import ChainProvider
from .utils.retry import RetryExecutor

# Get logger for this module
logger = logging.getLogger(__name__)


class LatestTransactionFinder:
    """Finds the newest non-excluded transactions by walking back from the head.

    Provider calls go through the RetryExecutor; a call that still fails
    raises RetryExhausted to the caller. Excluded and unenrichable
    transactions are skipped.
    """

    def __init__(
        self,
        provider: ChainProvider,
        retry: RetryExecutor,
        enricher: TransactionEnricher,
        max_blocks: int = 100
    ) -> None:
        """Initialize the finder.

        Args:
            provider: Chain provider for head, block and transaction fetches
            retry: Executor applied to every provider call
            enricher: Enricher shared with the block poller
            max_blocks: Blocks inspected at most before giving up
        """
        self.provider = provider
        self.retry = retry
        self.enricher = enricher
        self.max_blocks = max_blocks

    async def find(self, limit: int = 1) -> list[TransactionRecord]:
        """Return up to limit records, newest block first.

        Args:
            limit: Number of records wanted

        Returns:
            Records in block order (newest block first, provider order within
            a block); fewer than limit if max_blocks ran out
        """
        head = await self.retry.run(self.provider.get_block_number, description="head block lookup")
        logger.info(f"Latest block number: {head}")

        records: list[TransactionRecord] = []
        lowest = max(head - self.max_blocks + 1, 0)

        for block_number in range(head, lowest - 1, -1):
            block = await self.retry.run(
                lambda: self.provider.get_block(block_number),
                description=f"block fetch {block_number}"
            )

            for tx_hash in block.get('transactions') or []:
                tx = await self.retry.run(
                    lambda: self.provider.get_transaction(tx_hash),
                    description=f"transaction fetch {tx_hash}"
                )
                if tx is None or self.enricher.is_excluded(tx):
                    logger.debug(f"Transaction skipped: {tx_hash}")
                    continue

                record = await self.enricher.enrich(tx, block)
                if record is None:
                    continue

                records.append(record)
                if len(records) >= limit:
                    return records

        logger.info(f"Found {len(records)} transactions in blocks {lowest}..{head}")
        return records
