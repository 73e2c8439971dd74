#!/usr/bin/env python3
"""Block processing loop for the chain pulse service.

The BlockPoller consumes block numbers announced by a block listener,
fetches each block and its transactions, and pushes every accepted
transaction through enrichment, the TPM tracker and the broadcast hub.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

from .broadcast_hub import BroadcastHub
from .enricher import TransactionEnricher
from .errors import ChainPulseError, OperationCancelled, RetryExhausted
from .gas_price_history import GasPriceHistory
from .models import TransactionRecord
from .tpm_tracker import TPMWindowTracker
from .utils.chain_provider import ChainProvider
from .utils.retry import RetryExecutor

# Get logger for this module
logger = logging.getLogger(__name__)


class PollerState(Enum):
    """Processing state of the block poller."""
    IDLE = "idle"
    AWAITING_NOTIFICATION = "awaiting_notification"
    FETCHING_BLOCK = "fetching_block"
    PROCESSING_TRANSACTIONS = "processing_transactions"
    STOPPED = "stopped"


class BlockPoller:
    """
    Processes announced blocks one at a time.
    
    Transactions of one block are fetched and enriched concurrently (bounded
    by max_concurrency); the results are then committed in the provider's
    transaction order, so TPM acceptances and publishes follow that order.
    Failures of a single transaction or block are logged and skipped;
    failures while mutating shared state propagate and stop the poller.
    """

    def __init__(
        self,
        provider: ChainProvider,
        retry: RetryExecutor,
        enricher: TransactionEnricher,
        tracker: TPMWindowTracker,
        hub: BroadcastHub,
        queue: asyncio.Queue[int],
        gas_history: GasPriceHistory | None = None,
        max_concurrency: int = 8,
        clock: Callable[[], float] = time.time
    ) -> None:
        """
        Initialize the BlockPoller.
        
        :param provider: Chain provider for block and transaction fetches
        :param retry: Executor applied to every provider call
        :param enricher: Transaction enricher (also owns the exclusion filter)
        :param tracker: Shared TPM window tracker
        :param hub: Broadcast hub receiving the records
        :param queue: Queue of announced block numbers
        :param gas_history: Optional daily gas price recorder
        :param max_concurrency: Concurrent transaction tasks per block
        :param clock: Source of acceptance timestamps
        """
        self.provider = provider
        self.retry = retry
        self.enricher = enricher
        self.tracker = tracker
        self.hub = hub
        self.queue = queue
        self.gas_history = gas_history
        self.max_concurrency = max_concurrency
        self._clock = clock
        
        self.state = PollerState.IDLE
        self.is_running = False
        self.last_block: int | None = None
        
        # Metrics tracking
        self.blocks_processed = 0
        self.blocks_failed = 0
        self.transactions_accepted = 0
        self.transactions_excluded = 0
        self.transactions_failed = 0

    async def run(self) -> None:
        """Consume block notifications until stopped or cancelled."""
        self.is_running = True
        logger.info("Block poller started, waiting for blocks...")
        
        try:
            while self.is_running:
                self.state = PollerState.AWAITING_NOTIFICATION
                block_number = await self.queue.get()
                try:
                    logger.info(f"New block detected: {block_number}")
                    await self.process_block(block_number)
                except OperationCancelled:
                    logger.info(f"Shutdown requested while processing block {block_number}")
                    break
                except ChainPulseError as e:
                    self.blocks_failed += 1
                    logger.error(f"Error processing block {block_number}: {e}")
                finally:
                    self.queue.task_done()
        finally:
            self.is_running = False
            self.state = PollerState.STOPPED
            logger.info("Block poller stopped")

    async def stop(self) -> None:
        """Stop after the block currently being processed."""
        self.is_running = False

    async def process_block(self, block_number: int) -> list[TransactionRecord]:
        """
        Fetch one block and process its transactions.
        
        :param block_number: Number of the announced block
        :return: Records published for this block, in provider order
        """
        self.state = PollerState.FETCHING_BLOCK
        try:
            block = await self.retry.run(
                lambda: self.provider.get_block(block_number),
                description=f"block fetch {block_number}"
            )
        except RetryExhausted as e:
            self.blocks_failed += 1
            logger.error(f"Error fetching block {block_number}: {e}")
            self.state = PollerState.IDLE
            return []
        
        tx_hashes: list[str] = block.get('transactions') or []
        logger.info(f"Block {block_number} fetched. Contains {len(tx_hashes)} transactions.")
        
        self.state = PollerState.PROCESSING_TRANSACTIONS
        semaphore = asyncio.Semaphore(self.max_concurrency)
        tasks = [
            asyncio.create_task(self._fetch_and_enrich(tx_hash, block, semaphore))
            for tx_hash in tx_hashes
        ]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            # Shutdown or cancellation: no sibling may outlive the block
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        
        records: list[TransactionRecord] = []
        accepted: list[dict[str, Any]] = []
        for tx, record in results:
            if tx is not None:
                accepted.append(tx)
            if record is None:
                continue
            self.tracker.record_acceptance(self._clock())
            await self.hub.publish(record)
            records.append(record)
        
        self.transactions_accepted += len(records)
        
        if self.gas_history is not None and accepted:
            await asyncio.to_thread(self.gas_history.record_block, accepted)
        
        self.blocks_processed += 1
        self.last_block = block_number
        self.state = PollerState.IDLE
        logger.info(f"Block {block_number} done: {len(records)}/{len(tx_hashes)} transactions broadcast")
        return records

    async def _fetch_and_enrich(
        self,
        tx_hash: str,
        block: dict[str, Any],
        semaphore: asyncio.Semaphore
    ) -> tuple[dict[str, Any] | None, TransactionRecord | None]:
        """
        Fetch and enrich one transaction.
        
        :return: (transaction if fetched and not excluded, record if enriched)
        """
        async with semaphore:
            logger.debug(f"Processing transaction hash: {tx_hash}")
            try:
                tx = await self.retry.run(
                    lambda: self.provider.get_transaction(tx_hash),
                    description=f"transaction fetch {tx_hash}"
                )
                if tx is None:
                    logger.warning(f"Transaction {tx_hash} not found, skipping")
                    return None, None
                
                if self.enricher.is_excluded(tx):
                    self.transactions_excluded += 1
                    logger.debug(f"Transaction skipped: {tx_hash} From: {tx.get('from')}")
                    return None, None
                
                return tx, await self.enricher.enrich(tx, block)
            
            except OperationCancelled:
                raise
            except Exception as e:
                self.transactions_failed += 1
                logger.error(f"Error processing transaction {tx_hash}: {e}")
                return None, None

    def get_status(self) -> dict[str, Any]:
        """Get current status and metrics of the poller."""
        return {
            "state": self.state.value,
            "is_running": self.is_running,
            "last_block": self.last_block,
            "pending_blocks": self.queue.qsize(),
            "blocks_processed": self.blocks_processed,
            "blocks_failed": self.blocks_failed,
            "transactions_accepted": self.transactions_accepted,
            "transactions_excluded": self.transactions_excluded,
            "transactions_failed": self.transactions_failed
        }
