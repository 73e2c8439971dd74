"""
Chain pulse service.

This module wires the ingestion pipeline together and manages its
lifecycle: block listener, block poller, push/query server and a periodic
status logger. All shared state is created here and injected into the
components that use it.
"""

import asyncio
import logging
from typing import Any

import uvicorn

from .api import create_app
from .block_poller import BlockPoller
from .broadcast_hub import BroadcastHub
from .config import ServiceConfig
from .enricher import TransactionEnricher
from .errors import SubscriptionFailure
from .gas_price_history import GasPriceHistory
from .method_resolver import MethodCache, MethodNameResolver
from .price_feed import PriceFeed
from .recent_transactions import LatestTransactionFinder
from .tpm_tracker import TPMWindowTracker
from .utils.block_listener import (
    BlockListener,
    ConnectionState,
    PollingBlockListener,
    WebSocketBlockListener,
)
from .utils.chain_provider import ChainProvider
from .utils.retry import RetryExecutor

logger = logging.getLogger(__name__)


class ChainPulseService:
    """
    Main service that orchestrates block ingestion and fan-out.
    
    This class focuses on coordination and lifecycle management, delegating
    block processing to the BlockPoller and delivery to the BroadcastHub.
    """

    def __init__(self, config: ServiceConfig) -> None:
        """
        Initialize the service.

        Args:
            config: Service configuration
        """
        self.config = config
        self.running = False
        
        # Async coordination; also interrupts retry backoff waits
        self.shutdown_event = asyncio.Event()
        
        self._init_components()
    
    def _init_components(self) -> None:
        """Create shared state and the components that use it."""
        config = self.config
        
        self.provider = ChainProvider(
            rpc_url=config.chain.rpc_url,
            request_timeout=config.chain.request_timeout
        )
        self.retry = RetryExecutor.from_config(config.retry, self.shutdown_event)
        
        self.method_cache = MethodCache()
        self.resolver = MethodNameResolver(
            cache=self.method_cache,
            retry=self.retry,
            directory_url=config.monitoring.signature_directory_url,
            request_timeout=config.chain.request_timeout
        )
        
        self.tracker = TPMWindowTracker(
            rate_window=config.windows.rate_window,
            retention_window=config.windows.retention_window
        )
        self.hub = BroadcastHub(send_timeout=config.server.send_timeout)
        self.gas_history = GasPriceHistory(config.server.data_dir)
        
        self.enricher = TransactionEnricher(
            provider=self.provider,
            resolver=self.resolver,
            retry=self.retry,
            exclude_address=config.chain.exclude_address
        )
        
        self.latest_transactions = LatestTransactionFinder(
            provider=self.provider,
            retry=self.retry,
            enricher=self.enricher,
            max_blocks=config.monitoring.latest_tx_max_blocks
        )
        self.price_feed = PriceFeed(
            base_url=config.server.price_api_url,
            request_timeout=config.chain.request_timeout
        )
        
        self.block_queue: asyncio.Queue[int] = asyncio.Queue(maxsize=config.monitoring.queue_size)
        self.listener: BlockListener
        if config.chain.ws_url:
            self.listener = WebSocketBlockListener(
                websocket_url=config.chain.ws_url,
                queue=self.block_queue
            )
        else:
            self.listener = PollingBlockListener(
                provider=self.provider,
                queue=self.block_queue,
                interval=config.monitoring.polling_interval
            )
        
        self.poller = BlockPoller(
            provider=self.provider,
            retry=self.retry,
            enricher=self.enricher,
            tracker=self.tracker,
            hub=self.hub,
            queue=self.block_queue,
            gas_history=self.gas_history,
            max_concurrency=config.monitoring.max_concurrency
        )
        
        self.app = create_app(
            tracker=self.tracker,
            hub=self.hub,
            data_dir=config.server.data_dir,
            status=self.get_status,
            latest_transactions=self.latest_transactions,
            price_feed=self.price_feed
        )
        
        logger.info(f"Initialized components ({self.listener.__class__.__name__} block source)")
    
    @classmethod
    def from_env(cls) -> "ChainPulseService":
        """
        Create a service instance from environment variables.
            
        Returns:
            Configured ChainPulseService instance
            
        Raises:
            ValueError: If required environment variables are missing
        """
        config = ServiceConfig.from_env()
        config.log_config()
        return cls(config)
    
    def get_status(self) -> dict[str, Any]:
        """Status of every component, served on /health."""
        return {
            "running": self.running,
            "listener": self.listener.get_status(),
            "poller": self.poller.get_status(),
            "enricher": self.enricher.get_metrics(),
            "resolver": self.resolver.get_metrics(),
            "hub": self.hub.get_metrics(),
            "tpm": self.tracker.current_tpm()
        }
    
    async def _log_network(self) -> None:
        try:
            chain_id = await self.provider.get_chain_id()
            logger.info(f"Connected to network (Chain ID: {chain_id})")
        except Exception as e:
            logger.error(f"Failed to connect to network: {e}")
    
    async def _serve_api(self) -> None:
        """Run the push/query server on the service's event loop."""
        server = uvicorn.Server(uvicorn.Config(
            self.app,
            host=self.config.server.host,
            port=self.config.server.port,
            log_level="warning"
        ))
        logger.info(f"Server is running on http://{self.config.server.host}:{self.config.server.port}")
        await server.serve()
    
    async def _periodic_status_logger(self) -> None:
        """Log status periodically while running."""
        while self.running:
            await asyncio.sleep(self.config.monitoring.status_interval)
            poller = self.poller.get_status()
            hub = self.hub.get_metrics()
            logger.info(
                f"Status: block {poller['last_block']}, "
                f"{poller['pending_blocks']} blocks pending, "
                f"{poller['transactions_accepted']} accepted, "
                f"TPM {self.tracker.current_tpm()}, "
                f"{hub['subscribers']} clients"
            )
    
    async def _check_task_health(self, tasks: dict[str, asyncio.Task]) -> bool:
        """
        Check if any critical task has ended.

        A listener that ends, normally or with an error, is reported once and
        dropped from the task set; the service keeps serving clients.
        """
        for name, task in list(tasks.items()):
            if not task.done() or name == "status":
                continue
            if task.cancelled():
                logger.error(f"{name} task was cancelled")
                return False
            error = task.exception()
            if name == "listener":
                if error is not None:
                    failure = SubscriptionFailure(f"Block listener failed: {error}")
                    logger.error(f"{failure}", exc_info=error)
                    self.listener.connection_state = ConnectionState.FAILED
                logger.error("No new blocks will be processed; still serving existing clients")
                del tasks[name]
                continue
            if error is not None:
                logger.error(f"{name} task failed: {error}", exc_info=error)
            else:
                logger.error(f"{name} task exited")
            return False
        return True
    
    async def _cleanup_tasks(self, tasks: dict[str, asyncio.Task]) -> None:
        """Clean up all tasks, listeners and clients."""
        self.shutdown_event.set()
        await self.listener.stop()
        await self.poller.stop()
        
        # Cancel all running tasks
        for name, task in tasks.items():
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass  # Expected when cancelling
        
        await self.resolver.close()
        await self.price_feed.close()
    
    async def run(self) -> None:
        """Main event loop for the service."""
        self.running = True
        logger.info("Chain pulse service starting...")
        
        tasks: dict[str, asyncio.Task] = {}
        try:
            await self._log_network()
            
            tasks = {
                "listener": asyncio.create_task(self.listener.run()),
                "poller": asyncio.create_task(self.poller.run()),
                "server": asyncio.create_task(self._serve_api()),
                "status": asyncio.create_task(self._periodic_status_logger())
            }
            
            logger.info("Block monitoring started, waiting for blocks...")
            
            # Wait until shutdown or task failure
            while self.running:
                try:
                    await asyncio.wait_for(self.shutdown_event.wait(), timeout=1.0)
                    break  # Shutdown requested
                except asyncio.TimeoutError:
                    pass  # Continue running
                
                if not await self._check_task_health(tasks):
                    logger.error("Critical task ended, shutting down")
                    break
        
        except Exception as e:
            logger.error(f"Error in main loop: {e}", exc_info=True)
            raise
        finally:
            self.running = False
            await self._cleanup_tasks(tasks)
            logger.info("Chain pulse service stopped")
    
    def stop(self) -> None:
        """Stop the service."""
        self.running = False
        self.shutdown_event.set()
