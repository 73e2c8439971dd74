"""
Block notification sources feeding new block numbers into an asyncio queue.

Two sources are provided: HTTP polling of the chain head, and a websocket
newHeads subscription with automatic reconnection. Both only announce block
numbers; fetching and processing is left to the consumer of the queue.
"""

import asyncio
import logging
from enum import Enum
from typing import Any

from web3 import AsyncWeb3
from web3.providers import WebSocketProvider
from web3.utils.subscriptions import NewHeadsSubscription, NewHeadsSubscriptionContext

from ..errors import SubscriptionFailure
from .chain_provider import ChainProvider


class ConnectionState(Enum):
    """Connection state for block listeners."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


class BlockListener:
    """
    Common queue handling for block notification sources.
    
    A full queue drops the notification instead of blocking the source; the
    consumer tolerates gaps.
    """

    def __init__(self, queue: asyncio.Queue[int]) -> None:
        self.queue = queue
        self.is_running = False
        self.connection_state = ConnectionState.DISCONNECTED
        self.last_block: int | None = None
        self.notifications = 0
        self.dropped = 0
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def _notify(self, block_number: int) -> None:
        try:
            self.queue.put_nowait(block_number)
            self.notifications += 1
        except asyncio.QueueFull:
            self.dropped += 1
            self.logger.warning(f"Block queue full, dropping notification for block {block_number}")
        self.last_block = block_number

    async def run(self) -> None:
        raise NotImplementedError

    async def stop(self) -> None:
        """Stop the listener loop."""
        self.logger.info("Stopping block listener")
        self.is_running = False

    def get_status(self) -> dict[str, Any]:
        """
        Get current status of the listener.
        
        Returns:
            Dictionary with status information
        """
        return {
            "source": self.__class__.__name__,
            "is_running": self.is_running,
            "connection_state": self.connection_state.value,
            "last_block": self.last_block,
            "notifications": self.notifications,
            "dropped": self.dropped
        }


class PollingBlockListener(BlockListener):
    """
    Announces new blocks by polling the chain head over HTTP RPC.
    """

    def __init__(self, provider: ChainProvider, queue: asyncio.Queue[int], interval: float = 2.0) -> None:
        """
        Initialize the polling listener.
        
        Args:
            provider: Chain provider used to read the head block number
            queue: Queue receiving new block numbers
            interval: Seconds between polls
        """
        super().__init__(queue)
        self.provider = provider
        self.interval = interval

    async def poll_once(self) -> None:
        """
        Read the head and announce every block after the last one seen.
        
        On the first poll only the head itself is announced. Errors are
        logged and leave the last seen block unchanged, so the next
        successful poll catches up.
        """
        try:
            head = await self.provider.get_block_number()
        except Exception as e:
            error = SubscriptionFailure(f"Block polling failed: {e}")
            self.logger.error(f"{error}")
            self.connection_state = ConnectionState.RECONNECTING
            return
        
        self.connection_state = ConnectionState.CONNECTED
        
        if self.last_block is None:
            self._notify(head)
            return
        
        for block_number in range(self.last_block + 1, head + 1):
            self._notify(block_number)

    async def run(self) -> None:
        """Poll at the configured interval until stopped or cancelled."""
        if self.is_running:
            self.logger.warning("Polling already running")
            return
        
        self.is_running = True
        self.connection_state = ConnectionState.CONNECTING
        self.logger.info(f"Starting block polling every {self.interval} seconds")
        
        try:
            while self.is_running:
                await self.poll_once()
                await asyncio.sleep(self.interval)
        except asyncio.CancelledError:
            self.logger.info("Polling cancelled")
            raise
        finally:
            self.is_running = False
            self.connection_state = ConnectionState.DISCONNECTED


class WebSocketBlockListener(BlockListener):
    """
    Announces new blocks from a websocket newHeads subscription.
    
    Features:
    - Real-time head notifications via the web3 subscription manager
    - Automatic reconnection with capped exponential backoff
    - Gives up after max_retries consecutive failures, leaving the rest of
      the service running
    """

    def __init__(
        self,
        websocket_url: str,
        queue: asyncio.Queue[int],
        max_retries: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 60.0
    ) -> None:
        """
        Initialize the websocket listener.
        
        Args:
            websocket_url: ws:// or wss:// RPC endpoint
            queue: Queue receiving new block numbers
            max_retries: Consecutive connection failures tolerated
            base_delay: Initial reconnection delay in seconds
            max_delay: Upper bound for the reconnection delay
        """
        super().__init__(queue)
        self.websocket_url = websocket_url
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.async_w3: AsyncWeb3 | None = None

    async def _new_heads_handler(self, handler_context: NewHeadsSubscriptionContext) -> None:
        """Handler for newHeads subscription results."""
        try:
            header = handler_context.result
            number = header.get('number') if hasattr(header, 'get') else getattr(header, 'number', None)
            if number is None:
                self.logger.warning(f"newHeads notification without block number: {header}")
                return
            block_number = int(str(number), 16) if isinstance(number, str) else int(number)
            self._notify(block_number)
        except Exception as e:
            self.logger.error(f"Error processing newHeads notification: {e}", exc_info=True)

    async def run(self) -> None:
        """Subscribe and handle notifications, reconnecting on failures."""
        self.is_running = True
        retry_count = 0
        
        try:
            while self.is_running and retry_count < self.max_retries:
                try:
                    self.connection_state = ConnectionState.CONNECTING
                    self.logger.info(f"Connecting to WebSocket: {self.websocket_url}")
                    
                    async with AsyncWeb3(WebSocketProvider(self.websocket_url)) as w3:
                        self.async_w3 = w3
                        self.connection_state = ConnectionState.CONNECTED
                        self.logger.info("WebSocket connected, subscribing to newHeads")
                        retry_count = 0
                        
                        await w3.subscription_manager.subscribe([
                            NewHeadsSubscription(
                                label="new-heads",
                                handler=self._new_heads_handler
                            )
                        ])
                        await w3.subscription_manager.handle_subscriptions()

                    if self.is_running:
                        self.logger.warning("Subscription ended unexpectedly, reconnecting...")
                        await asyncio.sleep(self.base_delay)

                except Exception as e:
                    # Closed sockets surface as library-specific errors; all count as attempts
                    retry_count += 1
                    delay = min(self.base_delay * (2 ** retry_count), self.max_delay)
                    
                    self.logger.warning(
                        f"WebSocket connection failed (attempt {retry_count}/{self.max_retries}): {e}"
                    )
                    
                    if retry_count < self.max_retries and self.is_running:
                        self.logger.info(f"Retrying in {delay} seconds...")
                        self.connection_state = ConnectionState.RECONNECTING
                        await asyncio.sleep(delay)
                finally:
                    self.async_w3 = None
            
            if retry_count >= self.max_retries:
                self.connection_state = ConnectionState.FAILED
                error = SubscriptionFailure(
                    f"Block subscription failed after {retry_count} attempts; "
                    "no new blocks will be processed until it is restored"
                )
                self.logger.error(f"{error}")
        finally:
            self.is_running = False
            if self.connection_state != ConnectionState.FAILED:
                self.connection_state = ConnectionState.DISCONNECTED

    async def stop(self) -> None:
        """Stop the listener and disconnect the provider."""
        await super().stop()
        try:
            if self.async_w3 is not None:
                await self.async_w3.subscription_manager.unsubscribe_all()
        except Exception as e:
            self.logger.warning(f"Error during cleanup: {e}")
