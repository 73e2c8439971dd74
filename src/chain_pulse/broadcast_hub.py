#!/usr/bin/env python3
"""Fan-out of enriched transactions to live push subscribers.

The hub keeps the set of open subscriber connections and delivers each
published record to every subscriber connected at publish time. Delivery
is best-effort: there is no backlog replay for late subscribers, and a
subscriber whose send fails, times out or is found closed is dropped from
the set, and its connection closed, as a side effect of the publish.
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Protocol

from .models import TransactionRecord

# Get logger for this module
logger = logging.getLogger(__name__)


class Subscriber(Protocol):
    """A push connection, e.g. a FastAPI WebSocket."""
    
    async def send_text(self, data: str) -> None: ...
    
    async def close(self) -> None: ...


@dataclass(eq=False)
class SubscriberHandle:
    """Handle returned by subscribe() and passed back to unsubscribe()."""
    
    connection: Subscriber
    subscriber_id: int
    closed: bool = field(default=False)
    
    def __str__(self) -> str:
        return f"subscriber-{self.subscriber_id}"


class BroadcastHub:
    """Multiplexes TransactionRecords to all live subscribers."""
    
    def __init__(self, send_timeout: float = 5.0) -> None:
        """
        Initialize the BroadcastHub.
        
        Args:
            send_timeout: Seconds one delivery to one subscriber may take
        """
        self.send_timeout = send_timeout
        self._subscribers: set[SubscriberHandle] = set()
        self._lock = asyncio.Lock()
        self._ids = itertools.count(1)
        
        # Metrics tracking
        self.records_published = 0
        self.deliveries = 0
        self.subscribers_dropped = 0
    
    async def subscribe(self, connection: Subscriber) -> SubscriberHandle:
        """Register a connection; it receives records published from now on."""
        handle = SubscriberHandle(connection=connection, subscriber_id=next(self._ids))
        async with self._lock:
            self._subscribers.add(handle)
            total = len(self._subscribers)
        logger.info(f"New push client connected ({handle}). Total: {total}")
        return handle
    
    async def unsubscribe(self, handle: SubscriberHandle) -> None:
        """Remove a subscriber; safe to call for one already removed."""
        handle.closed = True
        async with self._lock:
            self._subscribers.discard(handle)
            total = len(self._subscribers)
        logger.info(f"Push client disconnected ({handle}). Total: {total}")
    
    async def publish(self, record: TransactionRecord) -> int:
        """
        Deliver a record to every currently connected subscriber.
        
        Deliveries run concurrently and each is bounded by send_timeout, so
        one slow subscriber cannot stall the others or the caller for longer
        than that bound.
        
        Args:
            record: The record to fan out
            
        Returns:
            Number of subscribers the record was delivered to
        """
        message = record.to_json()
        
        async with self._lock:
            targets = list(self._subscribers)
        
        self.records_published += 1
        if not targets:
            return 0
        
        results = await asyncio.gather(
            *(self._deliver(handle, message) for handle in targets)
        )
        
        dead = [handle for handle, delivered in zip(targets, results) if not delivered]
        if dead:
            async with self._lock:
                for handle in dead:
                    handle.closed = True
                    self._subscribers.discard(handle)
            self.subscribers_dropped += len(dead)
            logger.info(f"Removed {len(dead)} dead push client(s)")
            # A dropped subscriber's socket is closed, ending its endpoint read loop
            await asyncio.gather(*(self._close(handle) for handle in dead))
        
        delivered = len(targets) - len(dead)
        self.deliveries += delivered
        logger.debug(f"Transaction {record.hash} broadcasted to {delivered} clients")
        return delivered
    
    async def _deliver(self, handle: SubscriberHandle, message: str) -> bool:
        if handle.closed:
            return False
        try:
            await asyncio.wait_for(handle.connection.send_text(message), timeout=self.send_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Send to {handle} timed out after {self.send_timeout}s")
            return False
        except Exception as e:
            logger.warning(f"Error sending to {handle}: {e}")
            return False
    
    async def _close(self, handle: SubscriberHandle) -> None:
        try:
            await asyncio.wait_for(handle.connection.close(), timeout=self.send_timeout)
        except Exception as e:
            # Best-effort: the peer may already be gone
            logger.debug(f"Error closing {handle}: {e}")
    
    async def subscriber_count(self) -> int:
        async with self._lock:
            return len(self._subscribers)
    
    def get_metrics(self) -> dict[str, int]:
        """Get current broadcast metrics."""
        return {
            "subscribers": len(self._subscribers),
            "records_published": self.records_published,
            "deliveries": self.deliveries,
            "subscribers_dropped": self.subscribers_dropped
        }
