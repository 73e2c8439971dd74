"""
Retry executor with bounded exponential backoff for fallible async calls.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from ..config import RetryConfig
from ..errors import OperationCancelled, RetryExhausted

logger = logging.getLogger(__name__)

T = TypeVar("T")

# A fallible operation: zero-argument coroutine factory, invoked once per attempt
Operation = Callable[[], Awaitable[T]]


class RetryExecutor:
    """
    Runs an operation up to max_attempts times, doubling the delay between
    attempts.
    
    Backoff waits are interruptible: once the shutdown event is set, a pending
    wait ends immediately with OperationCancelled. Only the retried operation
    is suspended while waiting.
    """

    def __init__(
        self,
        max_attempts: int = 5,
        initial_delay: float = 1.0,
        shutdown_event: asyncio.Event | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None
    ) -> None:
        """
        Initialize the RetryExecutor.
        
        Args:
            max_attempts: Total attempts including the first one
            initial_delay: Seconds to wait after the first failure
            shutdown_event: Event that aborts pending backoff waits when set
            sleep: Replacement for the backoff wait (used by tests)
        """
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.shutdown_event = shutdown_event or asyncio.Event()
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        config: RetryConfig,
        shutdown_event: asyncio.Event | None = None
    ) -> "RetryExecutor":
        """Create an executor from the retry section of the service config."""
        return cls(
            max_attempts=config.max_attempts,
            initial_delay=config.initial_delay,
            shutdown_event=shutdown_event
        )

    async def run(self, operation: Operation[T], description: str = "operation") -> T:
        """
        Invoke the operation until it succeeds or attempts run out.
        
        Args:
            operation: Coroutine factory called once per attempt
            description: Short label used in log lines and errors
            
        Returns:
            The result of the first successful attempt
            
        Raises:
            RetryExhausted: If every attempt failed, chained to the last error
            OperationCancelled: If shutdown was requested during a backoff wait
        """
        delay = self.initial_delay
        
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await operation()
            except Exception as e:
                if attempt >= self.max_attempts:
                    logger.warning(
                        f"{description} failed on final attempt "
                        f"{attempt}/{self.max_attempts}: {e}"
                    )
                    raise RetryExhausted(description, attempt, e) from e
                
                logger.info(
                    f"Attempt {attempt}/{self.max_attempts} of {description} failed: {e}. "
                    f"Retrying in {delay} seconds..."
                )
                await self._wait(delay, description)
                delay *= 2
        
        # Unreachable: the loop either returns or raises
        raise AssertionError("retry loop exited without a result")

    async def _wait(self, delay: float, description: str) -> None:
        """Wait out one backoff delay unless shutdown is requested first."""
        if self.shutdown_event.is_set():
            raise OperationCancelled(f"{description} cancelled before retry")
        
        if self._sleep is not None:
            await self._sleep(delay)
        else:
            try:
                await asyncio.wait_for(self.shutdown_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                return
        
        if self.shutdown_event.is_set():
            raise OperationCancelled(f"{description} cancelled during backoff")
