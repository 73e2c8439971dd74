#!/usr/bin/env python3
"""Method name resolution for transaction selectors.

This module maps 4-byte function selectors to human-readable text
signatures, using an in-memory cache in front of a signature directory
HTTP service.
"""

import logging
import threading
from typing import Any

import httpx

from .errors import RetryExhausted, TransientNetworkError
from .utils.retry import RetryExecutor

# Get logger for this module
logger = logging.getLogger(__name__)

NO_METHOD_SELECTOR = "0x"
SELECTOR_LENGTH = 10  # 0x prefix + 4 bytes


def decode_selector(data: str | None) -> str:
    """Extract the method selector from transaction input data.
    
    Args:
        data: 0x-prefixed calldata, possibly empty or None
        
    Returns:
        The first 10 characters of the data, or "0x" when the data is too
        short to carry a selector (plain transfer)
    """
    if not data or len(data) < SELECTOR_LENGTH:
        return NO_METHOD_SELECTOR
    return data[:SELECTOR_LENGTH]


class MethodCache:
    """Selector to signature mapping shared by all transaction tasks.
    
    Entries are never evicted; the selector universe seen in practice is
    small. All access goes through a lock.
    """
    
    def __init__(self) -> None:
        self._entries: dict[str, str] = {}
        self._lock = threading.Lock()
    
    def get(self, selector: str) -> str | None:
        with self._lock:
            return self._entries.get(selector)
    
    def put(self, selector: str, signature: str) -> None:
        with self._lock:
            self._entries[selector] = signature
    
    def __contains__(self, selector: object) -> bool:
        with self._lock:
            return selector in self._entries
    
    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class MethodNameResolver:
    """Resolves selectors to text signatures.
    
    Cache hits return without any I/O. A miss performs one directory lookup
    through the RetryExecutor; failures and empty results degrade to the raw
    selector and are not cached, so a later call may still succeed.
    """
    
    def __init__(
        self,
        cache: MethodCache,
        retry: RetryExecutor,
        directory_url: str,
        client: httpx.AsyncClient | None = None,
        request_timeout: float = 30.0
    ) -> None:
        """Initialize the MethodNameResolver.
        
        Args:
            cache: Shared selector cache
            retry: Executor applied to directory lookups
            directory_url: Signature directory endpoint taking hex_signature
            client: HTTP client to use (created if not provided)
            request_timeout: Timeout for directory requests in seconds
        """
        self.cache = cache
        self.retry = retry
        self.directory_url = directory_url
        self.client = client or httpx.AsyncClient(timeout=request_timeout)
        
        # Metrics tracking
        self.cache_hits = 0
        self.lookups = 0
        self.lookup_failures = 0
    
    async def resolve(self, selector: str) -> str:
        """Resolve a selector to its text signature.
        
        Args:
            selector: 10-character selector, or "0x" for no method
            
        Returns:
            The resolved signature, or the selector itself if unresolved
        """
        cached = self.cache.get(selector)
        if cached is not None:
            self.cache_hits += 1
            return cached
        
        # Plain transfers carry no selector to look up
        if selector == NO_METHOD_SELECTOR:
            return selector
        
        self.lookups += 1
        try:
            results = await self.retry.run(
                lambda: self._lookup(selector),
                description=f"signature lookup for {selector}"
            )
        except RetryExhausted as e:
            self.lookup_failures += 1
            logger.error(f"Error fetching method name for {selector}: {e.cause}")
            return selector
        
        if not results:
            logger.debug(f"No signature known for {selector}")
            return selector
        
        signature = results[0].get("text_signature")
        if not signature:
            return selector
        
        self.cache.put(selector, signature)
        logger.debug(f"Resolved {selector} -> {signature}")
        return signature
    
    async def _lookup(self, selector: str) -> list[dict[str, Any]]:
        """Query the signature directory once.
        
        Raises:
            TransientNetworkError: On HTTP errors or an unreadable response
        """
        try:
            response: httpx.Response = await self.client.get(
                self.directory_url,
                params={"hex_signature": selector}
            )
            response.raise_for_status()
            payload: dict[str, Any] = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise TransientNetworkError(f"Signature directory request failed: {e}") from e
        
        return payload.get("results") or []
    
    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.aclose()
    
    def get_metrics(self) -> dict[str, int]:
        """Get current resolver metrics."""
        return {
            "cache_size": len(self.cache),
            "cache_hits": self.cache_hits,
            "lookups": self.lookups,
            "lookup_failures": self.lookup_failures
        }
