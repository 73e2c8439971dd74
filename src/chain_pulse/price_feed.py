#!/usr/bin/env python3
"""Live coin prices for the dashboard's current-price candles."""

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from .errors import TransientNetworkError

# Get logger for this module
logger = logging.getLogger(__name__)

DEFAULT_PRICE_API_URL = "https://api.coingecko.com/api/v3/coins"

# Series name -> coin id on the price API
PRICE_COINS: dict[str, str] = {
    "frax": "frax",
    "eth": "ethereum",
}


class PriceFeed:
    """Fetches the current USD price of a coin from a CoinGecko-style API.

    The price is returned as a flat OHLC candle (open = high = low = close),
    the shape the price history files use.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_PRICE_API_URL,
        client: httpx.AsyncClient | None = None,
        request_timeout: float = 30.0
    ) -> None:
        """Initialize the PriceFeed.

        Args:
            base_url: Coins endpoint; the coin id is appended as a path segment
            client: HTTP client to use (created if not provided)
            request_timeout: Timeout for price requests in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=request_timeout)

    async def current_price(self, series: str) -> dict[str, Any]:
        """Fetch the current price candle for a series.

        Args:
            series: Key of PRICE_COINS ("frax" or "eth")

        Returns:
            Dict with time (ISO-8601 UTC) and open/high/low/close as strings
            with three decimals

        Raises:
            KeyError: If the series is unknown
            TransientNetworkError: On HTTP errors or an unexpected payload
        """
        coin = PRICE_COINS[series]
        try:
            response: httpx.Response = await self.client.get(f"{self.base_url}/{coin}")
            response.raise_for_status()
            price = float(response.json()["market_data"]["current_price"]["usd"])
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            raise TransientNetworkError(f"Price request for {coin} failed: {e}") from e

        value = f"{price:.3f}"
        logger.debug(f"Current {series} price: {value} USD")
        return {
            "time": datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "open": value,
            "high": value,
            "low": value,
            "close": value
        }

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.aclose()
