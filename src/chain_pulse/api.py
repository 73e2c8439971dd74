#!/usr/bin/env python3
"""Push channel and query endpoints.

Serves the live transaction stream over WebSocket, the TPM analytics, the
latest transaction lookup and live prices. Also serves the read-only
price/gas price history files produced by the gas price recorder and
external bootstrap jobs.
"""

import json
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .broadcast_hub import BroadcastHub
from .errors import ChainPulseError
from .gas_price_history import GAS_PRICE_HISTORY_FILE
from .price_feed import PRICE_COINS, PriceFeed
from .recent_transactions import LatestTransactionFinder
from .tpm_tracker import TPMWindowTracker

# Get logger for this module
logger = logging.getLogger(__name__)

# Series name -> history file inside the data directory
HISTORY_FILES: dict[str, str] = {
    "gas": GAS_PRICE_HISTORY_FILE,
    "frax": "fraxPriceHistory.json",
    "eth": "ethPriceHistory.json",
}

# Series that also expose their latest entry
LATEST_SERIES = ("frax", "eth")


def read_history_file(path: Path) -> Any:
    """Load a history JSON file."""
    with path.open() as file:
        return json.load(file)


def create_app(
    tracker: TPMWindowTracker,
    hub: BroadcastHub,
    data_dir: Path,
    status: Callable[[], dict[str, Any]] | None = None,
    latest_transactions: LatestTransactionFinder | None = None,
    price_feed: PriceFeed | None = None
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        tracker: TPM tracker queried by the analytics endpoints
        hub: Broadcast hub that WebSocket clients subscribe to
        data_dir: Directory holding the history JSON files
        status: Callable returning service status for /health
        latest_transactions: Finder behind /last10tx (route omitted if None)
        price_feed: Live price client behind /api/*price/current
            (routes omitted if None)

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(title="Chain Pulse")
    
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    
    async def stream_transactions(websocket: WebSocket) -> None:
        """Push every published TransactionRecord to this client."""
        await websocket.accept()
        handle = await hub.subscribe(websocket)
        try:
            # Server-to-client only; reads just detect the disconnect
            while not handle.closed:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            await hub.unsubscribe(handle)
    
    app.add_api_websocket_route("/", stream_transactions)
    app.add_api_websocket_route("/ws", stream_transactions)
    
    @app.get("/api/tpm")
    def get_tpm() -> dict[str, int]:
        return {"tpm": tracker.current_tpm()}
    
    @app.get("/api/tpm/history")
    def get_tpm_history() -> list[dict[str, Any]]:
        return [sample.to_dict() for sample in tracker.samples()]
    
    @app.get("/api/tpm/statistics")
    def get_tpm_statistics() -> dict[str, Any]:
        return tracker.statistics().to_dict()
    
    def history_route(series: str, latest: bool) -> Callable[[], Any]:
        path = Path(data_dir) / HISTORY_FILES[series]
        
        def read() -> Any:
            try:
                history = read_history_file(path)
                if latest:
                    return history[-1] if history else None
                return history
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.error(f"Error reading {series} price history file: {e}")
                return JSONResponse(
                    status_code=500,
                    content={"error": f"Failed to read {series} price history file"}
                )
        
        return read
    
    for series in HISTORY_FILES:
        app.add_api_route(f"/api/{series}price", history_route(series, latest=False), methods=["GET"])
    for series in LATEST_SERIES:
        app.add_api_route(f"/api/{series}price/latest", history_route(series, latest=True), methods=["GET"])

    if price_feed is not None:
        def current_price_route(series: str) -> Callable[[], Any]:
            async def read() -> Any:
                try:
                    return await price_feed.current_price(series)
                except ChainPulseError as e:
                    logger.error(f"Error fetching the latest {series} price: {e}")
                    return JSONResponse(
                        status_code=500,
                        content={"error": "Error fetching the latest price"}
                    )

            return read

        for series in PRICE_COINS:
            app.add_api_route(f"/api/{series}price/current", current_price_route(series), methods=["GET"])

    if latest_transactions is not None:
        @app.get("/last10tx")
        async def get_latest_transactions() -> Any:
            try:
                records = await latest_transactions.find()
            except ChainPulseError as e:
                logger.error(f"Error finding latest transactions: {e}")
                return JSONResponse(status_code=500, content={"error": str(e)})
            return [record.to_dict() for record in records]

    @app.get("/health")
    def health() -> dict[str, Any]:
        return status() if status else {"status": "ok"}
    
    return app
