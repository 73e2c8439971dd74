#!/usr/bin/env python3
"""Daily average gas price snapshots.

Once per UTC day the block poller hands the transactions of a processed
block to the recorder, which upserts that day's average gas price (gwei)
into a JSON history file served by the query endpoints. Persistence is
best-effort: the file is rewritten atomically, and write failures are
logged without affecting block processing.
"""

import json
import logging
import os
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any

# Get logger for this module
logger = logging.getLogger(__name__)

GAS_PRICE_HISTORY_FILE = "gasPriceHistory.json"
GWEI = Decimal(10**9)


def day_timestamp(day: date) -> str:
    """ISO-8601 timestamp for midnight UTC of the given day."""
    return f"{day.isoformat()}T00:00:00.000Z"


def average_gas_price(transactions: list[dict[str, Any]]) -> str | None:
    """Average positive gas price of the transactions, in gwei.
    
    Args:
        transactions: Normalised transactions with a gasPrice in wei
        
    Returns:
        Decimal string with 20 fractional digits, or None if no transaction
        carries a positive gas price
    """
    prices = [int(tx['gasPrice']) for tx in transactions if tx.get('gasPrice')]
    prices = [price for price in prices if price > 0]
    if not prices:
        return None
    
    average_wei = sum(prices) // len(prices)
    return f"{Decimal(average_wei) / GWEI:.20f}"


class GasPriceHistory:
    """Maintains the per-day gas price history file."""
    
    def __init__(self, data_dir: Path) -> None:
        """
        Initialize the recorder.
        
        Args:
            data_dir: Directory holding the history JSON files
        """
        self.path = Path(data_dir) / GAS_PRICE_HISTORY_FILE
        self.last_updated_day: date | None = None
    
    def needs_update(self, today: date) -> bool:
        return self.last_updated_day != today
    
    def load(self) -> list[dict[str, Any]]:
        """Read the history file; a missing file is an empty history."""
        if not self.path.exists():
            return []
        with self.path.open() as file:
            history = json.load(file)
        if not isinstance(history, list):
            raise ValueError(f"{self.path} does not contain a JSON list")
        return history
    
    def record_block(self, transactions: list[dict[str, Any]], today: date | None = None) -> dict[str, Any] | None:
        """
        Upsert today's entry from a block's transactions if not done yet today.
        
        Args:
            transactions: Non-excluded transactions of the processed block
            today: Day to record (defaults to the current UTC date)
            
        Returns:
            The entry written, or None if nothing was written
        """
        today = today or datetime.now(timezone.utc).date()
        if not self.needs_update(today):
            return None
        
        value = average_gas_price(transactions)
        if value is None:
            # Try again with the next block
            return None
        
        entry = {"time": day_timestamp(today), "value": value}
        
        try:
            history = self.load()
            prefix = today.isoformat()
            for index, existing in enumerate(history):
                if isinstance(existing, dict) and str(existing.get("time", "")).startswith(prefix):
                    history[index] = entry
                    break
            else:
                history.append(entry)
            
            self._write(history)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to update gas price history at {self.path}: {e}")
            return None
        
        self.last_updated_day = today
        logger.info(f"Recorded average gas price for {prefix}: {value} gwei")
        return entry
    
    def _write(self, history: list[dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with tmp_path.open("w") as file:
            json.dump(history, file, indent=2)
        os.replace(tmp_path, self.path)
