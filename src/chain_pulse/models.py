#!/usr/bin/env python3
"""Data models for the chain pulse service.

This module provides immutable data classes for the enriched transaction
records pushed to subscribers and for the transactions-per-minute analytics
derived from them.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(frozen=True, slots=True)
class TransactionRecord:
    """One enriched, broadcastable transaction.
    
    Created once per accepted transaction by the TransactionEnricher and
    handed to the BroadcastHub, which does not retain it after fan-out.
    
    Attributes:
        hash: Transaction hash with 0x prefix
        observed_at: Timestamp of the block containing the transaction (UTC)
        block_number: Block number the transaction was included in
        gas_limit: Gas limit as a decimal string
        sender: Address that sent the transaction
        recipient: Destination address, None for contract creation
        value: Transferred value in native units as a decimal string
        nonce: Sender nonce
        gas_price: Gas price in gwei as a decimal string
        method_signature: Resolved method signature, or the raw selector
        event_count: Number of logs emitted by the transaction
    """
    
    hash: str
    observed_at: datetime
    block_number: int
    gas_limit: str
    sender: str
    recipient: str | None
    value: str
    nonce: int
    gas_price: str
    method_signature: str
    event_count: int
    
    def __str__(self) -> str:
        """Human-readable string representation."""
        return (
            f"TransactionRecord(hash={self.hash[:10]}..., "
            f"block={self.block_number}, "
            f"method={self.method_signature})"
        )
    
    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire format consumed by dashboard clients."""
        return {
            "hash": self.hash,
            "time": self.observed_at.isoformat().replace("+00:00", "Z"),
            "block": self.block_number,
            "gas": self.gas_limit,
            "from": self.sender,
            "to": self.recipient,
            "value": self.value,
            "nonce": self.nonce,
            "gasPrice": self.gas_price,
            "method": self.method_signature,
            "eventCount": self.event_count
        }
    
    def to_json(self) -> str:
        """Serialize to the JSON message pushed to subscribers."""
        return json.dumps(self.to_dict())


@dataclass(frozen=True, slots=True)
class TPMSample:
    """A transactions-per-minute observation taken at one acceptance.
    
    Attributes:
        tpm: Number of acceptances within the rate window at sampling time
        timestamp: Unix timestamp (seconds) of the acceptance
    """
    
    tpm: int
    timestamp: float
    
    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, timestamp in epoch milliseconds."""
        return {
            "tpm": self.tpm,
            "timestamp": int(self.timestamp * 1000)
        }


@dataclass(frozen=True, slots=True)
class TPMStatistics:
    """Derived statistics over the retained TPM samples.
    
    Attributes:
        high: Highest sampled TPM, None when there are no samples
        low: Lowest sampled TPM, None when there are no samples
        current: TPM over the trailing rate window right now
        change_last_hour_pct: Relative change of current against the
            earliest retained sample, 0 when undefined
    """
    
    high: int | None
    low: int | None
    current: int
    change_last_hour_pct: float
    
    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "high": self.high,
            "low": self.low,
            "current": self.current,
            "change_last_hour_pct": self.change_last_hour_pct
        }
