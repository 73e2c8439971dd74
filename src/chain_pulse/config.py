#!/usr/bin/env python3
"""Configuration management for the chain pulse service.

This module provides type-safe configuration dataclasses with validation.
Configuration is loaded from environment variables with sensible defaults
where appropriate.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

from web3 import Web3

from .price_feed import DEFAULT_PRICE_API_URL

# Get logger for this module
logger = logging.getLogger(__name__)

DEFAULT_EXCLUDE_ADDRESS = "0xDeaDDEaDDeAdDeAdDEAdDEaddeAddEAdDEAd0001"
DEFAULT_SIGNATURE_DIRECTORY_URL = "https://www.4byte.directory/api/v1/signatures/"


def _validate_url(url: str, name: str, schemes: tuple[str, ...]) -> None:
    parsed = urlparse(url)
    if parsed.scheme not in schemes:
        raise ValueError(
            f"Invalid {name} scheme: {parsed.scheme}. "
            f"Expected {', '.join(schemes)}"
        )


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, str(default))
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, str(default))
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


@dataclass(frozen=True, slots=True)
class ChainConfig:
    """Configuration for the chain being watched.
    
    Attributes:
        rpc_url: HTTP(S) RPC endpoint used for block and transaction fetches
        ws_url: Optional websocket endpoint for newHeads notifications
        exclude_address: Sender whose transactions are ignored (lower-cased)
        request_timeout: RPC request timeout in seconds
    """
    
    rpc_url: str
    ws_url: str | None = None
    exclude_address: str = DEFAULT_EXCLUDE_ADDRESS
    request_timeout: int = 30
    
    def __post_init__(self) -> None:
        """Validate chain configuration."""
        if not self.rpc_url:
            raise ValueError("Node RPC URL is required (NODE_URL)")
        # Websocket endpoints go through ws_url; RPC calls use the HTTP provider
        _validate_url(self.rpc_url, "RPC URL", ('http', 'https'))
        
        if self.ws_url:
            _validate_url(self.ws_url, "websocket URL", ('ws', 'wss'))
        
        if not Web3.is_address(self.exclude_address):
            raise ValueError(f"Invalid exclusion address: {self.exclude_address}")
        
        # Compared case-insensitively against senders
        lowered = self.exclude_address.lower()
        if lowered != self.exclude_address:
            # Use object.__setattr__ since dataclass is frozen
            object.__setattr__(self, 'exclude_address', lowered)
        
        if self.request_timeout <= 0:
            raise ValueError(f"Request timeout must be positive, got {self.request_timeout}")
        if self.request_timeout > 120:
            raise ValueError(f"Request timeout too long (max 120s), got {self.request_timeout}")


@dataclass(frozen=True, slots=True)
class WindowConfig:
    """Sliding window durations in seconds."""
    rate_window: float = 60.0  # trailing window for the current TPM
    retention_window: float = 3600.0  # history kept for statistics
    
    def __post_init__(self) -> None:
        """Validate window configuration."""
        if self.rate_window <= 0:
            raise ValueError(f"Rate window must be positive, got {self.rate_window}")
        if self.retention_window <= 0:
            raise ValueError(f"Retention window must be positive, got {self.retention_window}")
        if self.rate_window > self.retention_window:
            raise ValueError(
                f"Rate window ({self.rate_window}s) cannot exceed "
                f"retention window ({self.retention_window}s)"
            )


@dataclass(frozen=True, slots=True)
class RetryConfig:
    """Bounded exponential backoff for external calls."""
    max_attempts: int = 5
    initial_delay: float = 1.0  # seconds, doubled after every failure
    
    def __post_init__(self) -> None:
        """Validate retry configuration."""
        if self.max_attempts < 1:
            raise ValueError(f"Max attempts must be at least 1, got {self.max_attempts}")
        if self.max_attempts > 10:
            raise ValueError(f"Max attempts too high (max 10), got {self.max_attempts}")
        if self.initial_delay <= 0:
            raise ValueError(f"Initial delay must be positive, got {self.initial_delay}")


@dataclass(frozen=True, slots=True)
class MonitoringConfig:
    """Configuration for block monitoring and transaction processing."""
    polling_interval: float = 2.0  # seconds between head polls
    queue_size: int = 100  # pending block notifications
    max_concurrency: int = 8  # concurrent transaction tasks per block
    signature_directory_url: str = DEFAULT_SIGNATURE_DIRECTORY_URL
    status_interval: float = 30.0  # seconds between status log lines
    latest_tx_max_blocks: int = 100  # blocks walked back by /last10tx
    
    def __post_init__(self) -> None:
        """Validate monitoring configuration."""
        if self.polling_interval <= 0:
            raise ValueError(f"Polling interval must be positive, got {self.polling_interval}")
        if self.polling_interval > 300:
            raise ValueError(f"Polling interval too long (max 300s), got {self.polling_interval}")
        
        if self.queue_size <= 0:
            raise ValueError(f"Queue size must be positive, got {self.queue_size}")
        
        if self.max_concurrency <= 0:
            raise ValueError(f"Max concurrency must be positive, got {self.max_concurrency}")
        
        _validate_url(self.signature_directory_url, "signature directory URL", ('http', 'https'))
        
        if self.status_interval <= 0:
            raise ValueError(f"Status interval must be positive, got {self.status_interval}")
        
        if self.latest_tx_max_blocks <= 0:
            raise ValueError(f"Latest transaction block limit must be positive, got {self.latest_tx_max_blocks}")


@dataclass(frozen=True, slots=True)
class ServerConfig:
    """Configuration for the push channel and query endpoints."""
    host: str = "0.0.0.0"
    port: int = 5000
    send_timeout: float = 5.0  # bound on one delivery to one subscriber
    data_dir: Path = Path("data")
    price_api_url: str = DEFAULT_PRICE_API_URL
    
    def __post_init__(self) -> None:
        """Validate server configuration."""
        if not 0 < self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}")
        if self.send_timeout <= 0:
            raise ValueError(f"Send timeout must be positive, got {self.send_timeout}")
        _validate_url(self.price_api_url, "price API URL", ('http', 'https'))


@dataclass(frozen=True, slots=True)
class ServiceConfig:
    """Main configuration for the chain pulse service.
    
    Attributes:
        chain: Chain endpoints and the exclusion address
        windows: Sliding window durations
        retry: Retry policy for provider and directory calls
        monitoring: Block monitoring settings
        server: Push channel and query surface settings
    """
    
    chain: ChainConfig
    windows: WindowConfig = field(default_factory=WindowConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    
    @classmethod
    def from_env(cls) -> "ServiceConfig":
        """Load configuration from environment variables.
        
        Returns:
            ServiceConfig instance with loaded values
            
        Raises:
            ValueError: If required environment variables are missing or invalid
        """
        rpc_url = os.environ.get("NODE_URL", "")
        if not rpc_url:
            raise ValueError(
                "NODE_URL environment variable is required. "
                "This should be the JSON-RPC endpoint of the chain to watch."
            )
        
        chain_config = ChainConfig(
            rpc_url=rpc_url,
            ws_url=os.environ.get("NODE_WS_URL") or None,
            exclude_address=os.environ.get("EXCLUDE_ADDRESS", DEFAULT_EXCLUDE_ADDRESS),
            request_timeout=_env_int("REQUEST_TIMEOUT", 30)
        )
        
        window_config = WindowConfig(
            rate_window=_env_float("RATE_WINDOW", 60.0),
            retention_window=_env_float("RETENTION_WINDOW", 3600.0)
        )
        
        retry_config = RetryConfig(
            max_attempts=_env_int("RETRY_MAX_ATTEMPTS", 5),
            initial_delay=_env_float("RETRY_INITIAL_DELAY", 1.0)
        )
        
        monitoring_config = MonitoringConfig(
            polling_interval=_env_float("POLLING_INTERVAL", 2.0),
            queue_size=_env_int("BLOCK_QUEUE_SIZE", 100),
            max_concurrency=_env_int("MAX_CONCURRENCY", 8),
            signature_directory_url=os.environ.get(
                "SIGNATURE_DIRECTORY_URL", DEFAULT_SIGNATURE_DIRECTORY_URL
            ),
            status_interval=_env_float("STATUS_INTERVAL", 30.0),
            latest_tx_max_blocks=_env_int("LATEST_TX_MAX_BLOCKS", 100)
        )
        
        server_config = ServerConfig(
            host=os.environ.get("HOST", "0.0.0.0"),
            port=_env_int("PORT", 5000),
            send_timeout=_env_float("SEND_TIMEOUT", 5.0),
            data_dir=Path(os.environ.get("DATA_DIR", "data")),
            price_api_url=os.environ.get("PRICE_API_URL", DEFAULT_PRICE_API_URL)
        )
        
        return cls(
            chain=chain_config,
            windows=window_config,
            retry=retry_config,
            monitoring=monitoring_config,
            server=server_config
        )
    
    def log_config(self) -> None:
        """Log the configuration in a readable format for debugging."""
        logger.info("=" * 60)
        logger.info("Chain Pulse Configuration")
        logger.info("=" * 60)
        
        logger.info("Chain:")
        logger.info(f"  RPC URL: {self.chain.rpc_url}")
        logger.info(f"  WebSocket URL: {self.chain.ws_url or '[NOT SET - polling]'}")
        logger.info(f"  Excluded Sender: {self.chain.exclude_address}")
        logger.info(f"  Request Timeout: {self.chain.request_timeout} seconds")
        
        logger.info("Windows:")
        logger.info(f"  Rate Window: {self.windows.rate_window} seconds")
        logger.info(f"  Retention Window: {self.windows.retention_window} seconds")
        
        logger.info("Retry Policy:")
        logger.info(f"  Max Attempts: {self.retry.max_attempts}")
        logger.info(f"  Initial Delay: {self.retry.initial_delay} seconds")
        
        logger.info("Monitoring Settings:")
        logger.info(f"  Polling Interval: {self.monitoring.polling_interval} seconds")
        logger.info(f"  Block Queue Size: {self.monitoring.queue_size}")
        logger.info(f"  Max Concurrency: {self.monitoring.max_concurrency}")
        logger.info(f"  Signature Directory: {self.monitoring.signature_directory_url}")
        logger.info(f"  Latest Tx Block Limit: {self.monitoring.latest_tx_max_blocks}")
        
        logger.info("Server:")
        logger.info(f"  Listen: {self.server.host}:{self.server.port}")
        logger.info(f"  Send Timeout: {self.server.send_timeout} seconds")
        logger.info(f"  Data Directory: {self.server.data_dir}")
        logger.info(f"  Price API: {self.server.price_api_url}")
        
        logger.info("=" * 60)
