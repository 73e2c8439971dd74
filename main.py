#!/usr/bin/env python3
"""Entry point for the chain pulse service.

Loads configuration from the environment (and an optional .env file),
then runs block ingestion together with the push and query server.
"""

import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv


# Configure logging before any other imports create loggers
def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application.
    
    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_level: int = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

# Get logger for this module
logger = logging.getLogger(__name__)

from chain_pulse.service import ChainPulseService


async def main() -> None:
    """Main entry point for the chain pulse service.
    
    Parses startup arguments, loads configuration from environment,
    and runs the service until interrupted.
    
    Raises:
        SystemExit: On configuration or runtime errors
    """
    load_dotenv()
    
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Chain Pulse - live transaction stream and TPM analytics",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  NODE_URL              - JSON-RPC endpoint of the chain (required)
  NODE_WS_URL           - WebSocket endpoint for newHeads (optional, polling otherwise)
  EXCLUDE_ADDRESS       - Sender address whose transactions are ignored
  RATE_WINDOW           - TPM window in seconds (default: 60)
  RETENTION_WINDOW      - History retention in seconds (default: 3600)
  RETRY_MAX_ATTEMPTS    - Attempts per external call (default: 5)
  RETRY_INITIAL_DELAY   - First backoff delay in seconds (default: 1.0)
  POLLING_INTERVAL      - Head polling interval in seconds (default: 2)
  HOST / PORT           - Push and query server address (default: 0.0.0.0:5000)
  DATA_DIR              - Directory of history JSON files (default: data)
  PRICE_API_URL         - Coins endpoint for live prices (default: CoinGecko)
  LATEST_TX_MAX_BLOCKS  - Blocks searched by /last10tx (default: 100)
  LOG_LEVEL             - Logging level (can be overridden with --log-level)
        """
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: INFO)"
    )
    args: argparse.Namespace = parser.parse_args()
    
    setup_logging(args.log_level)
    logger.info("=== Chain Pulse Starting ===")
    
    service: ChainPulseService | None = None
    try:
        service = ChainPulseService.from_env()
        await service.run()
        
    except ValueError as e:
        logger.error(f"Configuration Error: {e}")
        logger.error("Please check your environment variables:")
        logger.error("  - NODE_URL: JSON-RPC endpoint of the chain")
        logger.error("  - EXCLUDE_ADDRESS: must be a valid address if set")
        sys.exit(1)
        
    except KeyboardInterrupt:
        logger.info("\nReceived interrupt signal, shutting down gracefully...")
        if service is not None:
            service.stop()
        sys.exit(0)
        
    except Exception as e:
        logger.error(f"Fatal Error: {e}", exc_info=True)
        sys.exit(1)


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
