#!/usr/bin/env python3
"""Entry point for the UPI bridge service.

This module loads configuration from the environment and serves the
HTTP API that accepts payment intents.
"""

import argparse
import asyncio
import logging
import os
import sys

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

import uvicorn

from upi_bridge.bridge import PaymentBridge
from upi_bridge.server import create_app


async def main() -> None:
    """Main entry point for the UPI bridge service.

    Parses startup arguments, loads configuration from environment,
    and serves the API until interrupted.

    Raises:
        SystemExit: On configuration or runtime errors
    """
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="UPI Bridge - pay UPI intents from stablecoin deposits",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  RPC_URL               - RPC endpoint of the deposit chain
  USDC_ADDRESS          - Stablecoin contract address
  USDC_DECIMALS         - Token decimals (default: 6)
  TARGET_ADDRESS        - Custodial address receiving deposits
  BEARER_TOKEN          - Payout gateway credential
  PAYOUT_URL            - Payout gateway direct transfer endpoint
  FIAT_CURRENCY         - Fiat currency of payment intents (default: INR)
  POLLING_INTERVAL      - Seconds between deposit scans (default: 5)
  DEPOSIT_TIMEOUT       - Default seconds to wait for a deposit (default: 900)
  QUOTE_ROUNDING        - truncate or half_up (default: truncate)
  RECONCILIATION_LOG    - Optional path of the reconciliation journal
  LOG_LEVEL             - Logging level (can be overridden with --log-level)
        """
    )
    parser.add_argument(
        "--host",
        default=os.environ.get("HOST", "0.0.0.0"),
        help="Interface to bind (default: 0.0.0.0)"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("PORT", "3000")),
        help="Port to listen on (default: PORT or 3000)"
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: INFO)"
    )
    args: argparse.Namespace = parser.parse_args()

    setup_logging(args.log_level)
    logger.info("=== UPI Bridge Starting ===")
    logger.info("Loading configuration from environment...")

    try:
        bridge: PaymentBridge = PaymentBridge.from_env()
        logger.info("Configuration loaded successfully")

        server = uvicorn.Server(
            uvicorn.Config(
                create_app(bridge),
                host=args.host,
                port=args.port,
                log_level=args.log_level.lower(),
            )
        )
        logger.info(f"🚀 Listening on http://{args.host}:{args.port}")
        await server.serve()

    except ValueError as e:
        logger.error(f"Configuration Error: {e}")
        logger.error("Please check your environment variables:")
        logger.error("  - RPC_URL: RPC endpoint of the deposit chain")
        logger.error("  - USDC_ADDRESS: Stablecoin contract address")
        logger.error("  - TARGET_ADDRESS: Custodial address receiving deposits")
        logger.error("  - BEARER_TOKEN: Payout gateway credential")
        sys.exit(1)

    except KeyboardInterrupt:
        logger.info("\nReceived interrupt signal, shutting down gracefully...")
        sys.exit(0)

    except Exception as e:
        logger.error(f"Fatal Error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
