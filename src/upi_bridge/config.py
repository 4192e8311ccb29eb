#!/usr/bin/env python3
"""Configuration management for the UPI bridge.

This module provides type-safe configuration dataclasses with validation.
Configuration is loaded from environment variables with sensible defaults
where appropriate; credentials and addresses have no defaults.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

from web3 import Web3

from .amount_converter import RoundingPolicy

# Get logger for this module
logger = logging.getLogger(__name__)

DEFAULT_PRICE_FEED_URL = "https://api.coingecko.com/api/v3/simple/price"
DEFAULT_PAYOUT_URL = "https://payout-gamma.cashfree.com/payout/v1/directTransfer"


def _checksummed(value: str, label: str, env_name: str) -> str:
    if not value:
        raise ValueError(f"{label} is required ({env_name})")
    if not Web3.is_address(value):
        raise ValueError(f"Invalid {label.lower()}: {value}")
    return Web3.to_checksum_address(value)


def _validate_http_url(url: str, label: str, env_name: str) -> None:
    if not url:
        raise ValueError(f"{label} is required ({env_name})")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise ValueError(
            f"Invalid {label} scheme: {parsed.scheme}. Expected http or https"
        )


@dataclass(frozen=True, slots=True)
class ChainConfig:
    """Configuration for the chain the deposits arrive on.

    Attributes:
        rpc_url: RPC endpoint of the chain
        token_address: Checksummed address of the stablecoin contract
        recipient_address: Checksummed custodial address receiving deposits
        token_decimals: Decimals of the token (USDC uses 6)
    """

    rpc_url: str
    token_address: str
    recipient_address: str
    token_decimals: int = 6

    def __post_init__(self) -> None:
        """Validate chain configuration."""
        if not self.rpc_url:
            raise ValueError("RPC URL is required (RPC_URL)")

        parsed = urlparse(self.rpc_url)
        if parsed.scheme not in ("http", "https", "ws", "wss"):
            raise ValueError(
                f"Invalid RPC URL scheme: {parsed.scheme}. "
                "Expected http, https, ws, or wss"
            )

        # Use object.__setattr__ since dataclass is frozen
        object.__setattr__(
            self,
            "token_address",
            _checksummed(self.token_address, "Token contract address", "USDC_ADDRESS"),
        )
        object.__setattr__(
            self,
            "recipient_address",
            _checksummed(self.recipient_address, "Recipient address", "TARGET_ADDRESS"),
        )

        if not 0 <= self.token_decimals <= 36:
            raise ValueError(
                f"Token decimals must be between 0 and 36, got {self.token_decimals}"
            )


@dataclass(frozen=True, slots=True)
class PriceFeedConfig:
    """Configuration for the fiat price feed."""

    url: str = DEFAULT_PRICE_FEED_URL
    token_id: str = "usd-coin"
    fiat_currency: str = "INR"
    cache_ttl: float = 5.0

    def __post_init__(self) -> None:
        _validate_http_url(self.url, "price feed URL", "PRICE_FEED_URL")
        if not self.token_id:
            raise ValueError("Price feed token id is required (PRICE_TOKEN_ID)")
        if len(self.fiat_currency) != 3 or not self.fiat_currency.isalpha():
            raise ValueError(
                f"Fiat currency must be a 3-letter code, got {self.fiat_currency!r}"
            )
        object.__setattr__(self, "fiat_currency", self.fiat_currency.upper())
        if self.cache_ttl < 0:
            raise ValueError(f"Price cache TTL must be non-negative, got {self.cache_ttl}")


@dataclass(frozen=True, slots=True)
class PayoutConfig:
    """Configuration for the fiat payout gateway.

    Attributes:
        bearer_token: Gateway credential sent in the Authorization header
        url: Direct transfer endpoint
        transfer_mode: Gateway transfer mode (``upi`` for VPA payouts)
        retry_count: Retries for transport errors and 5xx responses
        contact_phone: Optional beneficiary contact phone
        contact_email: Optional beneficiary contact email
        contact_address: Optional beneficiary postal address
    """

    bearer_token: str
    url: str = DEFAULT_PAYOUT_URL
    transfer_mode: str = "upi"
    retry_count: int = 3
    contact_phone: str | None = None
    contact_email: str | None = None
    contact_address: str | None = None

    def __post_init__(self) -> None:
        if not self.bearer_token:
            raise ValueError("Payout gateway token is required (BEARER_TOKEN)")
        _validate_http_url(self.url, "payout URL", "PAYOUT_URL")
        if not self.transfer_mode:
            raise ValueError("Transfer mode is required (PAYOUT_TRANSFER_MODE)")
        if self.retry_count < 0:
            raise ValueError(f"Retry count must be non-negative, got {self.retry_count}")
        if self.retry_count > 10:
            raise ValueError(f"Retry count too high (max 10), got {self.retry_count}")


@dataclass(frozen=True, slots=True)
class MonitoringConfig:
    """Configuration for deposit monitoring and request lifecycle."""
    polling_interval: float = 5.0  # seconds between scans
    deposit_timeout: float = 900.0  # default wait for a deposit
    max_deposit_timeout: float = 3600.0  # cap on caller-supplied timeouts
    lookback_blocks: int = 0  # blocks at or before the quote-time head to re-include
    max_block_range: int = 2000  # blocks per eth_getLogs call
    request_timeout: float = 30.0  # HTTP request timeout in seconds
    session_retention: float = 3600.0  # how long finished requests stay queryable
    rounding: RoundingPolicy = RoundingPolicy.TRUNCATE

    def __post_init__(self) -> None:
        """Validate monitoring configuration."""
        if self.polling_interval <= 0:
            raise ValueError(f"Polling interval must be positive, got {self.polling_interval}")
        if self.polling_interval > 300:
            raise ValueError(f"Polling interval too long (max 300s), got {self.polling_interval}")

        if self.deposit_timeout <= 0:
            raise ValueError(f"Deposit timeout must be positive, got {self.deposit_timeout}")
        if self.max_deposit_timeout < self.deposit_timeout:
            raise ValueError(
                f"Max deposit timeout ({self.max_deposit_timeout}) "
                f"is below the default deposit timeout ({self.deposit_timeout})"
            )

        if self.lookback_blocks < 0:
            raise ValueError(f"Lookback blocks must be non-negative, got {self.lookback_blocks}")
        if self.lookback_blocks > 10_000:
            raise ValueError(f"Lookback blocks too high (max 10000), got {self.lookback_blocks}")

        if self.max_block_range <= 0:
            raise ValueError(f"Max block range must be positive, got {self.max_block_range}")

        if self.request_timeout <= 0:
            raise ValueError(f"Request timeout must be positive, got {self.request_timeout}")
        if self.request_timeout > 120:
            raise ValueError(f"Request timeout too long (max 120s), got {self.request_timeout}")

        if self.session_retention < 0:
            raise ValueError(
                f"Session retention must be non-negative, got {self.session_retention}"
            )

    def resolve_timeout(self, requested: float | None) -> float:
        """Clamp a caller-supplied deposit timeout to the configured bounds."""
        if requested is None:
            return self.deposit_timeout
        if requested <= 0:
            raise ValueError(f"Deposit timeout must be positive, got {requested}")
        return min(requested, self.max_deposit_timeout)


@dataclass(frozen=True, slots=True)
class BridgeConfig:
    """Main configuration for the UPI bridge.

    Attributes:
        chain: Chain and token configuration
        payout: Payout gateway configuration
        price_feed: Price feed configuration
        monitoring: Polling and lifecycle configuration
        journal_path: Optional append-only reconciliation journal file
    """

    chain: ChainConfig
    payout: PayoutConfig
    price_feed: PriceFeedConfig = field(default_factory=PriceFeedConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    journal_path: Path | None = None

    @classmethod
    def from_env(cls) -> "BridgeConfig":
        """Load configuration from environment variables.

        Returns:
            BridgeConfig instance with loaded values

        Raises:
            ValueError: If required environment variables are missing or invalid
        """
        chain = ChainConfig(
            rpc_url=os.environ.get("RPC_URL", ""),
            token_address=os.environ.get("USDC_ADDRESS", ""),
            recipient_address=os.environ.get("TARGET_ADDRESS", ""),
            token_decimals=int(os.environ.get("USDC_DECIMALS", "6")),
        )

        payout = PayoutConfig(
            bearer_token=os.environ.get("BEARER_TOKEN", ""),
            url=os.environ.get("PAYOUT_URL", DEFAULT_PAYOUT_URL),
            transfer_mode=os.environ.get("PAYOUT_TRANSFER_MODE", "upi"),
            retry_count=int(os.environ.get("PAYOUT_RETRY_COUNT", "3")),
            contact_phone=os.environ.get("PAYOUT_CONTACT_PHONE") or None,
            contact_email=os.environ.get("PAYOUT_CONTACT_EMAIL") or None,
            contact_address=os.environ.get("PAYOUT_CONTACT_ADDRESS") or None,
        )

        price_feed = PriceFeedConfig(
            url=os.environ.get("PRICE_FEED_URL", DEFAULT_PRICE_FEED_URL),
            token_id=os.environ.get("PRICE_TOKEN_ID", "usd-coin"),
            fiat_currency=os.environ.get("FIAT_CURRENCY", "INR"),
            cache_ttl=float(os.environ.get("PRICE_CACHE_TTL", "5")),
        )

        rounding_name = os.environ.get("QUOTE_ROUNDING", RoundingPolicy.TRUNCATE.value)
        try:
            rounding = RoundingPolicy(rounding_name.lower())
        except ValueError:
            raise ValueError(
                f"Unsupported QUOTE_ROUNDING: {rounding_name}. "
                f"Supported: {', '.join(p.value for p in RoundingPolicy)}"
            ) from None

        monitoring = MonitoringConfig(
            polling_interval=float(os.environ.get("POLLING_INTERVAL", "5")),
            deposit_timeout=float(os.environ.get("DEPOSIT_TIMEOUT", "900")),
            max_deposit_timeout=float(os.environ.get("MAX_DEPOSIT_TIMEOUT", "3600")),
            lookback_blocks=int(os.environ.get("LOOKBACK_BLOCKS", "0")),
            max_block_range=int(os.environ.get("MAX_BLOCK_RANGE", "2000")),
            request_timeout=float(os.environ.get("REQUEST_TIMEOUT", "30")),
            session_retention=float(os.environ.get("SESSION_RETENTION", "3600")),
            rounding=rounding,
        )

        journal = os.environ.get("RECONCILIATION_LOG")

        return cls(
            chain=chain,
            payout=payout,
            price_feed=price_feed,
            monitoring=monitoring,
            journal_path=Path(journal).expanduser() if journal else None,
        )

    def log_config(self) -> None:
        """Log the configuration in a readable format, hiding credentials."""
        logger.info("=" * 60)
        logger.info("UPI Bridge Configuration")
        logger.info("=" * 60)

        logger.info("Chain:")
        logger.info(f"  RPC URL: {self.chain.rpc_url}")
        logger.info(f"  Token: {self.chain.token_address} ({self.chain.token_decimals} decimals)")
        logger.info(f"  Recipient: {self.chain.recipient_address}")

        logger.info("Price Feed:")
        logger.info(f"  URL: {self.price_feed.url}")
        logger.info(f"  Pair: {self.price_feed.token_id}/{self.price_feed.fiat_currency}")
        logger.info(f"  Cache TTL: {self.price_feed.cache_ttl} seconds")

        logger.info("Payout Gateway:")
        logger.info(f"  URL: {self.payout.url}")
        logger.info(f"  Transfer Mode: {self.payout.transfer_mode}")
        logger.info(f"  Retry Count: {self.payout.retry_count}")
        logger.info("  Token: [CONFIGURED]")

        logger.info("Monitoring Settings:")
        logger.info(f"  Polling Interval: {self.monitoring.polling_interval} seconds")
        logger.info(f"  Deposit Timeout: {self.monitoring.deposit_timeout} seconds "
                    f"(max {self.monitoring.max_deposit_timeout})")
        logger.info(f"  Lookback Blocks: {self.monitoring.lookback_blocks}")
        logger.info(f"  Max Block Range: {self.monitoring.max_block_range}")
        logger.info(f"  Quote Rounding: {self.monitoring.rounding.value}")

        logger.info(f"Reconciliation Journal: {self.journal_path or '[LOG ONLY]'}")
        logger.info("=" * 60)
