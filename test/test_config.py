#!/usr/bin/env python3
"""Tests for the configuration module."""

import logging
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from web3 import Web3

from upi_bridge.amount_converter import RoundingPolicy
from upi_bridge.config import (
    BridgeConfig,
    ChainConfig,
    MonitoringConfig,
    PayoutConfig,
    PriceFeedConfig,
)

TOKEN = "0x85BfE05492aFC3D04Ff3B2ca6771ACF6f853d90d"
RECIPIENT = Web3.to_checksum_address("0x" + "ab" * 20)


class TestChainConfig:
    """Tests for ChainConfig."""

    def test_valid_chain_config(self):
        """Test creating a valid chain configuration."""
        config = ChainConfig(
            rpc_url="https://sepolia.base.org",
            token_address=TOKEN,
            recipient_address=RECIPIENT,
        )

        assert config.rpc_url == "https://sepolia.base.org"
        assert config.token_address == TOKEN
        assert config.token_decimals == 6

    def test_checksum_address_conversion(self):
        """Test that addresses are converted to checksum format."""
        config = ChainConfig(
            rpc_url="https://sepolia.base.org",
            token_address=TOKEN.lower(),
            recipient_address=RECIPIENT.lower(),
        )

        assert config.token_address == TOKEN
        assert config.recipient_address == RECIPIENT

    def test_invalid_rpc_url_scheme(self):
        """Test that invalid RPC URL schemes are rejected."""
        with pytest.raises(ValueError, match="Invalid RPC URL scheme"):
            ChainConfig(rpc_url="ftp://invalid.scheme", token_address=TOKEN, recipient_address=RECIPIENT)

    def test_websocket_rpc_url_allowed(self):
        config = ChainConfig(rpc_url="wss://node.example", token_address=TOKEN, recipient_address=RECIPIENT)
        assert config.rpc_url == "wss://node.example"

    def test_missing_token_address(self):
        """Test that a missing token address names the variable to set."""
        with pytest.raises(ValueError, match="USDC_ADDRESS"):
            ChainConfig(rpc_url="https://sepolia.base.org", token_address="", recipient_address=RECIPIENT)

    def test_invalid_recipient_address(self):
        with pytest.raises(ValueError, match="Invalid recipient address"):
            ChainConfig(rpc_url="https://sepolia.base.org", token_address=TOKEN, recipient_address="0xnotanaddress")

    def test_decimals_out_of_range(self):
        with pytest.raises(ValueError, match="Token decimals"):
            ChainConfig(
                rpc_url="https://sepolia.base.org",
                token_address=TOKEN,
                recipient_address=RECIPIENT,
                token_decimals=-1,
            )


class TestPriceFeedAndPayoutConfig:
    """Tests for PriceFeedConfig and PayoutConfig."""

    def test_price_feed_defaults(self):
        config = PriceFeedConfig()

        assert config.token_id == "usd-coin"
        assert config.fiat_currency == "INR"
        assert config.url.startswith("https://")

    def test_currency_is_upper_cased(self):
        assert PriceFeedConfig(fiat_currency="inr").fiat_currency == "INR"

    def test_invalid_currency(self):
        with pytest.raises(ValueError, match="3-letter code"):
            PriceFeedConfig(fiat_currency="RUPEE")

    def test_payout_requires_token(self):
        """Test that the payout gateway credential is mandatory."""
        with pytest.raises(ValueError, match="BEARER_TOKEN"):
            PayoutConfig(bearer_token="")

    def test_payout_invalid_url(self):
        with pytest.raises(ValueError, match="Invalid payout URL scheme"):
            PayoutConfig(bearer_token="token", url="file:///tmp/payout")

    def test_payout_retry_count_bounds(self):
        with pytest.raises(ValueError, match="Retry count"):
            PayoutConfig(bearer_token="token", retry_count=-1)
        with pytest.raises(ValueError, match="too high"):
            PayoutConfig(bearer_token="token", retry_count=11)


class TestMonitoringConfig:
    """Tests for MonitoringConfig."""

    def test_defaults(self):
        config = MonitoringConfig()

        assert config.polling_interval == 5.0
        assert config.deposit_timeout == 900.0
        assert config.lookback_blocks == 0
        assert config.rounding is RoundingPolicy.TRUNCATE

    def test_invalid_polling_interval(self):
        with pytest.raises(ValueError, match="Polling interval must be positive"):
            MonitoringConfig(polling_interval=0)
        with pytest.raises(ValueError, match="Polling interval too long"):
            MonitoringConfig(polling_interval=301)

    def test_max_timeout_below_default(self):
        with pytest.raises(ValueError, match="Max deposit timeout"):
            MonitoringConfig(deposit_timeout=600, max_deposit_timeout=300)

    def test_resolve_timeout(self):
        """Test that caller timeouts default, pass through, or are capped."""
        config = MonitoringConfig(deposit_timeout=900, max_deposit_timeout=3600)

        assert config.resolve_timeout(None) == 900
        assert config.resolve_timeout(60) == 60
        assert config.resolve_timeout(10_000) == 3600

        with pytest.raises(ValueError):
            config.resolve_timeout(0)


class TestBridgeConfig:
    """Tests for BridgeConfig."""

    ENV = {
        "RPC_URL": "https://sepolia.base.org",
        "USDC_ADDRESS": TOKEN.lower(),
        "TARGET_ADDRESS": RECIPIENT,
        "BEARER_TOKEN": "secret-token",
    }

    def test_from_env_minimal(self):
        """Test loading configuration with only the required variables."""
        with patch.dict(os.environ, self.ENV, clear=True):
            config = BridgeConfig.from_env()

        assert config.chain.token_address == TOKEN
        assert config.chain.recipient_address == RECIPIENT
        assert config.payout.bearer_token == "secret-token"
        assert config.payout.transfer_mode == "upi"
        assert config.price_feed.fiat_currency == "INR"
        assert config.monitoring.polling_interval == 5.0
        assert config.journal_path is None

    def test_from_env_overrides(self):
        env = {
            **self.ENV,
            "USDC_DECIMALS": "18",
            "POLLING_INTERVAL": "2",
            "DEPOSIT_TIMEOUT": "120",
            "QUOTE_ROUNDING": "HALF_UP",
            "RECONCILIATION_LOG": "/var/log/bridge/journal.jsonl",
            "PAYOUT_CONTACT_EMAIL": "ops@example.com",
        }
        with patch.dict(os.environ, env, clear=True):
            config = BridgeConfig.from_env()

        assert config.chain.token_decimals == 18
        assert config.monitoring.polling_interval == 2.0
        assert config.monitoring.deposit_timeout == 120.0
        assert config.monitoring.rounding is RoundingPolicy.HALF_UP
        assert config.journal_path == Path("/var/log/bridge/journal.jsonl")
        assert config.payout.contact_email == "ops@example.com"
        assert config.payout.contact_phone is None

    def test_from_env_missing_rpc(self):
        env = {k: v for k, v in self.ENV.items() if k != "RPC_URL"}
        with patch.dict(os.environ, env, clear=True):
            with pytest.raises(ValueError, match="RPC_URL"):
                BridgeConfig.from_env()

    def test_from_env_unsupported_rounding(self):
        with patch.dict(os.environ, {**self.ENV, "QUOTE_ROUNDING": "bankers"}, clear=True):
            with pytest.raises(ValueError, match="Unsupported QUOTE_ROUNDING"):
                BridgeConfig.from_env()

    def test_log_config_hides_token(self, caplog):
        """Test that the payout credential never reaches the log."""
        with patch.dict(os.environ, self.ENV, clear=True):
            config = BridgeConfig.from_env()

        with caplog.at_level(logging.INFO, logger="upi_bridge.config"):
            config.log_config()

        assert "secret-token" not in caplog.text
        assert "[CONFIGURED]" in caplog.text
        assert TOKEN in caplog.text
