#!/usr/bin/env python3
"""Data models for the UPI bridge.

This module provides immutable data classes for the deposit pipeline:
pending deposit requests, decoded transfer events, matched deposits and
the payout request/result pair, plus the mutable scan cursor.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from web3 import Web3


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RequestState(str, Enum):
    """Lifecycle states of a payment request."""

    QUOTED = "quoted"
    AWAITING_DEPOSIT = "awaiting_deposit"
    DEPOSIT_CONFIRMED = "deposit_confirmed"
    PAYOUT_DISPATCHED = "payout_dispatched"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RequestState.COMPLETED, RequestState.FAILED)


@dataclass(frozen=True, slots=True)
class DepositRequest:
    """A deposit the bridge is waiting for.

    Attributes:
        payer_address: Address the deposit must come from
        recipient_address: Custodial address the deposit must go to
        min_token_amount: Minimum value in the token's smallest unit
        requested_at: When the payment intent was accepted
    """

    payer_address: str
    recipient_address: str
    min_token_amount: int
    requested_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        if self.min_token_amount <= 0:
            raise ValueError(
                f"min_token_amount must be positive, got {self.min_token_amount}"
            )
        for name in ("payer_address", "recipient_address"):
            value = getattr(self, name)
            if not Web3.is_address(value):
                raise ValueError(f"Invalid {name}: {value}")
            object.__setattr__(self, name, Web3.to_checksum_address(value))


@dataclass(frozen=True, slots=True)
class TransferEvent:
    """Represents a decoded ERC-20 Transfer log.

    Attributes:
        transaction_hash: Hash of the transaction that emitted the log (0x-prefixed)
        block_number: Block number where the log was emitted
        log_index: Index of the log entry in the block
        from_address: Token sender
        to_address: Token recipient
        token_value: Transferred value in the token's smallest unit
    """

    transaction_hash: str
    block_number: int
    log_index: int
    from_address: str
    to_address: str
    token_value: int

    def __str__(self) -> str:
        return (
            f"TransferEvent(block={self.block_number}, "
            f"log={self.log_index}, "
            f"tx={self.transaction_hash[:10]}..., "
            f"value={self.token_value})"
        )

    @property
    def unique_key(self) -> tuple[str, int]:
        """Identity of the log across scans."""
        return (self.transaction_hash.lower(), self.log_index)

    @property
    def position(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)

    def to_dict(self) -> dict[str, Any]:
        return {
            "transaction_hash": self.transaction_hash,
            "block_number": self.block_number,
            "log_index": self.log_index,
            "from_address": self.from_address,
            "to_address": self.to_address,
            "token_value": str(self.token_value),
        }


@dataclass(slots=True)
class ScanCursor:
    """Next unscanned block of a LedgerScanner. Never moves backward."""

    next_block_to_scan: int

    def advance_to(self, block_number: int) -> None:
        if block_number < self.next_block_to_scan:
            raise ValueError(
                f"Cursor cannot move backward "
                f"({self.next_block_to_scan} -> {block_number})"
            )
        self.next_block_to_scan = block_number


@dataclass(frozen=True, slots=True)
class MatchedDeposit:
    """A deposit request together with the transfer that satisfied it."""

    request: DepositRequest
    event: TransferEvent
    matched_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.event.to_dict(),
            "min_token_amount": str(self.request.min_token_amount),
            "matched_at": self.matched_at.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class PayoutRequest:
    """Fiat transfer to be executed by the payout gateway.

    ``reference_id`` is also the gateway idempotency key, so retries of the
    same payout reuse it.
    """

    beneficiary_identifier: str
    beneficiary_name: str
    fiat_amount: Decimal
    currency: str
    reference_id: str


@dataclass(frozen=True, slots=True)
class PayoutResult:
    success: bool
    provider_reference: str | None = None
    failure_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "provider_reference": self.provider_reference,
            "failure_reason": self.failure_reason,
        }


@dataclass(frozen=True, slots=True)
class PaymentIntent:
    """A parsed ``upi://pay`` URI.

    Attributes:
        payee_address: UPI virtual payment address (``pa``)
        payee_name: Payee display name (``pn``)
        amount: Fiat amount (``am``)
        currency: ISO currency code (``cu``)
        note: Transaction note (``tn``)
        params: All query parameters, in order, for rebuilding the URI
    """

    payee_address: str
    payee_name: str
    amount: Decimal
    currency: str
    note: str = ""
    params: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True, slots=True)
class Quote:
    """What the caller is told to deposit."""

    request_id: str
    token_amount: int
    recipient_address: str
    fiat_amount: Decimal
    currency: str
    rate: Decimal
    expires_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "token_amount": str(self.token_amount),
            "recipient_address": self.recipient_address,
            "fiat_amount": str(self.fiat_amount),
            "currency": self.currency,
            "rate": str(self.rate),
            "expires_at": self.expires_at.isoformat(),
        }
