"""Error taxonomy for the UPI bridge.

Every domain failure carries a stable ``kind`` used in HTTP bodies and the
status document, plus a human-readable ``reason``.
"""

from typing import Any


class BridgeError(Exception):
    """Base class for domain errors surfaced to callers."""

    kind: str = "bridge_error"

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "reason": self.reason}


class RateUnavailable(BridgeError):
    """The price feed could not produce a usable rate."""

    kind = "rate_unavailable"


class InvalidAmount(BridgeError):
    kind = "invalid_amount"


class MalformedPaymentIntent(BridgeError):
    """The payment intent URI could not be parsed."""

    kind = "malformed_payment_intent"


class InvalidAddress(BridgeError):
    kind = "invalid_address"


class ScanFailed(BridgeError):
    """Node communication failed during a scan. Retryable."""

    kind = "scan_failed"


class DepositTimeout(BridgeError):
    kind = "deposit_timeout"


class DepositCancelled(BridgeError):
    kind = "deposit_cancelled"


class PayoutGatewayError(BridgeError):
    """The payout gateway rejected or failed the transfer.

    Raised after the deposit was already consumed, so the request needs
    manual reconciliation.
    """

    kind = "payout_gateway_error"

    def __init__(self, reason: str, status_code: int | None = None) -> None:
        super().__init__(reason)
        self.status_code = status_code


class InvalidTransition(RuntimeError):
    """A state machine transition that the lifecycle does not allow."""
