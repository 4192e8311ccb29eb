"""Predicate deciding whether a transfer satisfies a deposit request."""

from .models import DepositRequest, TransferEvent


def canonical_address(address: str) -> str:
    """Lower-cased hex form, so checksummed and plain inputs compare equal."""
    return address.lower()


def matches(event: TransferEvent, request: DepositRequest) -> bool:
    """True when ``event`` pays at least the requested amount from payer to recipient.

    Overpayment satisfies the request.
    """
    return (
        canonical_address(event.to_address) == canonical_address(request.recipient_address)
        and canonical_address(event.from_address) == canonical_address(request.payer_address)
        and event.token_value >= request.min_token_amount
    )
