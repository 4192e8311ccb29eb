"""Fiat to token amount conversion.

The quote is the minimum deposit, so the rounding rule decides whether a
payer sending exactly the quoted amount satisfies the request. It always
does: the matcher accepts ``value >= quote`` and the quote is what the payer
is told to send. TRUNCATE can under-quote by at most one smallest unit;
HALF_UP can over-quote by at most one.
"""

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum

from .errors import InvalidAmount


class RoundingPolicy(str, Enum):
    TRUNCATE = "truncate"
    HALF_UP = "half_up"


_ROUNDING_MODES = {
    RoundingPolicy.TRUNCATE: ROUND_DOWN,
    RoundingPolicy.HALF_UP: ROUND_HALF_UP,
}


def to_decimal(value: Decimal | int | float | str, label: str) -> Decimal:
    """Convert to Decimal, going through ``str`` for floats."""
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except InvalidOperation:
            raise InvalidAmount(f"{label} is not a number: {value!r}") from None
    if not result.is_finite():
        raise InvalidAmount(f"{label} must be finite, got {value!r}")
    return result


def fiat_to_token_units(
    fiat_amount: Decimal | int | float | str,
    rate: Decimal | int | float | str,
    token_decimals: int,
    rounding: RoundingPolicy = RoundingPolicy.TRUNCATE,
) -> int:
    """Token amount in smallest units for ``fiat_amount`` at ``rate``.

    Args:
        fiat_amount: Amount in fiat currency, must be positive
        rate: Tokens per one unit of fiat, must be positive
        token_decimals: Decimals of the token
        rounding: How the fractional smallest unit is resolved

    Returns:
        ``fiat_amount * rate * 10**token_decimals`` rounded per ``rounding``

    Raises:
        InvalidAmount: On a non-positive amount or rate, or negative decimals
    """
    amount = to_decimal(fiat_amount, "Fiat amount")
    if amount <= 0:
        raise InvalidAmount(f"Fiat amount must be positive, got {amount}")

    token_rate = to_decimal(rate, "Rate")
    if token_rate <= 0:
        raise InvalidAmount(f"Rate must be positive, got {token_rate}")

    if token_decimals < 0:
        raise InvalidAmount(f"Token decimals must be non-negative, got {token_decimals}")

    units = amount * token_rate * (Decimal(10) ** token_decimals)
    return int(units.quantize(Decimal(1), rounding=_ROUNDING_MODES[rounding]))
