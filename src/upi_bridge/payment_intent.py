"""Parsing and rebuilding of UPI ``upi://pay`` payment intents."""

from collections.abc import Iterable
from decimal import Decimal, InvalidOperation
from urllib.parse import parse_qsl, quote, urlencode, urlsplit

from .errors import MalformedPaymentIntent
from .models import PaymentIntent


def parse_payment_intent(uri: str, default_currency: str = "INR") -> PaymentIntent:
    """Parse a UPI intent URI.

    Args:
        uri: The ``upi://pay?pa=...&am=...`` string decoded from the QR code
        default_currency: Currency assumed when ``cu`` is absent; any other
            currency is rejected

    Raises:
        MalformedPaymentIntent: On a wrong scheme, missing payee or amount,
            a non-numeric amount, or an unsupported currency
    """
    if not uri or not uri.strip():
        raise MalformedPaymentIntent("Payment intent is empty")

    parts = urlsplit(uri.strip())
    if parts.scheme.lower() != "upi":
        raise MalformedPaymentIntent(
            f"Unsupported payment intent scheme: {parts.scheme or 'none'!r}"
        )

    params = tuple(parse_qsl(parts.query, keep_blank_values=True))
    values = dict(params)

    payee_address = values.get("pa", "").strip()
    if not payee_address:
        raise MalformedPaymentIntent("Payment intent has no payee address (pa)")

    raw_amount = values.get("am", "").strip()
    if not raw_amount:
        raise MalformedPaymentIntent("Payment intent has no amount (am)")
    try:
        amount = Decimal(raw_amount)
    except InvalidOperation:
        raise MalformedPaymentIntent(f"Payment intent amount is not a number: {raw_amount!r}") from None
    if not amount.is_finite():
        raise MalformedPaymentIntent(f"Payment intent amount is not finite: {raw_amount!r}")

    currency = (values.get("cu") or default_currency).strip().upper()
    if currency != default_currency.upper():
        raise MalformedPaymentIntent(
            f"Unsupported currency {currency}, expected {default_currency.upper()}"
        )

    return PaymentIntent(
        payee_address=payee_address,
        payee_name=values.get("pn", "").strip(),
        amount=amount,
        currency=currency,
        note=values.get("tn", ""),
        params=params,
    )


def build_payment_intent(params: Iterable[tuple[str, str]]) -> str:
    """Rebuild a ``upi://pay`` URI from ordered query parameters."""
    return "upi://pay?" + urlencode(list(params), safe="@", quote_via=quote)
