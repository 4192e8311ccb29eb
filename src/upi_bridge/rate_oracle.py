import asyncio
import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from .errors import RateUnavailable

logger = logging.getLogger(__name__)


class RateOracle:
    """Token-per-fiat rates from a CoinGecko-style ``simple/price`` feed.

    The feed quotes the fiat price of one token; the rate is its inverse.
    Rates are cached per currency for ``cache_ttl`` seconds.
    """

    def __init__(
        self,
        url: str,
        token_id: str = "usd-coin",
        cache_ttl: float = 5.0,
        request_timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the oracle.

        Args:
            url: Price feed endpoint
            token_id: Feed identifier of the token
            cache_ttl: Seconds a fetched rate stays valid
            request_timeout: HTTP timeout in seconds
            transport: Optional transport override for the HTTP client
        """
        self.url: str = url
        self.token_id: str = token_id
        self.cache_ttl: float = cache_ttl
        self.request_timeout: float = request_timeout
        self.transport = transport
        self._cache: dict[str, tuple[Decimal, float]] = {}
        # One lock per currency; a slow fetch only holds up its own currency
        self._locks: dict[str, asyncio.Lock] = {}

    async def get_token_per_fiat_rate(self, fiat_currency: str) -> Decimal:
        """Tokens per one unit of ``fiat_currency``.

        Raises:
            RateUnavailable: If the feed fails or returns an unusable price
        """
        currency = fiat_currency.lower()
        async with self._locks.setdefault(currency, asyncio.Lock()):
            cached = self._cache.get(currency)
            if cached and time.monotonic() - cached[1] < self.cache_ttl:
                return cached[0]

            price = await self._fetch_price(currency)
            rate = Decimal(1) / price
            self._cache[currency] = (rate, time.monotonic())
            logger.info(f"1 {self.token_id} = {price} {currency.upper()} (rate {rate})")
            return rate

    async def _fetch_price(self, currency: str) -> Decimal:
        params = {"ids": self.token_id, "vs_currencies": currency}
        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                response: httpx.Response = await client.get(
                    self.url, params=params, timeout=self.request_timeout
                )
                response.raise_for_status()
                payload: dict[str, Any] = response.json()
        except httpx.HTTPError as e:
            raise RateUnavailable(f"Price feed request failed: {e}") from e
        except ValueError as e:
            raise RateUnavailable(f"Price feed returned invalid JSON: {e}") from e

        quotes = payload.get(self.token_id) if isinstance(payload, dict) else None
        raw_price = quotes.get(currency) if isinstance(quotes, dict) else None
        if raw_price is None:
            raise RateUnavailable(
                f"Price feed has no {self.token_id}/{currency} price: {payload}"
            )

        try:
            price = Decimal(str(raw_price))
        except InvalidOperation:
            raise RateUnavailable(f"Price feed returned non-numeric price: {raw_price!r}") from None

        if not price.is_finite() or price <= 0:
            raise RateUnavailable(f"Price feed returned non-positive price: {price}")
        return price
