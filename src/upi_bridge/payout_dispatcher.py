#!/usr/bin/env python3
"""Fiat payout submission.

This module sends direct transfers to the payout gateway. Every attempt for
one payout carries the same ``transferId``, so transport retries are safe:
the gateway deduplicates them.
"""

import asyncio
import logging
from typing import Any

import httpx

from .config import PayoutConfig
from .errors import PayoutGatewayError
from .models import PayoutRequest, PayoutResult

logger = logging.getLogger(__name__)

ACCEPTED_STATUSES = frozenset({"SUCCESS", "ACCEPTED", "PENDING"})


class PayoutDispatcher:
    """Submits direct transfers to the payout gateway."""

    def __init__(
        self,
        config: PayoutConfig,
        request_timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        base_delay: float = 1.0,
        max_delay: float = 30.0
    ) -> None:
        """
        Initialize the PayoutDispatcher.

        Args:
            config: Gateway endpoint, credentials and transfer settings
            request_timeout: HTTP timeout in seconds
            transport: Optional transport override for the HTTP client
            base_delay: First retry delay in seconds, doubled per attempt
            max_delay: Upper bound for the retry delay
        """
        self.config: PayoutConfig = config
        self.request_timeout: float = request_timeout
        self.transport = transport
        self.base_delay: float = base_delay
        self.max_delay: float = max_delay

    def _headers(self) -> dict[str, str]:
        token = self.config.bearer_token
        if not token.lower().startswith("bearer "):
            token = f"Bearer {token}"
        return {"Authorization": token, "Content-Type": "application/json"}

    def build_payload(self, payout: PayoutRequest) -> dict[str, Any]:
        """Gateway request body for ``payout``."""
        beneficiary: dict[str, str] = {
            "name": payout.beneficiary_name or payout.beneficiary_identifier,
            "vpa": payout.beneficiary_identifier,
        }
        if self.config.contact_phone:
            beneficiary["phone"] = self.config.contact_phone
        if self.config.contact_email:
            beneficiary["email"] = self.config.contact_email
        if self.config.contact_address:
            beneficiary["address1"] = self.config.contact_address

        return {
            "amount": str(payout.fiat_amount),
            "transferId": payout.reference_id,
            "transferMode": self.config.transfer_mode,
            "beneDetails": beneficiary,
        }

    async def dispatch(self, payout: PayoutRequest) -> PayoutResult:
        """
        Execute one payout, retrying transport errors and 5xx responses.

        Args:
            payout: The transfer to execute

        Returns:
            PayoutResult with the gateway reference

        Raises:
            PayoutGatewayError: If the gateway rejects the transfer or keeps failing
        """
        payload = self.build_payload(payout)
        attempts = self.config.retry_count + 1
        attempt = 1

        logger.info(
            f"Dispatching payout {payout.reference_id}: "
            f"{payout.fiat_amount} {payout.currency} to {payout.beneficiary_identifier}"
        )

        while True:
            try:
                return await self._post(payload)
            except httpx.TransportError as e:
                error = PayoutGatewayError(f"Payout gateway unreachable: {e}")
            except PayoutGatewayError as e:
                if e.status_code is None or e.status_code < 500:
                    raise
                error = e

            if attempt >= attempts:
                logger.error(f"Payout {payout.reference_id} failed after {attempts} attempts")
                raise error

            delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
            logger.warning(
                f"Payout {payout.reference_id} attempt {attempt}/{attempts} failed: "
                f"{error.reason}. Retrying in {delay} seconds..."
            )
            await asyncio.sleep(delay)
            attempt += 1

    async def _post(self, payload: dict[str, Any]) -> PayoutResult:
        async with httpx.AsyncClient(transport=self.transport) as client:
            response: httpx.Response = await client.post(
                self.config.url,
                json=payload,
                headers=self._headers(),
                timeout=self.request_timeout,
            )

        try:
            body: Any = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if response.is_error:
            reason = body.get("message") or response.text or response.reason_phrase
            raise PayoutGatewayError(
                f"Payout gateway returned HTTP {response.status_code}: {reason}",
                status_code=response.status_code,
            )

        logger.debug(f"Transfer response: {body}")

        status = str(body.get("status", "")).upper()
        if status not in ACCEPTED_STATUSES:
            reason = body.get("message") or f"status {status or 'missing'}"
            raise PayoutGatewayError(
                f"Payout rejected: {reason}", status_code=response.status_code
            )

        data = body.get("data")
        if not isinstance(data, dict):
            data = {}
        reference = data.get("referenceId") or data.get("utr") or payload["transferId"]
        return PayoutResult(success=True, provider_reference=str(reference))
