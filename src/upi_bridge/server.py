"""
UPI Bridge HTTP server
FastAPI surface for accepting payment intents and querying their status
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional
from urllib.parse import urlsplit

from fastapi import FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from . import __version__
from .bridge import PaymentBridge
from .errors import BridgeError, RateUnavailable, ScanFailed

logger = logging.getLogger(__name__)


class ProcessUpiRequest(BaseModel):
    """Body of POST /process-upi"""
    payment_intent_uri: str = Field(
        validation_alias=AliasChoices("paymentIntentUri", "upiIntent"),
        description="UPI intent URI decoded from the payee's QR code",
    )
    payer_address: str = Field(
        validation_alias=AliasChoices("payerAddress", "userEthAddress"),
        description="Wallet address the deposit will be sent from",
    )
    timeout_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        validation_alias=AliasChoices("timeoutSeconds", "timeout_seconds"),
        description="Maximum wait for the deposit",
    )


class ProcessUpiResponse(BaseModel):
    """Quote returned while the deposit is pending"""
    model_config = ConfigDict(populate_by_name=True)

    status: str = "pending_deposit"
    request_id: str = Field(alias="requestId")
    token_amount: str = Field(
        alias="tokenAmount",
        description="Amount in the token's smallest unit",
    )
    recipient_address: str = Field(alias="recipientAddress")
    expires_at: str = Field(alias="expiresAt")


def _error_status(error: BridgeError) -> int:
    if isinstance(error, (RateUnavailable, ScanFailed)):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_400_BAD_REQUEST


def create_app(bridge: PaymentBridge) -> FastAPI:
    """Build the FastAPI app around ``bridge``."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifecycle manager for the FastAPI app"""
        logger.info("UPI bridge server starting")
        yield
        logger.info("UPI bridge server shutting down")
        await bridge.shutdown()

    app = FastAPI(
        title="UPI Bridge",
        description="Stablecoin deposit to UPI payout bridge",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.bridge = bridge

    @app.exception_handler(BridgeError)
    async def bridge_error_handler(request: Request, exc: BridgeError) -> JSONResponse:
        return JSONResponse(status_code=_error_status(exc), content=exc.to_dict())

    @app.post(
        "/process-upi",
        status_code=status.HTTP_202_ACCEPTED,
        response_model=ProcessUpiResponse,
        response_model_by_alias=True,
    )
    async def process_upi(body: ProcessUpiRequest):
        """
        Quote a UPI payment intent and start watching for the deposit.
        The payout happens in the background once the deposit is confirmed.
        """
        quote = await bridge.accept(
            body.payment_intent_uri,
            body.payer_address,
            timeout=body.timeout_seconds,
        )
        return ProcessUpiResponse(
            request_id=quote.request_id,
            token_amount=str(quote.token_amount),
            recipient_address=quote.recipient_address,
            expires_at=quote.expires_at.isoformat(),
        )

    @app.get("/payments/{request_id}")
    async def get_payment(request_id: str):
        """Status of a payment request"""
        orchestrator = bridge.get(request_id)
        if orchestrator is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Unknown payment request {request_id}",
            )
        return orchestrator.snapshot()

    @app.get("/upi-redir")
    async def upi_redirect(uri: str = Query(..., min_length=1)):
        """Redirect to a UPI intent so mobile clients open their payment app"""
        if urlsplit(uri).scheme.lower() != "upi":
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Only upi: URIs can be redirected",
            )
        return RedirectResponse(url=uri, status_code=status.HTTP_302_FOUND)

    @app.get("/health")
    async def health_check():
        """Liveness and request counters"""
        return {"status": "healthy", "version": __version__, **bridge.stats()}

    return app
