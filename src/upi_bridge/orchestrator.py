"""
Per-request payment orchestration.

One PaymentOrchestrator drives one payment request through its lifecycle:
quote, wait for the matching deposit, pay out, finish. The deposit wait is
bounded by a timeout and can be cancelled.
"""

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any

from web3 import Web3

from .amount_converter import RoundingPolicy, fiat_to_token_units
from .deposit_matcher import matches
from .errors import (
    BridgeError,
    DepositCancelled,
    DepositTimeout,
    InvalidAddress,
    InvalidAmount,
    InvalidTransition,
    ScanFailed,
)
from .journal import ReconciliationJournal
from .ledger_scanner import LedgerScanner
from .models import (
    DepositRequest,
    MatchedDeposit,
    PaymentIntent,
    PayoutRequest,
    PayoutResult,
    Quote,
    RequestState,
    utcnow,
)
from .payment_intent import build_payment_intent
from .payout_dispatcher import PayoutDispatcher
from .rate_oracle import RateOracle
from .store import PaymentStore

logger = logging.getLogger(__name__)

ScannerFactory = Callable[[], Awaitable[LedgerScanner]]


class PaymentOrchestrator:
    """
    State machine for a single payment request.

    States move forward only:
    QUOTED -> AWAITING_DEPOSIT -> DEPOSIT_CONFIRMED -> PAYOUT_DISPATCHED -> COMPLETED,
    with FAILED reachable from every non-terminal state.
    """

    TRANSITIONS: dict[RequestState, frozenset[RequestState]] = {
        RequestState.QUOTED: frozenset({RequestState.AWAITING_DEPOSIT, RequestState.FAILED}),
        RequestState.AWAITING_DEPOSIT: frozenset({RequestState.DEPOSIT_CONFIRMED, RequestState.FAILED}),
        RequestState.DEPOSIT_CONFIRMED: frozenset({RequestState.PAYOUT_DISPATCHED, RequestState.FAILED}),
        RequestState.PAYOUT_DISPATCHED: frozenset({RequestState.COMPLETED, RequestState.FAILED}),
        RequestState.COMPLETED: frozenset(),
        RequestState.FAILED: frozenset(),
    }

    def __init__(
        self,
        intent: PaymentIntent,
        payer_address: str,
        *,
        recipient_address: str,
        token_decimals: int,
        rate_oracle: RateOracle,
        payout_dispatcher: PayoutDispatcher,
        scanner_factory: ScannerFactory,
        store: PaymentStore,
        journal: ReconciliationJournal,
        polling_interval: float = 5.0,
        timeout: float = 900.0,
        rounding: RoundingPolicy = RoundingPolicy.TRUNCATE,
        request_id: str | None = None
    ) -> None:
        """
        Initialize the orchestrator in the QUOTED state.

        Args:
            intent: Parsed payment intent to pay out
            payer_address: Address the deposit must come from
            recipient_address: Custodial address the deposit must go to
            token_decimals: Decimals of the deposited token
            rate_oracle: Source of the token-per-fiat rate
            payout_dispatcher: Executes the fiat payout
            scanner_factory: Creates the LedgerScanner for this request
            store: Shared request store
            journal: Reconciliation journal
            polling_interval: Seconds between scans
            timeout: Maximum seconds to wait for the deposit
            rounding: Quote rounding policy
            request_id: Explicit id, generated when omitted
        """
        self.request_id = request_id or uuid.uuid4().hex
        self.intent = intent
        self.payer_address = payer_address
        self.recipient_address = recipient_address
        self.token_decimals = token_decimals
        self.rate_oracle = rate_oracle
        self.payout_dispatcher = payout_dispatcher
        self.scanner_factory = scanner_factory
        self.store = store
        self.journal = journal
        self.polling_interval = polling_interval
        self.timeout = timeout
        self.rounding = rounding

        self.state = RequestState.QUOTED
        self.history: list[dict[str, str]] = [
            {"state": self.state.value, "at": utcnow().isoformat()}
        ]
        self.quote_result: Quote | None = None
        self.deposit_request: DepositRequest | None = None
        self.scanner: LedgerScanner | None = None
        self.matched: MatchedDeposit | None = None
        self.payout_result: PayoutResult | None = None
        self.error: BridgeError | None = None
        self.scan_failures = 0

        self._cancelled = asyncio.Event()

    def _transition(self, new_state: RequestState) -> None:
        if new_state not in self.TRANSITIONS[self.state]:
            raise InvalidTransition(
                f"Request {self.request_id}: {self.state.value} -> {new_state.value} not allowed"
            )
        logger.debug(f"Request {self.request_id}: {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append({"state": new_state.value, "at": utcnow().isoformat()})

    async def quote(self) -> Quote:
        """
        Compute the token amount the payer must deposit.

        Returns:
            The quote, also kept on ``quote_result``

        Raises:
            InvalidAddress: If the payer address is not a valid address
            RateUnavailable: If no rate could be fetched
            InvalidAmount: If the fiat amount is not positive or the quote rounds to zero
            ScanFailed: If the current block could not be fetched
        """
        if self.state is not RequestState.QUOTED or self.quote_result is not None:
            raise InvalidTransition(f"Request {self.request_id} has already been quoted")

        try:
            if not Web3.is_address(self.payer_address):
                raise InvalidAddress(f"Invalid payer address: {self.payer_address!r}")

            rate = await self.rate_oracle.get_token_per_fiat_rate(self.intent.currency)
            token_amount = fiat_to_token_units(
                self.intent.amount, rate, self.token_decimals, self.rounding
            )
            if token_amount <= 0:
                raise InvalidAmount(
                    f"{self.intent.amount} {self.intent.currency} is below one token unit"
                )

            self.deposit_request = DepositRequest(
                payer_address=self.payer_address,
                recipient_address=self.recipient_address,
                min_token_amount=token_amount,
            )
            # Pins the scan start to the quote-time head
            self.scanner = await self.scanner_factory()
        except BridgeError as e:
            self._fail(e)
            raise

        self.quote_result = Quote(
            request_id=self.request_id,
            token_amount=token_amount,
            recipient_address=self.deposit_request.recipient_address,
            fiat_amount=self.intent.amount,
            currency=self.intent.currency,
            rate=rate,
            expires_at=self.deposit_request.requested_at + timedelta(seconds=self.timeout),
        )
        logger.info(
            f"Request {self.request_id}: {self.intent.amount} {self.intent.currency} "
            f"-> {token_amount} token units to {self.deposit_request.recipient_address}"
        )
        return self.quote_result

    def cancel(self) -> None:
        """Ask the deposit wait to stop at its next suspend point."""
        self._cancelled.set()

    async def run(self) -> RequestState:
        """
        Wait for the deposit and pay out.

        Domain failures end in FAILED rather than propagating.

        Returns:
            The terminal state
        """
        if self.deposit_request is None or self.scanner is None:
            raise InvalidTransition(f"Request {self.request_id} must be quoted before running")

        try:
            matched = await self._await_deposit()
            await self._pay_out(matched)
        except BridgeError as e:
            self._fail(e)
        except asyncio.CancelledError:
            self._fail(DepositCancelled("Request task was cancelled"))
            raise
        except Exception as e:
            logger.error(f"Request {self.request_id}: unexpected error: {e}", exc_info=True)
            self._fail(BridgeError(f"Unexpected error: {e}"))
        finally:
            await self.store.unwatch(self.request_id)
            self.store.mark_finished(self.request_id)

        return self.state

    async def _await_deposit(self) -> MatchedDeposit:
        self._transition(RequestState.AWAITING_DEPOSIT)
        await self.store.watch(self.request_id)
        logger.info(
            f"Request {self.request_id}: waiting up to {self.timeout}s for "
            f"{self.deposit_request.min_token_amount} units from {self.deposit_request.payer_address}"
        )

        try:
            matched = await asyncio.wait_for(self._poll_for_deposit(), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise DepositTimeout(
                f"No matching deposit within {self.timeout} seconds"
            ) from None

        self.matched = matched
        self._transition(RequestState.DEPOSIT_CONFIRMED)
        event = matched.event
        logger.info(
            f"Deposit confirmed for request {self.request_id}: "
            f"from={event.from_address} to={event.to_address} "
            f"amount={event.token_value} tx={event.transaction_hash}"
        )
        self.journal.record(
            "deposit_matched",
            request_id=self.request_id,
            transaction_hash=event.transaction_hash,
            log_index=event.log_index,
            block_number=event.block_number,
            token_value=str(event.token_value),
            payer_address=event.from_address,
            fiat_amount=str(self.intent.amount),
            currency=self.intent.currency,
            beneficiary=self.intent.payee_address,
        )
        return matched

    async def _poll_for_deposit(self) -> MatchedDeposit:
        request = self.deposit_request
        while True:
            if self._cancelled.is_set():
                raise DepositCancelled("Request cancelled while awaiting deposit")

            try:
                events = await self.scanner.scan_once()
            except ScanFailed as e:
                self.scan_failures += 1
                logger.warning(f"Request {self.request_id}: scan failed, will retry: {e.reason}")
            else:
                for event in events:
                    # First qualifying transfer wins; the claim takes the
                    # request out of the watch set.
                    if matches(event, request) and await self.store.claim_transfer(
                        event.unique_key, self.request_id
                    ):
                        return MatchedDeposit(request=request, event=event)

            await self._pause()

    async def _pause(self) -> None:
        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=self.polling_interval)
        except asyncio.TimeoutError:
            return
        raise DepositCancelled("Request cancelled while awaiting deposit")

    async def _pay_out(self, matched: MatchedDeposit) -> None:
        payout = PayoutRequest(
            beneficiary_identifier=self.intent.payee_address,
            beneficiary_name=self.intent.payee_name,
            fiat_amount=self.intent.amount,
            currency=self.intent.currency,
            reference_id=self.request_id,
        )
        self._transition(RequestState.PAYOUT_DISPATCHED)
        self.payout_result = await self.payout_dispatcher.dispatch(payout)
        self._transition(RequestState.COMPLETED)

        self.journal.record(
            "payout_completed",
            request_id=self.request_id,
            transaction_hash=matched.event.transaction_hash,
            provider_reference=self.payout_result.provider_reference,
            fiat_amount=str(payout.fiat_amount),
            currency=payout.currency,
        )
        logger.info(
            f"✓ Request {self.request_id} completed, payout reference "
            f"{self.payout_result.provider_reference}"
        )
        logger.info(f"Completion intent: {self.completion_uri}")

    def _fail(self, error: BridgeError) -> None:
        if self.state.is_terminal:
            return
        self.error = error

        if self.matched is not None:
            event = self.matched.event
            self.payout_result = PayoutResult(success=False, failure_reason=error.reason)
            logger.error(
                f"✗ MANUAL RECONCILIATION REQUIRED for request {self.request_id}: "
                f"deposit {event.transaction_hash} (log {event.log_index}, "
                f"{event.token_value} units from {event.from_address}) was consumed "
                f"but payout of {self.intent.amount} {self.intent.currency} to "
                f"{self.intent.payee_address} failed: {error.reason}"
            )
            self.journal.record(
                "payout_failed",
                request_id=self.request_id,
                transaction_hash=event.transaction_hash,
                log_index=event.log_index,
                token_value=str(event.token_value),
                payer_address=event.from_address,
                fiat_amount=str(self.intent.amount),
                currency=self.intent.currency,
                beneficiary=self.intent.payee_address,
                error=error.to_dict(),
            )
        else:
            logger.warning(f"Request {self.request_id} failed: {error.kind}: {error.reason}")

        self._transition(RequestState.FAILED)

    @property
    def completion_uri(self) -> str:
        return build_payment_intent(self.intent.params)

    def snapshot(self) -> dict[str, Any]:
        """Status document for this request."""
        return {
            "request_id": self.request_id,
            "state": self.state.value,
            "payer_address": self.payer_address,
            "payee_address": self.intent.payee_address,
            "fiat_amount": str(self.intent.amount),
            "currency": self.intent.currency,
            "quote": self.quote_result.to_dict() if self.quote_result else None,
            "history": list(self.history),
            "matched_deposit": self.matched.to_dict() if self.matched else None,
            "payout": self.payout_result.to_dict() if self.payout_result else None,
            "error": self.error.to_dict() if self.error else None,
            "scan_failures": self.scan_failures,
            "scanner": self.scanner.get_status() if self.scanner else None,
            "completion_uri": (
                self.completion_uri if self.state is RequestState.COMPLETED else None
            ),
        }
