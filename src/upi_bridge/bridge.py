"""
UPI bridge service.

This module wires configuration to the pipeline components and supervises
one background task per in-flight payment request.
"""

import asyncio
import logging
from typing import Any

from web3 import AsyncWeb3

from .config import BridgeConfig
from .errors import BridgeError
from .journal import ReconciliationJournal
from .ledger_scanner import LedgerScanner
from .models import Quote
from .orchestrator import PaymentOrchestrator
from .payment_intent import parse_payment_intent
from .payout_dispatcher import PayoutDispatcher
from .rate_oracle import RateOracle
from .store import PaymentStore

logger = logging.getLogger(__name__)


class PaymentBridge:
    """
    Accepts payment intents and runs their orchestrators.

    This class focuses on wiring and task lifecycle; the per-request logic
    lives in PaymentOrchestrator.
    """

    SHUTDOWN_GRACE = 5.0  # seconds

    def __init__(
        self,
        config: BridgeConfig,
        w3: AsyncWeb3 | None = None,
        rate_oracle: RateOracle | None = None,
        payout_dispatcher: PayoutDispatcher | None = None,
        store: PaymentStore | None = None,
        journal: ReconciliationJournal | None = None
    ) -> None:
        """
        Initialize the bridge.

        Args:
            config: Bridge configuration
            w3: Async web3 client, created from the RPC URL when omitted
            rate_oracle: Rate source, created from the price feed config when omitted
            payout_dispatcher: Payout client, created from the payout config when omitted
            store: Request store
            journal: Reconciliation journal
        """
        self.config = config
        monitoring = config.monitoring

        self.w3 = w3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(config.chain.rpc_url))
        self.rate_oracle = rate_oracle or RateOracle(
            url=config.price_feed.url,
            token_id=config.price_feed.token_id,
            cache_ttl=config.price_feed.cache_ttl,
            request_timeout=monitoring.request_timeout,
        )
        self.payout_dispatcher = payout_dispatcher or PayoutDispatcher(
            config.payout, request_timeout=monitoring.request_timeout
        )
        self.store = store or PaymentStore(retention=monitoring.session_retention)
        self.journal = journal or ReconciliationJournal(config.journal_path)
        # Deposits paid before a restart must not match again
        self.store.restore_consumed(self.journal.consumed_transfers())

        self._tasks: dict[str, asyncio.Task] = {}

        logger.info(
            f"PaymentBridge initialized for token {config.chain.token_address}, "
            f"recipient {config.chain.recipient_address}"
        )

    @classmethod
    def from_env(cls) -> "PaymentBridge":
        """
        Create a PaymentBridge from environment variables.

        Raises:
            ValueError: If required environment variables are missing
        """
        config = BridgeConfig.from_env()
        config.log_config()
        return cls(config)

    async def _create_scanner(self) -> LedgerScanner:
        return await LedgerScanner.create(
            self.w3,
            self.config.chain.token_address,
            lookback_blocks=self.config.monitoring.lookback_blocks,
            max_block_range=self.config.monitoring.max_block_range,
        )

    async def accept(
        self,
        intent_uri: str,
        payer_address: str,
        timeout: float | None = None
    ) -> Quote:
        """
        Quote a payment intent and start waiting for its deposit.

        The quote is computed before this returns; the deposit wait and the
        payout continue in a background task.

        Args:
            intent_uri: UPI intent URI
            payer_address: Address the deposit will come from
            timeout: Seconds to wait for the deposit, capped by configuration

        Returns:
            The quote to show the payer

        Raises:
            MalformedPaymentIntent: If the intent cannot be parsed
            InvalidAddress: If the payer address is invalid
            InvalidAmount: If the amount cannot be quoted
            RateUnavailable: If no rate is available
        """
        intent = parse_payment_intent(intent_uri, self.config.price_feed.fiat_currency)
        monitoring = self.config.monitoring

        orchestrator = PaymentOrchestrator(
            intent,
            payer_address,
            recipient_address=self.config.chain.recipient_address,
            token_decimals=self.config.chain.token_decimals,
            rate_oracle=self.rate_oracle,
            payout_dispatcher=self.payout_dispatcher,
            scanner_factory=self._create_scanner,
            store=self.store,
            journal=self.journal,
            polling_interval=monitoring.polling_interval,
            timeout=monitoring.resolve_timeout(timeout),
            rounding=monitoring.rounding,
        )
        await self.store.add(orchestrator)

        try:
            quote = await orchestrator.quote()
        except BridgeError:
            self.store.mark_finished(orchestrator.request_id)
            raise

        self._tasks[orchestrator.request_id] = asyncio.create_task(
            self._run(orchestrator), name=f"payment-{orchestrator.request_id}"
        )
        return quote

    async def _run(self, orchestrator: PaymentOrchestrator) -> None:
        try:
            state = await orchestrator.run()
            logger.info(f"Request {orchestrator.request_id} finished in state {state.value}")
        except asyncio.CancelledError:
            logger.info(f"Request {orchestrator.request_id} task cancelled")
            raise
        except Exception as e:
            logger.error(f"Request {orchestrator.request_id} task failed: {e}", exc_info=True)
        finally:
            self._tasks.pop(orchestrator.request_id, None)

    def get(self, request_id: str) -> PaymentOrchestrator | None:
        return self.store.get(request_id)

    def stats(self) -> dict[str, Any]:
        return {**self.store.get_stats(), "in_flight_tasks": len(self._tasks)}

    async def shutdown(self) -> None:
        """Cancel in-flight requests, wait for them, and close the node connection."""
        tasks = dict(self._tasks)
        if tasks:
            logger.info(f"Cancelling {len(tasks)} in-flight requests...")
            for request_id in tasks:
                if orchestrator := self.store.get(request_id):
                    orchestrator.cancel()

            _, pending = await asyncio.wait(tasks.values(), timeout=self.SHUTDOWN_GRACE)
            for task in pending:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass  # Expected when cancelling

        try:
            provider = self.w3.provider
            if hasattr(provider, "disconnect"):
                await provider.disconnect()
        except Exception as e:
            logger.warning(f"Error during cleanup: {e}")

        logger.info("PaymentBridge stopped")
