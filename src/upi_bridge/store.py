"""
In-memory store of payment requests.

Holds every request by id, the set of requests currently waiting for a
deposit, and the transfers already consumed by a match. All mutations go
through one asyncio lock.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .orchestrator import PaymentOrchestrator

logger = logging.getLogger(__name__)


class PaymentStore:
    """Keyed store of payment requests with bounded bookkeeping."""

    MAX_CONSUMED_TRANSFERS: int = 10_000

    def __init__(self, retention: float = 3600.0) -> None:
        """
        Initialize the store.

        Args:
            retention: Seconds a finished request stays queryable
        """
        self.retention = retention
        self._sessions: dict[str, "PaymentOrchestrator"] = {}
        self._finished_at: dict[str, float] = {}
        self._watching: set[str] = set()
        # transfer key -> request id that consumed it, oldest first
        self._consumed: OrderedDict[tuple[str, int], str] = OrderedDict()
        self._lock = asyncio.Lock()

    async def add(self, session: "PaymentOrchestrator") -> None:
        async with self._lock:
            self._prune_locked()
            if session.request_id in self._sessions:
                raise KeyError(f"Duplicate request id {session.request_id}")
            self._sessions[session.request_id] = session

    def get(self, request_id: str) -> "PaymentOrchestrator | None":
        return self._sessions.get(request_id)

    async def watch(self, request_id: str) -> None:
        """Mark a request as waiting for its deposit."""
        async with self._lock:
            self._watching.add(request_id)

    async def unwatch(self, request_id: str) -> None:
        async with self._lock:
            self._watching.discard(request_id)

    def is_watching(self, request_id: str) -> bool:
        return request_id in self._watching

    async def claim_transfer(self, key: tuple[str, int], request_id: str) -> bool:
        """
        Atomically consume a transfer for a request.

        Returns False when the request is no longer waiting or the transfer
        already satisfied another request. On success the request leaves the
        watch set, so it can never be matched twice.
        """
        async with self._lock:
            if request_id not in self._watching:
                return False
            owner = self._consumed.get(key)
            if owner is not None:
                if owner != request_id:
                    logger.info(
                        f"Transfer {key[0][:10]}...:{key[1]} already consumed by request {owner}"
                    )
                return False

            if len(self._consumed) >= self.MAX_CONSUMED_TRANSFERS:
                self._consumed.popitem(last=False)
            self._consumed[key] = request_id
            self._watching.discard(request_id)
            return True

    def restore_consumed(self, consumed: dict[tuple[str, int], str]) -> None:
        """Seed the consumed-transfer set, e.g. from the reconciliation journal."""
        for (transaction_hash, log_index), request_id in consumed.items():
            key = (transaction_hash.lower(), log_index)
            self._consumed[key] = request_id
            self._consumed.move_to_end(key)
        while len(self._consumed) > self.MAX_CONSUMED_TRANSFERS:
            self._consumed.popitem(last=False)

    def mark_finished(self, request_id: str) -> None:
        """Start the retention clock of a request that reached a terminal state."""
        if request_id in self._sessions:
            self._finished_at[request_id] = time.monotonic()

    async def prune(self) -> int:
        async with self._lock:
            return self._prune_locked()

    def _prune_locked(self) -> int:
        now = time.monotonic()
        expired = [
            request_id
            for request_id, finished in self._finished_at.items()
            if now - finished >= self.retention
        ]
        for request_id in expired:
            self._sessions.pop(request_id, None)
            self._finished_at.pop(request_id, None)
            self._watching.discard(request_id)
        if expired:
            logger.debug(f"Pruned {len(expired)} finished requests")
        return len(expired)

    def get_stats(self) -> dict[str, int]:
        return {
            "tracked_requests": len(self._sessions),
            "active_requests": len(self._watching),
            "finished_requests": len(self._finished_at),
            "consumed_transfers": len(self._consumed),
        }
