"""
Cursor-based scanner for token Transfer logs.
"""

import asyncio
import logging
from typing import Any

from web3 import AsyncWeb3, Web3

from .errors import ScanFailed
from .models import ScanCursor, TransferEvent
from .utils.log_decoder import TRANSFER_TOPIC, decode_transfer_log


class LedgerScanner:
    """
    Polls a node for Transfer logs of one token contract.

    Each successful ``scan_once`` covers the blocks from the cursor up to the
    head and moves the cursor past the head. A failed scan leaves the cursor
    where it was, so the next call retries the same range.
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        token_address: str,
        start_block: int,
        max_block_range: int = 2000
    ) -> None:
        """
        Initialize the scanner.

        Args:
            w3: Async web3 client shared by all scanners
            token_address: Address of the token contract to monitor
            start_block: First block to scan
            max_block_range: Maximum blocks per log query
        """
        if start_block < 0:
            raise ValueError(f"Start block must be non-negative, got {start_block}")
        if max_block_range <= 0:
            raise ValueError(f"Max block range must be positive, got {max_block_range}")

        self.w3 = w3
        self.token_address = Web3.to_checksum_address(token_address)
        self.max_block_range = max_block_range
        self.cursor = ScanCursor(next_block_to_scan=start_block)

        # Single writer for the cursor
        self._lock = asyncio.Lock()

        self.scans_completed = 0
        self.scans_failed = 0

        # Setup logging
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @classmethod
    async def create(
        cls,
        w3: AsyncWeb3,
        token_address: str,
        lookback_blocks: int = 0,
        max_block_range: int = 2000
    ) -> "LedgerScanner":
        """
        Create a scanner whose cursor starts after the current head.

        With the default ``lookback_blocks=0`` only blocks mined after this
        call are scanned, so transfers made before it can never match.
        A positive value re-includes that many blocks up to the head.

        Raises:
            ScanFailed: If the head cannot be fetched
        """
        try:
            head = await w3.eth.block_number
        except Exception as e:
            raise ScanFailed(f"Could not fetch current block: {e}") from e

        start_block = max(0, head + 1 - lookback_blocks)
        return cls(w3, token_address, start_block, max_block_range)

    async def scan_once(self) -> list[TransferEvent]:
        """
        Scan from the cursor to the current head, inclusive.

        Returns:
            Decoded transfers in ascending (block, log index) order

        Raises:
            ScanFailed: On any node communication error; the cursor is unchanged
        """
        async with self._lock:
            from_block = self.cursor.next_block_to_scan

            try:
                head = await self.w3.eth.block_number
            except Exception as e:
                self.scans_failed += 1
                raise ScanFailed(f"Could not fetch current block: {e}") from e

            # Skip if no new blocks
            if head < from_block:
                return []

            events: list[TransferEvent] = []
            window_start = from_block
            while window_start <= head:
                window_end = min(head, window_start + self.max_block_range - 1)
                try:
                    logs = await self.w3.eth.get_logs(
                        self._filter_params(window_start, window_end)
                    )
                except Exception as e:
                    self.scans_failed += 1
                    self.logger.warning(
                        f"Log query failed for blocks {window_start}-{window_end}: {e}"
                    )
                    # Don't advance the cursor on error
                    raise ScanFailed(
                        f"Log query failed for blocks {window_start}-{window_end}: {e}"
                    ) from e

                for log in logs:
                    if event := decode_transfer_log(log):
                        events.append(event)
                window_start = window_end + 1

            events.sort(key=lambda event: event.position)
            self.cursor.advance_to(head + 1)
            self.scans_completed += 1

            if events:
                self.logger.info(
                    f"Found {len(events)} Transfer events in blocks {from_block}-{head}"
                )
            else:
                self.logger.debug(f"No Transfer events in blocks {from_block}-{head}")

            return events

    def _filter_params(self, from_block: int, to_block: int) -> dict[str, Any]:
        return {
            "address": self.token_address,
            "topics": [TRANSFER_TOPIC],
            "fromBlock": from_block,
            "toBlock": to_block,
        }

    def get_status(self) -> dict[str, Any]:
        """
        Get current status of the scanner.

        Returns:
            Dictionary with status information
        """
        return {
            "next_block_to_scan": self.cursor.next_block_to_scan,
            "token_address": self.token_address,
            "scans_completed": self.scans_completed,
            "scans_failed": self.scans_failed,
        }
