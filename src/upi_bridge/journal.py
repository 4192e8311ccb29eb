"""
Append-only reconciliation journal.

Records the points after which a deposit has been consumed, so a payout
that never completed can be found and paid by hand.
"""

import json
import logging
from collections import deque
from pathlib import Path
from typing import Any

from .models import utcnow

logger = logging.getLogger(__name__)


class ReconciliationJournal:
    """Writes one JSON line per entry and keeps a bounded in-memory tail."""

    MAX_ENTRIES: int = 1000

    def __init__(self, path: Path | None = None) -> None:
        """
        Initialize the journal.

        Args:
            path: File to append to; None keeps entries in memory and the log only
        """
        self.path = path
        self.entries: deque[dict[str, Any]] = deque(maxlen=self.MAX_ENTRIES)

        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)

    def record(self, event: str, **fields: Any) -> dict[str, Any]:
        """
        Record an entry.

        Args:
            event: Entry type, e.g. ``deposit_matched`` or ``payout_failed``
            **fields: JSON-serializable details

        Returns:
            The entry as recorded
        """
        entry = {"timestamp": utcnow().isoformat(), "event": event, **fields}
        self.entries.append(entry)

        if self.path is not None:
            try:
                with self.path.open("a", encoding="utf-8") as file:
                    file.write(json.dumps(entry, default=str) + "\n")
            except OSError as e:
                logger.error(f"Could not write reconciliation entry to {self.path}: {e}")
                logger.error(f"Unwritten entry: {json.dumps(entry, default=str)}")

        return entry

    def consumed_transfers(self) -> dict[tuple[str, int], str]:
        """
        Transfers already matched to a request, read back from the journal file.

        Returns:
            ``(transaction_hash, log_index) -> request_id`` in journal order;
            empty when there is no file yet
        """
        consumed: dict[tuple[str, int], str] = {}
        if self.path is None or not self.path.exists():
            return consumed

        with self.path.open("r", encoding="utf-8") as file:
            for line_number, line in enumerate(file, start=1):
                if not line.strip():
                    continue
                try:
                    entry = json.loads(line)
                    if entry.get("event") != "deposit_matched":
                        continue
                    key = (str(entry["transaction_hash"]).lower(), int(entry["log_index"]))
                except (ValueError, KeyError, TypeError, AttributeError) as e:
                    logger.warning(f"Skipping unreadable journal line {line_number}: {e}")
                    continue
                consumed[key] = str(entry.get("request_id", ""))

        logger.info(f"Loaded {len(consumed)} consumed transfers from {self.path}")
        return consumed

    def find(self, request_id: str) -> list[dict[str, Any]]:
        """Entries recorded for ``request_id``, oldest first."""
        return [entry for entry in self.entries if entry.get("request_id") == request_id]
