"""Tests for the reconciliation journal."""

import json
import logging

from upi_bridge.journal import ReconciliationJournal


class TestReconciliationJournal:

    def test_in_memory_only(self):
        journal = ReconciliationJournal()
        entry = journal.record("deposit_matched", request_id="a", token_value="12000000")

        assert entry["event"] == "deposit_matched"
        assert "timestamp" in entry
        assert journal.find("a") == [entry]
        assert journal.find("b") == []

    def test_appends_json_lines(self, tmp_path):
        path = tmp_path / "journal" / "reconciliation.jsonl"
        journal = ReconciliationJournal(path)

        journal.record("deposit_matched", request_id="a")
        journal.record("payout_failed", request_id="a", error={"kind": "payout_gateway_error"})

        lines = [json.loads(line) for line in path.read_text().splitlines()]
        assert [line["event"] for line in lines] == ["deposit_matched", "payout_failed"]
        assert lines[1]["error"]["kind"] == "payout_gateway_error"

    def test_reopened_journal_appends(self, tmp_path):
        path = tmp_path / "reconciliation.jsonl"
        ReconciliationJournal(path).record("payout_completed", request_id="a")
        ReconciliationJournal(path).record("payout_completed", request_id="b")

        assert len(path.read_text().splitlines()) == 2

    def test_write_failure_logged_not_raised(self, tmp_path, caplog):
        """Test that an unwritable journal still keeps the entry in memory and the log."""
        path = tmp_path / "reconciliation.jsonl"
        journal = ReconciliationJournal(path)
        path.mkdir()  # opening a directory for append fails

        with caplog.at_level(logging.ERROR, logger="upi_bridge.journal"):
            journal.record("payout_failed", request_id="a")

        assert journal.find("a")
        assert "Could not write reconciliation entry" in caplog.text
        assert "payout_failed" in caplog.text

    def test_bounded_tail(self):
        journal = ReconciliationJournal()
        for i in range(ReconciliationJournal.MAX_ENTRIES + 10):
            journal.record("deposit_matched", request_id=str(i))

        assert len(journal.entries) == ReconciliationJournal.MAX_ENTRIES
        assert journal.find("0") == []

    def test_consumed_transfers_read_back(self, tmp_path):
        """Test that matched deposits survive a restart through the journal file."""
        path = tmp_path / "reconciliation.jsonl"
        journal = ReconciliationJournal(path)
        journal.record("deposit_matched", request_id="a", transaction_hash="0x" + "AB" * 32, log_index=3)
        journal.record("payout_completed", request_id="a", transaction_hash="0x" + "cd" * 32, log_index=0)
        journal.record("deposit_matched", request_id="b", transaction_hash="0x" + "ef" * 32, log_index=0)

        consumed = ReconciliationJournal(path).consumed_transfers()

        assert consumed == {("0x" + "ab" * 32, 3): "a", ("0x" + "ef" * 32, 0): "b"}

    def test_consumed_transfers_skips_unreadable_lines(self, tmp_path, caplog):
        path = tmp_path / "reconciliation.jsonl"
        ReconciliationJournal(path).record(
            "deposit_matched", request_id="a", transaction_hash="0x" + "ab" * 32, log_index=0
        )
        with path.open("a") as file:
            file.write("{not json\n\n")
            file.write(json.dumps({"event": "deposit_matched", "request_id": "b"}) + "\n")

        with caplog.at_level(logging.WARNING, logger="upi_bridge.journal"):
            consumed = ReconciliationJournal(path).consumed_transfers()

        assert consumed == {("0x" + "ab" * 32, 0): "a"}
        assert "Skipping unreadable journal line 2" in caplog.text

    def test_consumed_transfers_without_file(self, tmp_path):
        assert ReconciliationJournal().consumed_transfers() == {}
        assert ReconciliationJournal(tmp_path / "missing.jsonl").consumed_transfers() == {}
