"""
Unit tests for settlement feed parsing and reconciliation.

Tests matching rules, the Pending/NotFound split, tolerance boundaries,
parse error collection and cancellation.
"""

import threading
from datetime import date, datetime
from decimal import Decimal

import pytest

from cash_settlement.core.errors import ParseError, ReconciliationCancelled
from cash_settlement.core.reconciliation import (
    MatchStatus,
    SettlementEntry,
    match,
    parse_settlement_feed,
    partition_references,
    pending_report,
    reconcile,
    summarize,
)
from cash_settlement.core.references import ReferenceRule, settlement_file_rule
from cash_settlement.storage.models import PaymentRecord


def _ref(n: int) -> str:
    return str(n).zfill(30)


def _payment(n: int, amount: str, transaction_id: str = None) -> PaymentRecord:
    return PaymentRecord(
        transaction_id=transaction_id or f"txn-{n}",
        service_code="DIESTEL",
        reference_number=_ref(n),
        payment_amount=Decimal(amount),
        transaction_date=datetime(2026, 10, 19, 10, 0, 0),
    )


def _entry(n: int, amount: str, line_number: int = 1) -> SettlementEntry:
    return SettlementEntry(
        reference_number=_ref(n),
        amount=Decimal(amount),
        date_text="2026-10-19",
        line_number=line_number,
    )


class TestParseSettlementFeed:
    """Test pipe-delimited feed parsing."""

    def test_header_and_entries(self):
        """Test a header line is skipped and entries are read."""
        feed = (
            "REFERENCE|AMOUNT|DATE|STATUS\n"
            f"{_ref(1)}|5000.00|2026-10-19|PAID\n"
            f"{_ref(2)}|120.50|2026-10-19\n"
        )

        parsed = parse_settlement_feed(feed)

        assert parsed.errors == []
        assert len(parsed.entries) == 2
        assert parsed.entries[0].amount == Decimal("5000.00")
        assert parsed.entries[0].status == "PAID"
        assert parsed.entries[0].line_number == 2
        assert parsed.entries[1].status is None
        assert parsed.entries[1].date == date(2026, 10, 19)

    def test_no_header(self):
        """Test a feed without a header."""
        parsed = parse_settlement_feed(f"{_ref(1)}|10.00|2026-10-19\n")
        assert len(parsed.entries) == 1

    def test_blank_lines_skipped(self):
        """Test blank lines are ignored, not errors."""
        parsed = parse_settlement_feed(f"\n{_ref(1)}|10.00|2026-10-19\n\n   \n")
        assert len(parsed.entries) == 1
        assert parsed.errors == []

    def test_short_line_reported(self):
        """Test lines with too few fields become parse errors."""
        parsed = parse_settlement_feed(f"{_ref(1)}|10.00\n{_ref(2)}|20.00|2026-10-19\n")

        assert len(parsed.entries) == 1
        assert len(parsed.errors) == 1
        assert parsed.errors[0].line_number == 1

    def test_bad_amount_reported(self):
        """Test an unreadable amount becomes a parse error."""
        parsed = parse_settlement_feed(f"{_ref(1)}|ten|2026-10-19\n")
        assert parsed.entries == []
        assert "invalid amount" in str(parsed.errors[0])

    def test_header_only_on_first_line(self):
        """Test a header-looking line later in the file is data."""
        feed = f"{_ref(1)}|10.00|2026-10-19\nREFERENCE|AMOUNT|DATE\n"
        parsed = parse_settlement_feed(feed)
        assert len(parsed.entries) == 1
        assert parsed.errors[0].line_number == 2

    def test_bytes_with_bom(self):
        """Test UTF-8 bytes with a byte-order mark."""
        feed = ("\ufeffREFERENCE|AMOUNT|DATE\n" f"{_ref(1)}|10.00|2026-10-19\n").encode("utf-8")
        parsed = parse_settlement_feed(feed)
        assert len(parsed.entries) == 1

    def test_undecodable_bytes(self):
        """Test that unreadable content is fatal."""
        with pytest.raises(ParseError) as exc_info:
            parse_settlement_feed(b"\xff\xfe\x00bad")
        assert exc_info.value.line_number == 0

    def test_unparseable_date_kept_as_text(self):
        """Test a non-ISO date doesn't drop the entry."""
        parsed = parse_settlement_feed(f"{_ref(1)}|10.00|19/10/2026\n")
        assert parsed.entries[0].date_text == "19/10/2026"
        assert parsed.entries[0].date is None


class TestMatch:
    """Test reference matching and classification."""

    def test_exact_match(self):
        """Test equal amounts match with no discrepancy."""
        records = match([_payment(1, "5000.00")], [_entry(1, "5000.00")])

        assert len(records) == 1
        assert records[0].match_status == MatchStatus.MATCHED
        assert records[0].discrepancy_amount is None
        assert records[0].transaction_id == "txn-1"
        assert records[0].notes == "Transaction matched successfully"

    def test_one_cent_difference_matches(self):
        """Test the tolerance boundary is inclusive."""
        records = match([_payment(1, "5000.00")], [_entry(1, "5000.01")])
        assert records[0].match_status == MatchStatus.MATCHED

    def test_two_cent_difference_is_discrepancy(self):
        """Test just past the tolerance."""
        records = match([_payment(1, "5000.00")], [_entry(1, "5000.02")])

        assert records[0].match_status == MatchStatus.DISCREPANCY
        assert records[0].discrepancy_amount == Decimal("0.02")
        assert records[0].external_file_amount == Decimal("5000.02")
        assert records[0].notes == "Amount mismatch: System $5,000.00 vs File $5,000.02"

    def test_custom_tolerance(self):
        """Test a wider tolerance."""
        records = match([_payment(1, "100.00")], [_entry(1, "100.50")], tolerance=Decimal("1.00"))
        assert records[0].match_status == MatchStatus.MATCHED

    def test_not_found(self):
        """Test a feed entry with no internal payment."""
        records = match([], [_entry(7, "250.00")])

        assert records[0].match_status == MatchStatus.NOT_FOUND
        assert records[0].transaction_id is None
        assert records[0].payment_amount == Decimal("0")
        assert records[0].external_file_amount == Decimal("250.00")
        assert records[0].transaction_date == date(2026, 10, 19)
        assert records[0].notes == "Transaction not found in system"

    def test_unmentioned_payment_is_pending(self):
        """Test internal payments missing from the feed are pending."""
        records = match([_payment(1, "10.00"), _payment(2, "20.00")], [_entry(1, "10.00")])

        statuses = {r.reference_number: r.match_status for r in records}
        assert statuses[_ref(1)] == MatchStatus.MATCHED
        assert statuses[_ref(2)] == MatchStatus.PENDING
        assert records[-1].notes == "Awaiting settlement file reconciliation"

    def test_repeated_reference_keeps_every_payment(self):
        """Test two payments on one reference both come back as pending."""
        payments = [_payment(1, "100.00", "a"), _payment(1, "200.00", "b")]

        records = match(payments, [])

        assert [(r.transaction_id, r.match_status) for r in records] == [
            ("a", MatchStatus.PENDING),
            ("b", MatchStatus.PENDING),
        ]
        assert summarize(records).total_amount == Decimal("300.00")

    def test_repeated_reference_one_entry_per_payment(self):
        """Test a feed entry consumes the payment with its amount, leaving the other pending."""
        payments = [_payment(1, "100.00", "a"), _payment(1, "200.00", "b")]

        records = match(payments, [_entry(1, "200.00")])

        statuses = {r.transaction_id: r.match_status for r in records}
        assert statuses == {"b": MatchStatus.MATCHED, "a": MatchStatus.PENDING}

    def test_repeated_feed_entry_after_payments_used(self):
        """Test a second feed line for an already matched payment is not found."""
        records = match([_payment(1, "100.00")], [_entry(1, "100.00"), _entry(1, "100.00", line_number=2)])

        assert [r.match_status for r in records] == [MatchStatus.MATCHED, MatchStatus.NOT_FOUND]
        assert records[1].notes == "No unmatched payment left for this reference"

    def test_malformed_reference_skipped(self):
        """Test entries failing the rule are not looked up."""
        bad = SettlementEntry(reference_number="12345", amount=Decimal("10"), date_text="2026-10-19")
        records = match([], [bad])
        assert records == []

    def test_pluggable_rule(self):
        """Test matching with another biller's reference format."""
        rule = ReferenceRule("TELMEX", 10)
        payment = PaymentRecord(
            transaction_id="t1",
            service_code="TELMEX",
            reference_number="1234567890",
            payment_amount=Decimal("300"),
            transaction_date=datetime(2026, 10, 19),
        )
        entry = SettlementEntry(reference_number="1234567890", amount=Decimal("300"), date_text="2026-10-19")

        records = match([payment], [entry], rule=rule)

        assert records[0].match_status == MatchStatus.MATCHED

    def test_inputs_not_modified(self):
        """Test matching leaves its inputs as they were."""
        payments = [_payment(1, "10.00")]
        entries = [_entry(1, "12.00")]
        match(payments, entries)
        assert payments[0].payment_amount == Decimal("10.00")
        assert entries[0].amount == Decimal("12.00")

    def test_cancellation(self):
        """Test a set cancel event stops the run."""
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(ReconciliationCancelled):
            match([_payment(1, "10.00")], [_entry(1, "10.00")], cancel_event=cancel)


class TestPartitionReferences:
    """Test malformed reference collection."""

    def test_partition(self):
        bad = SettlementEntry(reference_number="ABC", amount=Decimal("1"), date_text="", line_number=4)
        valid, errors = partition_references([_entry(1, "1.00"), bad], settlement_file_rule())
        assert len(valid) == 1
        assert errors[0].line_number == 4


class TestSummarize:
    """Test summary aggregation."""

    def test_summary_counts_and_rate(self):
        """Test counts, amounts and match rate."""
        records = match(
            [_payment(1, "100.00"), _payment(2, "200.00"), _payment(3, "300.00")],
            [_entry(1, "100.00"), _entry(2, "205.00"), _entry(9, "50.00")],
        )

        summary = summarize(records)

        assert summary.total_transactions == 4
        assert summary.matched_transactions == 1
        assert summary.discrepancy_transactions == 1
        assert summary.not_found_transactions == 1
        assert summary.pending_transactions == 1
        assert summary.total_amount == Decimal("600.00")
        assert summary.matched_amount == Decimal("100.00")
        assert summary.discrepancy_amount == Decimal("5.00")
        assert summary.reconciliation_rate == Decimal("25")

    def test_empty_summary(self):
        """Test no records gives a zero rate."""
        summary = summarize([])
        assert summary.total_transactions == 0
        assert summary.reconciliation_rate == Decimal("0")


class TestReconcile:
    """Test the full parse, match and summarize pipeline."""

    def test_reconcile_report(self):
        """Test a feed with good lines and bad lines."""
        feed = (
            "REFERENCE|AMOUNT|DATE\n"
            f"{_ref(1)}|5000.00|2026-10-19\n"
            "12345|10.00|2026-10-19\n"
            "garbage\n"
        )

        report = reconcile(feed, [_payment(1, "5000.00"), _payment(2, "75.00")])

        assert report.summary.matched_transactions == 1
        assert report.summary.pending_transactions == 1
        assert [e.line_number for e in report.parse_errors] == [3, 4]

    def test_pending_report(self):
        """Test every payment is pending before a feed arrives."""
        report = pending_report([_payment(1, "10.00"), _payment(2, "20.00")])
        assert report.summary.pending_transactions == 2
        assert all(r.match_status == MatchStatus.PENDING for r in report.records)
