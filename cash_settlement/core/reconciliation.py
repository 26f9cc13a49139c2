"""
Settlement file reconciliation.

Compares payments recorded at the branch against the settlement file sent
by the biller and classifies each one.

Classification:
- Matched: reference found, amounts within one cent
- Discrepancy: reference found, amounts differ by more than one cent
- NotFound: the file names a reference we have no payment for
- Pending: we have a payment the file has not mentioned yet

Pending and NotFound are deliberately not symmetric. Pending means we are
waiting on the biller; NotFound means the biller claims something we
cannot see. Bad feed lines and malformed references are data outcomes
collected as parse errors, never a reason to abort the batch.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from .errors import MalformedReference, ParseError, ReconciliationCancelled
from .money import CENT, ZERO, format_money, to_decimal
from .references import ReferenceRule, clean_reference, settlement_file_rule
from cash_settlement.storage.models import PaymentRecord

logger = logging.getLogger(__name__)

DEFAULT_HEADER_MARKER = "REFERENCE"
MIN_FIELDS = 3


class MatchStatus(Enum):
    """Classification of one reconciled payment."""
    MATCHED = "Matched"
    PENDING = "Pending"
    DISCREPANCY = "Discrepancy"
    NOT_FOUND = "NotFound"


@dataclass(frozen=True)
class SettlementEntry:
    """One line of the external settlement feed."""
    reference_number: str
    amount: Decimal
    date_text: str
    status: Optional[str] = None
    line_number: int = 0

    @property
    def date(self) -> Optional[date]:
        """Parsed settlement date, or None if the text isn't an ISO date."""
        try:
            return date.fromisoformat(self.date_text.strip()[:10])
        except ValueError:
            return None


@dataclass(frozen=True)
class ParsedFeed:
    entries: List[SettlementEntry]
    errors: List[ParseError] = field(default_factory=list)


@dataclass(frozen=True)
class ReconciliationRecord:
    """Result of comparing one payment or feed entry. Never mutated."""
    transaction_id: Optional[str]
    reference_number: str
    payment_amount: Decimal
    transaction_date: Optional[Union[datetime, date]]
    match_status: MatchStatus
    notes: str
    external_file_amount: Optional[Decimal] = None
    discrepancy_amount: Optional[Decimal] = None


@dataclass(frozen=True)
class ReconciliationSummary:
    """Aggregates derived from a set of reconciliation records."""
    total_transactions: int
    matched_transactions: int
    pending_transactions: int
    discrepancy_transactions: int
    not_found_transactions: int
    total_amount: Decimal
    matched_amount: Decimal
    discrepancy_amount: Decimal
    reconciliation_rate: Decimal  # percent


@dataclass(frozen=True)
class ReconciliationReport:
    records: List[ReconciliationRecord]
    summary: ReconciliationSummary
    parse_errors: List[ParseError] = field(default_factory=list)


def parse_settlement_feed(
    content: Union[str, bytes],
    header_marker: str = DEFAULT_HEADER_MARKER,
) -> ParsedFeed:
    """Parse a pipe-delimited settlement feed.

    Format: REFERENCE_NUMBER|AMOUNT|DATE[|STATUS], optionally preceded by a
    header line containing header_marker. Blank lines are skipped. Lines
    with fewer than three fields or an unreadable amount are skipped and
    reported as parse errors.

    Args:
        content: Feed text, or raw bytes expected to be UTF-8
        header_marker: Substring identifying the header line

    Returns:
        ParsedFeed with the good entries and the per-line errors

    Raises:
        ParseError: If the content cannot be decoded as text at all
    """
    if isinstance(content, bytes):
        try:
            content = content.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise ParseError(f"Settlement feed is not readable text: {e}", line_number=0, line="")

    entries = []
    errors = []
    header_checked = False

    for line_number, raw_line in enumerate(content.splitlines(), start=1):
        line = raw_line.strip()
        if not line:
            continue

        # Only the first non-blank line may be a header
        if not header_checked:
            header_checked = True
            if header_marker and header_marker in line:
                continue

        parts = [part.strip() for part in line.split("|")]
        if len(parts) < MIN_FIELDS:
            errors.append(ParseError(
                f"Line {line_number}: expected at least {MIN_FIELDS} fields, got {len(parts)}",
                line_number=line_number,
                line=raw_line,
            ))
            continue

        try:
            amount = to_decimal(parts[1])
        except ValueError:
            errors.append(ParseError(
                f"Line {line_number}: invalid amount {parts[1]!r}",
                line_number=line_number,
                line=raw_line,
            ))
            continue

        entries.append(SettlementEntry(
            reference_number=parts[0],
            amount=amount,
            date_text=parts[2],
            status=parts[3] if len(parts) > 3 and parts[3] else None,
            line_number=line_number,
        ))

    return ParsedFeed(entries=entries, errors=errors)


def partition_references(
    entries: Iterable[SettlementEntry],
    rule: ReferenceRule,
) -> Tuple[List[SettlementEntry], List[ParseError]]:
    """Split feed entries into well-formed ones and malformed-reference errors."""
    valid = []
    errors = []
    for entry in entries:
        try:
            rule.validate(entry.reference_number)
        except MalformedReference as e:
            errors.append(ParseError(
                f"Line {entry.line_number}: {e}",
                line_number=entry.line_number,
                line=entry.reference_number,
            ))
            continue
        valid.append(entry)
    return valid, errors


def match(
    internal_records: Sequence[PaymentRecord],
    external_entries: Iterable[SettlementEntry],
    rule: Optional[ReferenceRule] = None,
    tolerance: Decimal = CENT,
    cancel_event: Optional[threading.Event] = None,
) -> List[ReconciliationRecord]:
    """Match feed entries against internal payments by reference number.

    Entries whose reference fails the rule are skipped before lookup (use
    partition_references to collect them). Internal payments the feed never
    mentions come back as Pending, after the feed-driven records.

    Args:
        internal_records: Payments recorded at the branch
        external_entries: Parsed settlement feed entries
        rule: Reference format rule, 30 numeric digits by default
        tolerance: Largest amount difference still counted as Matched
        cancel_event: Checked before each entry; when set, the run stops

    Returns:
        New reconciliation records

    Raises:
        ReconciliationCancelled: If cancel_event is set during the run
    """
    rule = rule or settlement_file_rule()
    # A reference can be paid more than once; each payment is consumed by at most one entry
    by_reference: Dict[str, List[int]] = {}
    for index, payment in enumerate(internal_records):
        by_reference.setdefault(clean_reference(payment.reference_number), []).append(index)
    consumed: Set[int] = set()
    records = []

    for entry in external_entries:
        if cancel_event is not None and cancel_event.is_set():
            raise ReconciliationCancelled(
                f"Reconciliation cancelled after {len(records)} entries"
            )

        try:
            reference = rule.validate(entry.reference_number)
        except MalformedReference as e:
            logger.debug("Skipping malformed reference on line %s: %s", entry.line_number, e)
            continue

        candidates = by_reference.get(reference, [])
        index = _next_unconsumed(internal_records, candidates, consumed, entry.amount, tolerance)
        if index is None:
            records.append(ReconciliationRecord(
                transaction_id=None,
                reference_number=reference,
                payment_amount=ZERO,
                transaction_date=entry.date,
                match_status=MatchStatus.NOT_FOUND,
                notes=(
                    "No unmatched payment left for this reference" if candidates
                    else "Transaction not found in system"
                ),
                external_file_amount=entry.amount,
            ))
            continue

        consumed.add(index)
        payment = internal_records[index]
        difference = abs(payment.payment_amount - entry.amount)
        if difference <= tolerance:
            records.append(ReconciliationRecord(
                transaction_id=payment.transaction_id,
                reference_number=reference,
                payment_amount=payment.payment_amount,
                transaction_date=payment.transaction_date,
                match_status=MatchStatus.MATCHED,
                notes="Transaction matched successfully",
                external_file_amount=entry.amount,
            ))
        else:
            records.append(ReconciliationRecord(
                transaction_id=payment.transaction_id,
                reference_number=reference,
                payment_amount=payment.payment_amount,
                transaction_date=payment.transaction_date,
                match_status=MatchStatus.DISCREPANCY,
                notes=(
                    f"Amount mismatch: System {format_money(payment.payment_amount)} "
                    f"vs File {format_money(entry.amount)}"
                ),
                external_file_amount=entry.amount,
                discrepancy_amount=difference,
            ))

    for index, payment in enumerate(internal_records):
        if index not in consumed:
            records.append(_pending_record(payment))

    return records


def _next_unconsumed(
    internal_records: Sequence[PaymentRecord],
    candidates: List[int],
    consumed: Set[int],
    amount: Decimal,
    tolerance: Decimal,
) -> Optional[int]:
    """Index of the first unconsumed payment, preferring one whose amount matches."""
    available = [i for i in candidates if i not in consumed]
    for index in available:
        if abs(internal_records[index].payment_amount - amount) <= tolerance:
            return index
    return available[0] if available else None


def _pending_record(payment: PaymentRecord) -> ReconciliationRecord:
    return ReconciliationRecord(
        transaction_id=payment.transaction_id,
        reference_number=clean_reference(payment.reference_number),
        payment_amount=payment.payment_amount,
        transaction_date=payment.transaction_date,
        match_status=MatchStatus.PENDING,
        notes="Awaiting settlement file reconciliation",
    )


def summarize(records: Sequence[ReconciliationRecord]) -> ReconciliationSummary:
    """Compute counts, amounts and match rate for a set of records."""
    def with_status(status: MatchStatus) -> List[ReconciliationRecord]:
        return [r for r in records if r.match_status == status]

    matched = with_status(MatchStatus.MATCHED)
    discrepancies = with_status(MatchStatus.DISCREPANCY)
    total = len(records)

    return ReconciliationSummary(
        total_transactions=total,
        matched_transactions=len(matched),
        pending_transactions=len(with_status(MatchStatus.PENDING)),
        discrepancy_transactions=len(discrepancies),
        not_found_transactions=len(with_status(MatchStatus.NOT_FOUND)),
        total_amount=sum((r.payment_amount for r in records), ZERO),
        matched_amount=sum((r.payment_amount for r in matched), ZERO),
        discrepancy_amount=sum((r.discrepancy_amount or ZERO for r in discrepancies), ZERO),
        reconciliation_rate=Decimal(len(matched)) / Decimal(total) * 100 if total else ZERO,
    )


def reconcile(
    feed: Union[str, bytes],
    internal_records: Sequence[PaymentRecord],
    rule: Optional[ReferenceRule] = None,
    header_marker: str = DEFAULT_HEADER_MARKER,
    tolerance: Decimal = CENT,
    cancel_event: Optional[threading.Event] = None,
) -> ReconciliationReport:
    """Parse a settlement feed, match it and summarize the result.

    Returns:
        ReconciliationReport listing every record and every skipped line

    Raises:
        ParseError: If the feed is not readable text
        ReconciliationCancelled: If cancel_event is set during matching
    """
    rule = rule or settlement_file_rule()
    parsed = parse_settlement_feed(feed, header_marker=header_marker)
    entries, reference_errors = partition_references(parsed.entries, rule)

    records = match(
        internal_records,
        entries,
        rule=rule,
        tolerance=tolerance,
        cancel_event=cancel_event,
    )
    summary = summarize(records)
    parse_errors = sorted(parsed.errors + reference_errors, key=lambda e: e.line_number)

    logger.info(
        "Reconciliation completed",
        extra={
            "total_transactions": summary.total_transactions,
            "matched": summary.matched_transactions,
            "discrepancies": summary.discrepancy_transactions,
            "not_found": summary.not_found_transactions,
            "pending": summary.pending_transactions,
            "parse_errors": len(parse_errors),
        },
    )
    return ReconciliationReport(records=records, summary=summary, parse_errors=parse_errors)


def pending_report(internal_records: Sequence[PaymentRecord]) -> ReconciliationReport:
    """Report every internal payment as awaiting the settlement file."""
    records = [_pending_record(p) for p in internal_records]
    return ReconciliationReport(records=records, summary=summarize(records))
