from __future__ import annotations

import re
from datetime import date

import pytest

from church_register.duplicates import DuplicateFilter, dedup_key
from church_register.errors import PartialParseError
from church_register.models import BankTransaction, cents_from_amount
from church_register.statement_parser import StatementParser, extract_reference


STATEMENT = (
    "Date,Description,Money In,Money Out\n"
    "08/03/2026,BANK TRANSFER REF GIFT-0042 VIA ONLINE BANKING,50.00,\n"
    "09/03/2026,CARD PAYMENT TESCO,,12.40\n"
    "10/03/2026,STANDING ORDER JONES,\"1,200.00\",\n"
    "11/03/2026,BANK TRANSFER REF BROKEN,abc,\n"
    "31/02/2026,BANK TRANSFER REF BADDATE,5.00,\n"
    "12/03/2026,INTEREST,0.00,\n"
).encode("utf-8")


@pytest.mark.parametrize(
    ("description", "expected"),
    [
        ("BANK TRANSFER REF GIFT-0042 VIA ONLINE BANKING", "GIFT-0042"),
        ("faster payment ref tithe smith on 08 mar", "tithe smith"),
        ("BANK TRANSFER REF J SMITH MOBILE APP", "J SMITH"),
        ("CARD PAYMENT TESCO", ""),
        ("", ""),
    ],
)
def test_extract_reference(description: str, expected: str) -> None:
    assert extract_reference(description) == expected


def test_extract_reference_with_configured_pattern() -> None:
    pattern = re.compile(r"\bCR-(\d{4})\b", re.IGNORECASE)

    assert extract_reference("GIRO CR-0031 THANKS", pattern) == "0031"
    assert extract_reference("GIRO NO CODE", pattern) == ""


def test_extract_reference_truncates_long_references() -> None:
    reference = extract_reference("TRANSFER REF " + "X" * 150)
    assert len(reference) == 100


def test_parse_keeps_good_rows_and_reports_bad_ones() -> None:
    result = StatementParser().parse(STATEMENT)

    assert result.total_rows == 6
    assert result.ignored_no_money_in == 2
    assert [tx.amount_in_cents for tx in result.transactions] == [5000, 120000]
    assert result.transactions[0].transaction_date == date(2026, 3, 8)
    assert result.transactions[0].reference == "GIFT-0042"
    assert result.transactions[1].reference == ""
    assert len(result.errors) == 2
    assert result.errors[0].startswith("Row 5:")
    assert result.errors[1].startswith("Row 6:")
    assert result.unreadable is False

    with pytest.raises(PartialParseError) as excinfo:
        result.raise_for_errors()
    assert excinfo.value.parsed_count == 2


def test_parse_accepts_alternate_headers_and_iso_dates() -> None:
    content = (
        "Transaction Date,Transaction Description,Credit Amount\n"
        "2026-03-15,PAYMENT REF ABC ON 15 MAR,10.5\n"
    ).encode("utf-8")

    result = StatementParser().parse(content)

    assert result.errors == []
    assert result.transactions[0].transaction_date == date(2026, 3, 15)
    assert result.transactions[0].amount_in_cents == 1050
    assert result.transactions[0].reference == "ABC"


def test_parse_reports_missing_columns() -> None:
    result = StatementParser().parse(b"Date,Details\n08/03/2026,Something\n")

    assert result.transactions == []
    assert result.total_rows == 0
    assert result.errors == ["Missing required columns: Description, Money In"]
    assert result.unreadable is True


def test_parse_reports_empty_file() -> None:
    result = StatementParser().parse(b"")

    assert result.unreadable is True


def test_fingerprint_is_stable_per_file() -> None:
    parser = StatementParser()

    first = parser.parse(STATEMENT)
    second = parser.parse(STATEMENT)

    assert first.source_fingerprint == second.source_fingerprint
    assert all(tx.source_fingerprint == first.source_fingerprint for tx in first.transactions)


def _transaction(day: int, reference: str, cents: int) -> BankTransaction:
    return BankTransaction(
        transaction_date=date(2026, 3, day),
        description=f"TRANSFER REF {reference}",
        reference=reference,
        amount_in_cents=cents,
    )


def test_duplicate_filter_uses_date_reference_and_amount() -> None:
    existing = _transaction(8, "GIFT-1", 5000)
    candidates = [
        _transaction(8, "GIFT-1", 5000),
        _transaction(8, "GIFT-1", 5001),
        _transaction(9, "GIFT-1", 5000),
        _transaction(8, "GIFT-2", 5000),
    ]

    result = DuplicateFilter().filter(candidates, {dedup_key(existing)})

    assert result.duplicates == [candidates[0]]
    assert result.new == candidates[1:]


def test_duplicate_filter_collapses_repeats_within_one_upload() -> None:
    first = _transaction(8, "SO-7", 2500)
    second = _transaction(8, "SO-7", 2500)

    result = DuplicateFilter().filter([first, second], set())

    assert result.new == [first]
    assert result.duplicates == [second]


def test_oversized_amounts_are_row_errors() -> None:
    content = (
        "Date,Description,Money In\n"
        "08/03/2026,TRANSFER REF GOOD,10.00\n"
        "09/03/2026,TRANSFER REF HUGE,1E30\n"
        "10/03/2026,TRANSFER REF WIDE,123456789012345678901234.00\n"
    ).encode("utf-8")

    result = StatementParser().parse(content)

    assert [tx.reference for tx in result.transactions] == ["GOOD"]
    assert len(result.errors) == 2
    assert result.errors[0].startswith("Row 3:")
    assert result.errors[1].startswith("Row 4:")


@pytest.mark.parametrize("amount", ["1E30", str(2**63), "-" + str(2**63)])
def test_cents_from_amount_rejects_values_that_do_not_fit(amount: str) -> None:
    with pytest.raises(ValueError):
        cents_from_amount(amount)


def test_parse_reads_cp1252_exports() -> None:
    content = (
        "Date,Description,Money In\n"
        "08/03/2026,GIFT REF CHOIR £ FUND,£25.00\n"
    ).encode("cp1252")

    result = StatementParser().parse(content)

    assert result.errors == []
    assert result.transactions[0].reference == "CHOIR £ FUND"
    assert result.transactions[0].amount_in_cents == 2500
