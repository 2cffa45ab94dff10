"""Bank-statement CSV parsing and payment-reference extraction."""

from __future__ import annotations

import hashlib
import io
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

import pandas as pd

from .errors import PartialParseError
from .models import BankTransaction, cents_from_amount


REFERENCE_MARKER = " REF "
TRAILING_TOKENS = (
    " VIA ",
    " ONLINE BANKING",
    " MOBILE APP",
    " ON ",
    " AT ",
)
MAX_REFERENCE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 500

DATE_COLUMNS = ("date", "transaction date")
DESCRIPTION_COLUMNS = ("description", "transaction description")
CREDIT_COLUMNS = ("money in", "credit amount", "credit")

DATE_FORMATS = (
    "%d/%m/%Y",
    "%d/%m/%y",
    "%Y-%m-%d",
    "%d-%m-%Y",
    "%d %b %Y",
    "%d-%b-%Y",
    "%d %B %Y",
)


def extract_reference(description: str | None, pattern: re.Pattern[str] | None = None) -> str:
    """Pull the payment reference out of a bank description.

    With a configured pattern the first match wins (group 1 when the pattern
    has a group). Otherwise the text after `` REF `` is taken, cut at the first
    trailing channel token such as `` VIA `` or `` ONLINE BANKING``.
    """

    if description is None or not description.strip():
        return ""

    if pattern is not None:
        match = pattern.search(description)
        if match is None:
            return ""
        reference = match.group(1) if match.groups() else match.group(0)
        return (reference or "").strip()[:MAX_REFERENCE_LENGTH]

    upper_description = description.upper()
    index = upper_description.find(REFERENCE_MARKER)
    if index < 0:
        return ""

    after_ref = description[index + len(REFERENCE_MARKER):].strip()
    upper_after = after_ref.upper()
    for token in TRAILING_TOKENS:
        token_index = upper_after.find(token)
        if token_index > 0:
            after_ref = after_ref[:token_index].strip()
            break

    return after_ref[:MAX_REFERENCE_LENGTH]


def _parse_date(raw: str) -> date:
    value = raw.strip()
    if not value:
        raise ValueError("date is blank")
    for date_format in DATE_FORMATS:
        try:
            return datetime.strptime(value, date_format).date()
        except ValueError:
            continue
    raise ValueError(f"date {value!r} is not a recognised date")


def _parse_credit(raw: str) -> int | None:
    value = raw.strip().replace(",", "").replace("£", "")
    if not value:
        return None
    try:
        Decimal(value)
    except InvalidOperation as exc:
        raise ValueError(f"money in {raw.strip()!r} is not a number") from exc
    return cents_from_amount(value)


def _read_csv(file_bytes: bytes, encoding: str) -> pd.DataFrame:
    return pd.read_csv(
        io.BytesIO(file_bytes),
        dtype=str,
        keep_default_na=False,
        skipinitialspace=True,
        encoding=encoding,
    )


def _read_statement(file_bytes: bytes) -> pd.DataFrame:
    # Some bank exports are cp1252 (a bare 0xA3 for the pound sign) rather than UTF-8.
    try:
        return _read_csv(file_bytes, "utf-8-sig")
    except UnicodeDecodeError:
        return _read_csv(file_bytes, "cp1252")


def _find_column(columns: dict[str, str], candidates: tuple[str, ...]) -> str | None:
    for candidate in candidates:
        if candidate in columns:
            return columns[candidate]
    return None


@dataclass
class StatementParseResult:
    source_fingerprint: str
    transactions: list[BankTransaction] = field(default_factory=list)
    total_rows: int = 0
    ignored_no_money_in: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def unreadable(self) -> bool:
        return self.total_rows == 0 and bool(self.errors)

    def raise_for_errors(self) -> None:
        if self.errors:
            raise PartialParseError(self.errors, parsed_count=len(self.transactions))


class StatementParser:
    """Turns an uploaded statement CSV into candidate credit transactions."""

    def __init__(self, reference_pattern: str | None = None) -> None:
        self.reference_pattern = re.compile(reference_pattern, re.IGNORECASE) if reference_pattern else None

    def parse(self, file_bytes: bytes) -> StatementParseResult:
        result = StatementParseResult(source_fingerprint=hashlib.sha256(file_bytes).hexdigest())

        try:
            frame = _read_statement(file_bytes)
        except pd.errors.EmptyDataError:
            result.errors.append("CSV file must contain a header row and at least one data row.")
            return result
        except (pd.errors.ParserError, UnicodeDecodeError) as exc:
            result.errors.append(f"Error reading CSV file: {exc}")
            return result

        columns = {str(name).strip().lower(): str(name) for name in frame.columns}
        date_column = _find_column(columns, DATE_COLUMNS)
        description_column = _find_column(columns, DESCRIPTION_COLUMNS)
        credit_column = _find_column(columns, CREDIT_COLUMNS)

        missing = [
            label
            for label, column in (
                ("Date", date_column),
                ("Description", description_column),
                ("Money In", credit_column),
            )
            if column is None
        ]
        if missing:
            result.errors.append(f"Missing required columns: {', '.join(missing)}")
            return result
        if frame.empty:
            result.errors.append("CSV file must contain a header row and at least one data row.")
            return result

        result.total_rows = len(frame)

        # Row numbers are 1-based file lines; the header is line 1.
        for line_number, (_, row) in enumerate(frame.iterrows(), start=2):
            description = str(row[description_column]).strip()
            try:
                amount_in_cents = _parse_credit(str(row[credit_column]))
            except ValueError as exc:
                result.errors.append(f"Row {line_number}: {exc}")
                continue

            if amount_in_cents is None or amount_in_cents <= 0:
                result.ignored_no_money_in += 1
                continue

            try:
                transaction_date = _parse_date(str(row[date_column]))
            except ValueError as exc:
                result.errors.append(f"Row {line_number}: {exc}")
                continue

            result.transactions.append(
                BankTransaction(
                    transaction_date=transaction_date,
                    description=description[:MAX_DESCRIPTION_LENGTH],
                    reference=extract_reference(description, self.reference_pattern),
                    amount_in_cents=amount_in_cents,
                    source_fingerprint=result.source_fingerprint,
                )
            )

        return result
