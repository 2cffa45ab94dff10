"""Domain records shared by the allocator, parser, ledger and batch processor."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Protocol


MAX_AMOUNT_CENTS = 2**63 - 1


class MemberStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


class ContributionSource(str, Enum):
    BANK_IMPORT = "BankImport"
    ENVELOPE = "Envelope"
    MANUAL = "Manual"


class BatchStatus(str, Enum):
    SUBMITTED = "Submitted"


class ValidationReason(str, Enum):
    NOT_FOUND = "NotFound"
    MEMBER_INACTIVE = "MemberInactive"


def cents_from_amount(amount: Decimal | float | int | str) -> int:
    """Convert a decimal amount (pounds) to integer pence, rounding half up."""

    try:
        value = Decimal(str(amount).strip())
    except InvalidOperation as exc:
        raise ValueError(f"Amount {amount!r} is not a number.") from exc
    if not value.is_finite():
        raise ValueError(f"Amount {amount!r} is not a number.")
    try:
        cents = int(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP) * 100)
    except InvalidOperation as exc:
        raise ValueError(f"Amount {amount!r} is too large.") from exc
    # Stored in a SQLite INTEGER column.
    if abs(cents) > MAX_AMOUNT_CENTS:
        raise ValueError(f"Amount {amount!r} is too large.")
    return cents


def amount_from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(Decimal("0.01"))


def format_currency(cents: int) -> str:
    return f"£{amount_from_cents(cents):,.2f}"


def is_sunday(value: date) -> bool:
    return value.weekday() == 6


@dataclass(frozen=True)
class Member:
    id: int
    first_name: str
    last_name: str
    member_since: date | None
    status: MemberStatus
    bank_reference: str | None = None

    @property
    def display_name(self) -> str:
        full_name = f"{self.first_name} {self.last_name}".strip()
        return full_name or f"Member #{self.id}"

    @property
    def is_active(self) -> bool:
        return self.status is MemberStatus.ACTIVE


class MemberDirectory(Protocol):
    def get_active_members(self) -> list[Member]: ...


@dataclass(frozen=True)
class RegisterNumberAssignment:
    member_id: int
    year: int
    number: int


@dataclass(frozen=True)
class BankTransaction:
    transaction_date: date
    description: str
    reference: str
    amount_in_cents: int
    source_fingerprint: str = ""
    id: int | None = None

    @property
    def dedup_key(self) -> tuple[str, str, int]:
        return (self.transaction_date.isoformat(), self.reference.strip(), self.amount_in_cents)


@dataclass(frozen=True)
class EnvelopeEntry:
    register_number: int
    amount_cents: int


@dataclass(frozen=True)
class Contribution:
    """A single ledger row. Exactly one evidentiary source must be set."""

    member_id: int
    amount_cents: int
    contribution_date: date
    transaction_ref: str
    source_kind: ContributionSource | None
    created_by: str
    description: str | None = None
    bank_transaction_id: int | None = None
    envelope_batch_id: int | None = None
    manual: bool = False

    @property
    def source_count(self) -> int:
        return sum(
            (
                self.bank_transaction_id is not None,
                self.envelope_batch_id is not None,
                self.manual,
            )
        )


@dataclass(frozen=True)
class ContributionRecord:
    id: int
    member_id: int
    amount_cents: int
    contribution_date: date
    transaction_ref: str
    source_kind: ContributionSource
    description: str | None
    created_by: str
    created_at: datetime | None


@dataclass(frozen=True)
class PreviewRow:
    member_id: int
    member_name: str
    member_since: date | None
    candidate_number: int
    current_number: int | None = None


@dataclass(frozen=True)
class RegisterNumberPreview:
    year: int
    total_active_members: int
    already_generated: bool
    rows: list[PreviewRow] = field(default_factory=list)


@dataclass(frozen=True)
class RegisterNumberCommitResult:
    year: int
    assigned_count: int
    confirmed_by: str
    generated_at: datetime
    preview: list[PreviewRow] = field(default_factory=list)


@dataclass(frozen=True)
class RegisterNumberValidation:
    register_number: int
    year: int
    valid: bool
    member_id: int | None = None
    member_name: str | None = None
    member_active: bool | None = None
    reason: ValidationReason | None = None


@dataclass(frozen=True)
class GenerationStatus:
    year: int
    is_generated: bool
    total_assignments: int
    generated_by: str | None = None
    generated_at: datetime | None = None


@dataclass(frozen=True)
class ProcessedEnvelope:
    register_number: int
    member_id: int
    member_name: str
    amount_cents: int
    contribution_id: int


@dataclass(frozen=True)
class EnvelopeBatchResult:
    batch_id: int
    collection_date: date
    total_amount_cents: int
    envelope_count: int
    status: BatchStatus
    processed: list[ProcessedEnvelope] = field(default_factory=list)


@dataclass(frozen=True)
class BatchSummary:
    batch_id: int
    collection_date: date
    total_amount_cents: int
    envelope_count: int
    status: BatchStatus
    submitted_by: str
    submitted_at: datetime | None


@dataclass(frozen=True)
class BatchPage:
    batches: list[BatchSummary]
    total_count: int
    page_number: int
    page_size: int


@dataclass(frozen=True)
class BatchDetails:
    summary: BatchSummary
    envelopes: list[ProcessedEnvelope] = field(default_factory=list)


@dataclass(frozen=True)
class MatchedTransaction:
    transaction_id: int
    member_id: int
    contribution_id: int
    reference: str
    amount_in_cents: int


@dataclass
class ImportResult:
    total_rows: int = 0
    total_candidates: int = 0
    new_transactions: int = 0
    duplicates_skipped: int = 0
    ignored_no_money_in: int = 0
    errors: list[str] = field(default_factory=list)
    matched: list[MatchedTransaction] = field(default_factory=list)
    unmatched: list[BankTransaction] = field(default_factory=list)
