"""Sunday envelope collections: validate, then commit the whole batch or nothing."""

from __future__ import annotations

import logging
import sqlite3
from collections import Counter
from collections.abc import Sequence
from datetime import date, datetime, timezone

from .errors import ConflictError, EntryError, NotFoundError, ValidationError
from .ledger import ContributionLedgerWriter
from .models import (
    BatchDetails,
    BatchPage,
    BatchStatus,
    BatchSummary,
    Contribution,
    ContributionSource,
    EnvelopeBatchResult,
    EnvelopeEntry,
    ProcessedEnvelope,
    RegisterNumberValidation,
    ValidationReason,
    is_sunday,
)
from .register_numbers import RegisterNumberAllocator
from .store import Store


logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100

_REASON_MESSAGES = {
    ValidationReason.NOT_FOUND: "Register number not found for {year}",
    ValidationReason.MEMBER_INACTIVE: "Member is not active",
}


def _summary_from_row(row: sqlite3.Row) -> BatchSummary:
    return BatchSummary(
        batch_id=row["id"],
        collection_date=date.fromisoformat(row["collection_date"]),
        total_amount_cents=row["total_amount_cents"],
        envelope_count=row["envelope_count"],
        status=BatchStatus(row["status"]),
        submitted_by=row["submitted_by"],
        submitted_at=datetime.fromisoformat(row["created_at"]) if row["created_at"] else None,
    )


class EnvelopeBatchProcessor:
    def __init__(
        self,
        store: Store,
        allocator: RegisterNumberAllocator | None = None,
        writer: ContributionLedgerWriter | None = None,
    ) -> None:
        self.store = store
        self.allocator = allocator or RegisterNumberAllocator(store)
        self.writer = writer or ContributionLedgerWriter(store)

    def _validate_entries(
        self,
        entries: Sequence[EnvelopeEntry],
        year: int,
    ) -> tuple[dict[int, RegisterNumberValidation], list[EntryError]]:
        errors: list[EntryError] = []
        resolved: dict[int, RegisterNumberValidation] = {}

        counts = Counter(entry.register_number for entry in entries)
        for register_number, count in sorted(counts.items()):
            if count > 1:
                errors.append(EntryError(register_number, f"Appears {count} times in the batch"))

        for entry in entries:
            if entry.amount_cents <= 0:
                errors.append(EntryError(entry.register_number, "Amount must be greater than zero"))

            if entry.register_number in resolved:
                continue
            validation = self.allocator.validate(entry.register_number, year)
            resolved[entry.register_number] = validation
            if not validation.valid:
                reason = validation.reason or ValidationReason.NOT_FOUND
                errors.append(
                    EntryError(
                        entry.register_number,
                        _REASON_MESSAGES[reason].format(year=year),
                    )
                )

        return resolved, errors

    def submit_batch(
        self,
        collection_date: date,
        entries: Sequence[EnvelopeEntry],
        submitted_by: str,
        now: datetime | None = None,
    ) -> EnvelopeBatchResult:
        logger.info(
            "Submitting envelope batch for %s with %s envelopes",
            collection_date,
            len(entries),
        )

        if not is_sunday(collection_date):
            raise ValidationError("Collection date must be a Sunday.")
        if not entries:
            raise ValidationError("An envelope batch needs at least one entry.")

        if self.store.batch_exists(collection_date):
            raise ConflictError(
                f"Contributions for Sunday {collection_date:%d %B %Y} have already been submitted."
            )

        resolved, errors = self._validate_entries(entries, collection_date.year)
        if errors:
            logger.warning(
                "Rejected envelope batch for %s: %s invalid entries",
                collection_date,
                len(errors),
            )
            raise ValidationError("Envelope batch has invalid entries", errors=errors)

        created_at = now or datetime.now(timezone.utc)
        total_amount_cents = sum(entry.amount_cents for entry in entries)
        envelope_count = len(entries)
        processed: list[ProcessedEnvelope] = []

        with self.store.unit_of_work() as uow:
            batch_id = self.store.insert_envelope_batch(
                uow,
                collection_date=collection_date,
                total_amount_cents=total_amount_cents,
                envelope_count=envelope_count,
                submitted_by=submitted_by,
                created_at=created_at,
            )

            for entry in entries:
                validation = resolved[entry.register_number]
                member_id = validation.member_id
                if member_id is None:
                    raise RuntimeError(f"Register number {entry.register_number} lost its member.")

                contribution_id = self.writer.write(
                    uow,
                    Contribution(
                        member_id=member_id,
                        amount_cents=entry.amount_cents,
                        contribution_date=collection_date,
                        transaction_ref=f"ENV-{batch_id}-{entry.register_number}",
                        source_kind=ContributionSource.ENVELOPE,
                        created_by=submitted_by,
                        description=f"Envelope contribution - Sunday {collection_date:%d/%m/%Y}",
                        envelope_batch_id=batch_id,
                    ),
                    register_number=entry.register_number,
                    now=created_at,
                )
                processed.append(
                    ProcessedEnvelope(
                        register_number=entry.register_number,
                        member_id=member_id,
                        member_name=validation.member_name or "",
                        amount_cents=entry.amount_cents,
                        contribution_id=contribution_id,
                    )
                )

        logger.info(
            "Submitted batch %s with %s contributions totalling %s",
            batch_id,
            len(processed),
            total_amount_cents,
        )
        return EnvelopeBatchResult(
            batch_id=batch_id,
            collection_date=collection_date,
            total_amount_cents=total_amount_cents,
            envelope_count=envelope_count,
            status=BatchStatus.SUBMITTED,
            processed=processed,
        )

    def list_batches(
        self,
        start_date: date | None = None,
        end_date: date | None = None,
        page_number: int = 1,
        page_size: int = 20,
    ) -> BatchPage:
        if page_number < 1:
            raise ValidationError("Page number must be 1 or greater.")
        if page_size < 1 or page_size > MAX_PAGE_SIZE:
            raise ValidationError(f"Page size must be between 1 and {MAX_PAGE_SIZE}.")

        rows, total_count = self.store.list_batches(
            start_date=start_date,
            end_date=end_date,
            limit=page_size,
            offset=(page_number - 1) * page_size,
        )
        return BatchPage(
            batches=[_summary_from_row(row) for row in rows],
            total_count=total_count,
            page_number=page_number,
            page_size=page_size,
        )

    def get_batch(self, batch_id: int) -> BatchDetails:
        row = self.store.get_batch(batch_id)
        if row is None:
            raise NotFoundError(f"Batch {batch_id} was not found.")

        envelopes = [
            ProcessedEnvelope(
                register_number=line["register_number"],
                member_id=line["member_id"],
                member_name=f"{line['first_name']} {line['last_name']}".strip(),
                amount_cents=line["amount_cents"],
                contribution_id=line["id"],
            )
            for line in self.store.batch_lines(batch_id)
        ]
        return BatchDetails(summary=_summary_from_row(row), envelopes=envelopes)
