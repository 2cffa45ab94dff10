"""Bank channel: parse a statement, skip known lines, persist and credit members."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from .config import DEFAULT_MAX_STATEMENT_BYTES
from .duplicates import DuplicateFilter
from .errors import ValidationError
from .ledger import ContributionLedgerWriter
from .models import (
    BankTransaction,
    Contribution,
    ContributionSource,
    ImportResult,
    MatchedTransaction,
)
from .statement_parser import StatementParser
from .store import Store, UnitOfWork


logger = logging.getLogger(__name__)


def validate_upload(filename: str, size: int, max_bytes: int = DEFAULT_MAX_STATEMENT_BYTES) -> None:
    if not filename or not filename.strip():
        raise ValidationError("No file uploaded.")
    if not filename.strip().lower().endswith(".csv"):
        raise ValidationError("Only CSV files are accepted.")
    if size > max_bytes:
        raise ValidationError(f"File size must not exceed {max_bytes // (1024 * 1024)} MB.")


class BankImportService:
    def __init__(
        self,
        store: Store,
        parser: StatementParser | None = None,
        duplicate_filter: DuplicateFilter | None = None,
        writer: ContributionLedgerWriter | None = None,
        max_statement_bytes: int = DEFAULT_MAX_STATEMENT_BYTES,
    ) -> None:
        self.store = store
        self.parser = parser or StatementParser()
        self.duplicate_filter = duplicate_filter or DuplicateFilter()
        self.writer = writer or ContributionLedgerWriter(store)
        self.max_statement_bytes = max_statement_bytes

    def import_statement(
        self,
        file_bytes: bytes,
        filename: str,
        uploaded_by: str,
        now: datetime | None = None,
    ) -> ImportResult:
        logger.info("Processing bank statement upload: %s", filename)
        validate_upload(filename, len(file_bytes), self.max_statement_bytes)

        parsed = self.parser.parse(file_bytes)
        if parsed.unreadable:
            raise ValidationError(f"Failed to parse {filename}: {'; '.join(parsed.errors)}")
        for error in parsed.errors:
            logger.warning("Skipped statement row in %s: %s", filename, error)

        result = ImportResult(
            total_rows=parsed.total_rows,
            total_candidates=len(parsed.transactions),
            ignored_no_money_in=parsed.ignored_no_money_in,
            errors=list(parsed.errors),
        )
        created_at = now or datetime.now(timezone.utc)

        with self.store.unit_of_work() as uow:
            filtered = self.duplicate_filter.filter(
                parsed.transactions,
                self.store.active_transaction_keys(uow),
            )
            result.duplicates_skipped = len(filtered.duplicates)

            persisted: list[BankTransaction] = []
            for transaction in filtered.new:
                transaction_id = self.store.insert_bank_transaction(
                    uow,
                    transaction,
                    uploaded_by=uploaded_by,
                    created_at=created_at,
                )
                persisted.append(
                    BankTransaction(
                        id=transaction_id,
                        transaction_date=transaction.transaction_date,
                        description=transaction.description,
                        reference=transaction.reference,
                        amount_in_cents=transaction.amount_in_cents,
                        source_fingerprint=transaction.source_fingerprint,
                    )
                )
            result.new_transactions = len(persisted)

            result.matched, result.unmatched = self._match(uow, persisted, uploaded_by, created_at)

        logger.info(
            "Imported %s: %s new, %s duplicates skipped, %s matched, %s unmatched",
            filename,
            result.new_transactions,
            result.duplicates_skipped,
            len(result.matched),
            len(result.unmatched),
        )
        return result

    def reprocess_unmatched(self, processed_by: str, now: datetime | None = None) -> ImportResult:
        """Retry member matching for every unprocessed transaction."""

        created_at = now or datetime.now(timezone.utc)
        result = ImportResult()
        with self.store.unit_of_work() as uow:
            pending = self.store.unprocessed_bank_transactions(uow)
            result.total_candidates = len(pending)
            result.matched, result.unmatched = self._match(uow, pending, processed_by, created_at)

        logger.info(
            "Reprocessed %s pending transactions: %s matched",
            result.total_candidates,
            len(result.matched),
        )
        return result

    def delete_transaction(self, transaction_id: int) -> None:
        with self.store.unit_of_work() as uow:
            self.store.soft_delete_bank_transaction(uow, transaction_id)
        logger.info("Bank transaction %s marked deleted", transaction_id)

    def _match(
        self,
        uow: UnitOfWork,
        transactions: list[BankTransaction],
        created_by: str,
        created_at: datetime,
    ) -> tuple[list[MatchedTransaction], list[BankTransaction]]:
        members_by_reference = self.store.members_by_bank_reference(uow)
        matched: list[MatchedTransaction] = []
        unmatched: list[BankTransaction] = []

        for transaction in transactions:
            if transaction.id is None:
                raise RuntimeError("Only persisted transactions can be matched.")

            reference = transaction.reference.strip().lower()
            candidates = members_by_reference.get(reference, []) if reference else []
            if len(candidates) != 1:
                if len(candidates) > 1:
                    logger.warning(
                        "Reference %r matches %s members; leaving transaction %s unmatched",
                        transaction.reference,
                        len(candidates),
                        transaction.id,
                    )
                else:
                    logger.debug("No match found for reference: %r", transaction.reference)
                unmatched.append(transaction)
                continue

            member_id = candidates[0]
            contribution_id = self.writer.write(
                uow,
                Contribution(
                    member_id=member_id,
                    amount_cents=transaction.amount_in_cents,
                    contribution_date=transaction.transaction_date,
                    transaction_ref=transaction.reference,
                    source_kind=ContributionSource.BANK_IMPORT,
                    created_by=created_by,
                    description=transaction.description,
                    bank_transaction_id=transaction.id,
                ),
                now=created_at,
            )
            self.store.mark_transaction_processed(uow, transaction.id)
            matched.append(
                MatchedTransaction(
                    transaction_id=transaction.id,
                    member_id=member_id,
                    contribution_id=contribution_id,
                    reference=transaction.reference,
                    amount_in_cents=transaction.amount_in_cents,
                )
            )
            logger.debug(
                "Matched transaction %s with member %s for %s",
                transaction.id,
                member_id,
                transaction.amount_in_cents,
            )

        return matched, unmatched
