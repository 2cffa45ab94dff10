"""Single write path for contribution rows, plus ledger reads."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from .errors import NotFoundError, ValidationError
from .models import Contribution, ContributionRecord, ContributionSource
from .store import Store, UnitOfWork


logger = logging.getLogger(__name__)

_SOURCE_FIELDS = {
    ContributionSource.BANK_IMPORT: "bank_transaction_id",
    ContributionSource.ENVELOPE: "envelope_batch_id",
    ContributionSource.MANUAL: "manual",
}


class ContributionLedgerWriter:
    """Persists contributions that carry exactly one evidentiary source.

    Duplicate detection is not repeated here; the bank channel filters before
    it writes and the envelope channel is guarded by one batch per date.
    """

    def __init__(self, store: Store) -> None:
        self.store = store

    def _check(self, contribution: Contribution) -> None:
        if contribution.source_kind is None:
            raise ValidationError("Contribution source kind is required.")
        source_kind = ContributionSource(contribution.source_kind)

        if contribution.source_count != 1:
            raise ValidationError("A contribution must have exactly one source.")

        source_value = getattr(contribution, _SOURCE_FIELDS[source_kind])
        if source_value is None or source_value is False:
            raise ValidationError(
                f"{source_kind.value} contributions must reference their {_SOURCE_FIELDS[source_kind]}."
            )

        if not contribution.member_id:
            raise ValidationError("Contribution member is required.")
        if contribution.amount_cents <= 0:
            raise ValidationError("Contribution amount must be greater than zero.")
        if not contribution.transaction_ref.strip():
            raise ValidationError("Contribution transaction reference is required.")

    def write(
        self,
        uow: UnitOfWork,
        contribution: Contribution,
        *,
        register_number: int | None = None,
        now: datetime | None = None,
    ) -> int:
        self._check(contribution)
        contribution_id = self.store.insert_contribution(
            uow,
            contribution,
            created_at=now or datetime.now(timezone.utc),
            register_number=register_number,
        )
        logger.debug(
            "Wrote %s contribution %s for member %s (%s)",
            contribution.source_kind.value if contribution.source_kind else "?",
            contribution_id,
            contribution.member_id,
            contribution.amount_cents,
        )
        return contribution_id

    def add_manual_contribution(
        self,
        member_id: int,
        amount_cents: int,
        contribution_date: date,
        description: str | None,
        created_by: str,
        now: datetime | None = None,
    ) -> int:
        if self.store.get_member(member_id) is None:
            logger.warning("Member with ID %s not found", member_id)
            raise NotFoundError(f"Member {member_id} was not found.")

        created_at = now or datetime.now(timezone.utc)
        contribution = Contribution(
            member_id=member_id,
            amount_cents=amount_cents,
            contribution_date=contribution_date,
            transaction_ref=f"MANUAL-{created_at:%Y%m%d%H%M%S}",
            source_kind=ContributionSource.MANUAL,
            created_by=created_by,
            description=description,
            manual=True,
        )
        with self.store.unit_of_work() as uow:
            contribution_id = self.write(uow, contribution, now=created_at)

        logger.info(
            "One-off contribution of %s added for member %s by %s",
            amount_cents,
            member_id,
            created_by,
        )
        return contribution_id

    def soft_delete(self, contribution_id: int) -> None:
        with self.store.unit_of_work() as uow:
            self.store.soft_delete_contribution(uow, contribution_id)
        logger.info("Contribution %s marked deleted", contribution_id)

    def history(
        self,
        member_id: int,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[ContributionRecord]:
        if self.store.get_member(member_id) is None:
            raise NotFoundError(f"Member {member_id} was not found.")
        return self.store.list_contributions(
            member_id=member_id,
            start_date=start_date,
            end_date=end_date,
        )

    def member_total(
        self,
        member_id: int,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> int:
        return self.store.contribution_total(member_id, start_date, end_date)
