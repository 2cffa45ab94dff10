"""Yearly register-number allocation and lookup."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from .errors import ConflictError, ValidationError
from .models import (
    GenerationStatus,
    Member,
    MemberDirectory,
    MemberStatus,
    PreviewRow,
    RegisterNumberAssignment,
    RegisterNumberCommitResult,
    RegisterNumberPreview,
    RegisterNumberValidation,
    ValidationReason,
)
from .store import Store


logger = logging.getLogger(__name__)

COMMIT_PREVIEW_SIZE = 10


def _allocation_order(member: Member) -> tuple[int, date, int]:
    # Members with no join date go after everyone who has one.
    if member.member_since is None:
        return (1, date.max, member.id)
    return (0, member.member_since, member.id)


def allocate(members: list[Member], year: int) -> list[RegisterNumberAssignment]:
    """Number active members 1..N, earliest joiners first."""

    ordered = sorted(
        (member for member in members if member.is_active),
        key=_allocation_order,
    )
    return [
        RegisterNumberAssignment(member_id=member.id, year=year, number=index)
        for index, member in enumerate(ordered, start=1)
    ]


class RegisterNumberAllocator:
    """Generates, commits and validates per-year register numbers."""

    def __init__(self, store: Store, directory: MemberDirectory | None = None) -> None:
        self.store = store
        self.directory: MemberDirectory = directory or store

    def _check_year(self, year: int, current_year: int) -> None:
        if year < current_year:
            raise ValidationError(
                f"Cannot generate register numbers for {year}; only {current_year} or later is allowed."
            )

    def _preview_rows(
        self,
        members: list[Member],
        assignments: list[RegisterNumberAssignment],
        current_numbers: dict[int, int],
    ) -> list[PreviewRow]:
        members_by_id = {member.id: member for member in members}
        rows: list[PreviewRow] = []
        for assignment in assignments:
            member = members_by_id[assignment.member_id]
            rows.append(
                PreviewRow(
                    member_id=member.id,
                    member_name=member.display_name,
                    member_since=member.member_since,
                    candidate_number=assignment.number,
                    current_number=current_numbers.get(member.id),
                )
            )
        return rows

    def generate_preview(
        self,
        year: int,
        *,
        current_year: int,
        regenerate: bool = False,
    ) -> RegisterNumberPreview:
        """Show the numbers a commit would assign, without writing anything.

        A year that already has numbers is rejected unless ``regenerate`` is set;
        even then the preview is informational only and ``commit`` still refuses
        to overwrite.
        """

        logger.info("Previewing register numbers for %s", year)
        self._check_year(year, current_year)

        already_generated = self.store.has_register_numbers(year)
        if already_generated and not regenerate:
            raise ValidationError(f"Register numbers for {year} have already been generated.")

        members = self.directory.get_active_members()
        assignments = allocate(members, year)
        current_numbers = self.store.register_numbers_for_year(current_year)

        return RegisterNumberPreview(
            year=year,
            total_active_members=len(assignments),
            already_generated=already_generated,
            rows=self._preview_rows(members, assignments, current_numbers),
        )

    def commit(
        self,
        year: int,
        confirmed_by: str,
        *,
        current_year: int,
        now: datetime | None = None,
    ) -> RegisterNumberCommitResult:
        logger.info("Generating register numbers for %s", year)
        self._check_year(year, current_year)
        if not confirmed_by or not confirmed_by.strip():
            raise ValidationError("The confirming user is required.")

        generated_at = now or datetime.now(timezone.utc)

        with self.store.unit_of_work() as uow:
            if self.store.has_register_numbers(year, uow=uow):
                raise ConflictError(f"Register numbers for {year} have already been generated.")

            # Read under the write lock.
            members = self.directory.get_active_members()
            assignments = allocate(members, year)
            if not assignments:
                logger.warning("No active members found for register number generation")
                raise ValidationError("No active members to assign register numbers.")

            assigned_count = self.store.insert_register_numbers(
                uow,
                assignments,
                created_by=confirmed_by.strip(),
                created_at=generated_at,
            )

        logger.info("Generated %s register numbers for %s", assigned_count, year)
        preview = self._preview_rows(members, assignments[:COMMIT_PREVIEW_SIZE], {})
        return RegisterNumberCommitResult(
            year=year,
            assigned_count=assigned_count,
            confirmed_by=confirmed_by.strip(),
            generated_at=generated_at,
            preview=preview,
        )

    def validate(self, number: int, year: int) -> RegisterNumberValidation:
        row = self.store.find_register_number(number, year)
        if row is None:
            return RegisterNumberValidation(
                register_number=number,
                year=year,
                valid=False,
                reason=ValidationReason.NOT_FOUND,
            )

        member_name = f"{row['first_name']} {row['last_name']}".strip()
        active = MemberStatus(row["status"]) is MemberStatus.ACTIVE
        return RegisterNumberValidation(
            register_number=number,
            year=year,
            valid=active,
            member_id=row["member_id"],
            member_name=member_name,
            member_active=active,
            reason=None if active else ValidationReason.MEMBER_INACTIVE,
        )

    def generation_status(self, year: int) -> GenerationStatus:
        stats = self.store.register_number_stats(year)
        count = int(stats["count"])
        if count == 0:
            return GenerationStatus(year=year, is_generated=False, total_assignments=0)
        return GenerationStatus(
            year=year,
            is_generated=True,
            total_assignments=count,
            generated_by=stats["generated_by"],
            generated_at=datetime.fromisoformat(stats["generated_at"]),
        )

    def next_available_number(self, year: int) -> int:
        stats = self.store.register_number_stats(year)
        return int(stats["max_number"] or 0) + 1
