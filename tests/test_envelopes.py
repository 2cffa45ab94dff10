from __future__ import annotations

from datetime import date

import pytest

from church_register.envelopes import EnvelopeBatchProcessor
from church_register.errors import ConflictError, NotFoundError, ValidationError
from church_register.models import (
    BatchStatus,
    ContributionSource,
    EnvelopeEntry,
    MemberStatus,
    cents_from_amount,
)
from church_register.register_numbers import RegisterNumberAllocator
from church_register.store import Store


SUNDAY = date(2026, 3, 8)


def _build_store(tmp_path) -> Store:  # type: ignore[no-untyped-def]
    db_path = tmp_path / "envelopes_test.db"
    store = Store(db_path)
    store.init_db()
    return store


def _prepared_processor(store: Store) -> tuple[EnvelopeBatchProcessor, dict[str, int]]:
    members = {
        "A": store.add_member("Avery", "Mills", date(2020, 1, 1)),
        "B": store.add_member("Blake", "Owens", date(2021, 6, 1)),
        "C": store.add_member("Casey", "Reid", date(2019, 3, 1)),
    }
    allocator = RegisterNumberAllocator(store)
    allocator.commit(2026, "treasurer", current_year=2026)
    return EnvelopeBatchProcessor(store, allocator=allocator), members


def test_submit_batch_creates_envelope_contributions(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)
    processor, members = _prepared_processor(store)

    result = processor.submit_batch(
        SUNDAY,
        [
            EnvelopeEntry(register_number=1, amount_cents=cents_from_amount("20.00")),
            EnvelopeEntry(register_number=2, amount_cents=cents_from_amount("15.50")),
        ],
        submitted_by="steward",
    )

    assert result.total_amount_cents == 3550
    assert result.envelope_count == 2
    assert result.status is BatchStatus.SUBMITTED
    assert [(item.register_number, item.member_id) for item in result.processed] == [
        (1, members["C"]),
        (2, members["A"]),
    ]

    contributions = store.list_contributions(source_kind=ContributionSource.ENVELOPE)
    assert len(contributions) == 2
    assert {c.transaction_ref for c in contributions} == {
        f"ENV-{result.batch_id}-1",
        f"ENV-{result.batch_id}-2",
    }
    assert all(c.contribution_date == SUNDAY for c in contributions)


def test_resubmitting_a_sunday_conflicts(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)
    processor, _ = _prepared_processor(store)
    entries = [EnvelopeEntry(register_number=1, amount_cents=2000)]
    processor.submit_batch(SUNDAY, entries, submitted_by="steward")

    with pytest.raises(ConflictError):
        processor.submit_batch(SUNDAY, entries, submitted_by="steward")

    assert store.count_rows("envelope_batches") == 1
    assert store.count_rows("contributions") == 1


def test_invalid_entry_rejects_the_whole_batch(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)
    processor, members = _prepared_processor(store)
    store.set_member_status(members["B"], MemberStatus.INACTIVE)

    with pytest.raises(ValidationError) as excinfo:
        processor.submit_batch(
            SUNDAY,
            [
                EnvelopeEntry(register_number=1, amount_cents=2000),
                EnvelopeEntry(register_number=3, amount_cents=1000),
                EnvelopeEntry(register_number=42, amount_cents=500),
            ],
            submitted_by="steward",
        )

    assert [error.register_number for error in excinfo.value.errors] == [3, 42]
    assert "#42" in str(excinfo.value)
    assert store.count_rows("envelope_batches") == 0
    assert store.count_rows("contributions") == 0


@pytest.mark.parametrize(
    "entries",
    [
        [EnvelopeEntry(register_number=1, amount_cents=0)],
        [
            EnvelopeEntry(register_number=1, amount_cents=500),
            EnvelopeEntry(register_number=1, amount_cents=700),
        ],
    ],
)
def test_bad_amounts_and_repeated_numbers_are_rejected(tmp_path, entries) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)
    processor, _ = _prepared_processor(store)

    with pytest.raises(ValidationError):
        processor.submit_batch(SUNDAY, entries, submitted_by="steward")

    assert store.count_rows("contributions") == 0


def test_non_sunday_and_empty_batches_are_rejected(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)
    processor, _ = _prepared_processor(store)

    with pytest.raises(ValidationError):
        processor.submit_batch(
            date(2026, 3, 9),
            [EnvelopeEntry(register_number=1, amount_cents=2000)],
            submitted_by="steward",
        )

    with pytest.raises(ValidationError):
        processor.submit_batch(SUNDAY, [], submitted_by="steward")


def test_register_numbers_resolve_against_the_collection_year(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)
    processor, _ = _prepared_processor(store)

    with pytest.raises(ValidationError):
        processor.submit_batch(
            date(2027, 1, 3),
            [EnvelopeEntry(register_number=1, amount_cents=2000)],
            submitted_by="steward",
        )


def test_batch_list_and_details(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)
    processor, members = _prepared_processor(store)
    first = processor.submit_batch(
        SUNDAY,
        [EnvelopeEntry(register_number=3, amount_cents=1250)],
        submitted_by="steward",
    )
    second = processor.submit_batch(
        date(2026, 3, 15),
        [
            EnvelopeEntry(register_number=1, amount_cents=1000),
            EnvelopeEntry(register_number=2, amount_cents=400),
        ],
        submitted_by="steward",
    )

    page = processor.list_batches(page_number=1, page_size=1)
    assert page.total_count == 2
    assert [batch.batch_id for batch in page.batches] == [second.batch_id]

    march_8_only = processor.list_batches(end_date=date(2026, 3, 10))
    assert [batch.batch_id for batch in march_8_only.batches] == [first.batch_id]

    details = processor.get_batch(second.batch_id)
    assert details.summary.total_amount_cents == 1400
    assert [(line.register_number, line.member_id) for line in details.envelopes] == [
        (1, members["C"]),
        (2, members["A"]),
    ]

    with pytest.raises(NotFoundError):
        processor.get_batch(999)

    with pytest.raises(ValidationError):
        processor.list_batches(page_number=0)


def test_unique_collection_date_reports_concurrent_submit_as_conflict(tmp_path, monkeypatch) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)
    processor, _ = _prepared_processor(store)
    processor.submit_batch(
        SUNDAY,
        [EnvelopeEntry(register_number=1, amount_cents=2000)],
        submitted_by="steward",
    )

    # Another steward submitted the same Sunday after the pre-check.
    monkeypatch.setattr(store, "batch_exists", lambda collection_date, uow=None: False)

    with pytest.raises(ConflictError):
        processor.submit_batch(
            SUNDAY,
            [
                EnvelopeEntry(register_number=2, amount_cents=500),
                EnvelopeEntry(register_number=3, amount_cents=700),
            ],
            submitted_by="second-steward",
        )

    assert store.count_rows("envelope_batches") == 1
    assert store.count_rows("contributions") == 1
