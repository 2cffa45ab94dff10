"""Import idempotency for bank-statement transactions."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from .models import BankTransaction


DedupKey = tuple[str, str, int]


def dedup_key(transaction: BankTransaction) -> DedupKey:
    """(date, reference, amount) identity of a credit line.

    Two genuine payments with the same date, reference and amount share a key
    and cannot be told apart; the second one is treated as a duplicate.
    """

    return transaction.dedup_key


@dataclass
class DuplicateFilterResult:
    new: list[BankTransaction] = field(default_factory=list)
    duplicates: list[BankTransaction] = field(default_factory=list)


class DuplicateFilter:
    def filter(
        self,
        candidates: Iterable[BankTransaction],
        already_imported: Iterable[DedupKey],
    ) -> DuplicateFilterResult:
        seen = set(already_imported)
        result = DuplicateFilterResult()

        for candidate in candidates:
            key = dedup_key(candidate)
            if key in seen:
                result.duplicates.append(candidate)
                continue
            seen.add(key)
            result.new.append(candidate)

        return result
