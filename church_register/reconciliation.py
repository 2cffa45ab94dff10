"""Operator-facing summaries of a single statement import."""

from __future__ import annotations

from dataclasses import dataclass, field

import pandas as pd

from .models import ImportResult, format_currency


EMPTY_REFERENCE = "[EMPTY]"


@dataclass(frozen=True)
class ReconciliationSummary:
    matched_count: int
    unmatched_count: int
    total_amount_processed_cents: int
    unmatched_references: list[str] = field(default_factory=list)


def summarize(import_result: ImportResult) -> ReconciliationSummary:
    unmatched_references: list[str] = []
    for transaction in import_result.unmatched:
        reference = transaction.reference.strip() or EMPTY_REFERENCE
        if reference not in unmatched_references:
            unmatched_references.append(reference)

    return ReconciliationSummary(
        matched_count=len(import_result.matched),
        unmatched_count=len(import_result.unmatched),
        total_amount_processed_cents=sum(match.amount_in_cents for match in import_result.matched),
        unmatched_references=unmatched_references,
    )


def upload_message(import_result: ImportResult) -> str:
    message = f"{import_result.new_transactions} new transaction(s) imported successfully"
    if import_result.duplicates_skipped > 0:
        message += f", {import_result.duplicates_skipped} duplicate(s) skipped"
    if import_result.ignored_no_money_in > 0:
        message += f", {import_result.ignored_no_money_in} transaction(s) ignored (no credit amount)"

    summary = summarize(import_result)
    message += f". {summary.matched_count} contribution(s) matched to members"
    if summary.matched_count > 0:
        message += f" ({format_currency(summary.total_amount_processed_cents)})"
    if summary.unmatched_count > 0:
        message += f", {summary.unmatched_count} unmatched reference(s)"
    if import_result.errors:
        message += f". {len(import_result.errors)} row(s) could not be read"
    return message


def unmatched_frame(import_result: ImportResult) -> pd.DataFrame:
    return pd.DataFrame(
        [
            {
                "ID": transaction.id,
                "Date": transaction.transaction_date,
                "Reference": transaction.reference or EMPTY_REFERENCE,
                "Description": transaction.description,
                "Amount": format_currency(transaction.amount_in_cents),
            }
            for transaction in import_result.unmatched
        ],
        columns=["ID", "Date", "Reference", "Description", "Amount"],
    )
