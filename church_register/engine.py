"""Wires the store and services together from settings."""

from __future__ import annotations

from dataclasses import dataclass

from .bank_import import BankImportService
from .config import Settings, configure_logging, load_settings
from .envelopes import EnvelopeBatchProcessor
from .ledger import ContributionLedgerWriter
from .register_numbers import RegisterNumberAllocator
from .statement_parser import StatementParser
from .store import Store


@dataclass
class Engine:
    store: Store
    allocator: RegisterNumberAllocator
    ledger: ContributionLedgerWriter
    bank_import: BankImportService
    envelopes: EnvelopeBatchProcessor


def build_engine(settings: Settings | None = None) -> Engine:
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    store = Store(settings.db_path)
    store.init_db()

    allocator = RegisterNumberAllocator(store)
    ledger = ContributionLedgerWriter(store)
    return Engine(
        store=store,
        allocator=allocator,
        ledger=ledger,
        bank_import=BankImportService(
            store,
            parser=StatementParser(settings.reference_pattern),
            writer=ledger,
            max_statement_bytes=settings.max_statement_bytes,
        ),
        envelopes=EnvelopeBatchProcessor(store, allocator=allocator, writer=ledger),
    )
