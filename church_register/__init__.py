"""Contribution reconciliation and register-number engine for a congregation register."""

from .bank_import import BankImportService, validate_upload
from .config import Settings, configure_logging, load_settings
from .duplicates import DuplicateFilter
from .engine import Engine, build_engine
from .envelopes import EnvelopeBatchProcessor
from .errors import (
    ChurchRegisterError,
    ConflictError,
    EntryError,
    NotFoundError,
    PartialParseError,
    ValidationError,
)
from .ledger import ContributionLedgerWriter
from .models import (
    ContributionSource,
    EnvelopeEntry,
    MemberStatus,
    cents_from_amount,
    format_currency,
)
from .reconciliation import summarize, unmatched_frame, upload_message
from .register_numbers import RegisterNumberAllocator
from .statement_parser import StatementParser, extract_reference
from .store import Store

__all__ = [
    "BankImportService",
    "ChurchRegisterError",
    "ConflictError",
    "ContributionLedgerWriter",
    "ContributionSource",
    "DuplicateFilter",
    "Engine",
    "EntryError",
    "EnvelopeBatchProcessor",
    "EnvelopeEntry",
    "MemberStatus",
    "NotFoundError",
    "PartialParseError",
    "RegisterNumberAllocator",
    "Settings",
    "StatementParser",
    "Store",
    "ValidationError",
    "build_engine",
    "cents_from_amount",
    "configure_logging",
    "extract_reference",
    "format_currency",
    "load_settings",
    "summarize",
    "unmatched_frame",
    "upload_message",
    "validate_upload",
]
