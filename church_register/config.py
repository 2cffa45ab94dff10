"""Runtime settings for the contribution engine."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


DEFAULT_DB_PATH = Path(".data/church_register.db")
DEFAULT_MAX_STATEMENT_BYTES = 10 * 1024 * 1024
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class Settings:
    db_path: Path = DEFAULT_DB_PATH
    max_statement_bytes: int = DEFAULT_MAX_STATEMENT_BYTES
    reference_pattern: str | None = None
    log_level: str = "INFO"


def _int_from_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}.") from exc
    if value <= 0:
        raise ValueError(f"{name} must be positive.")
    return value


def load_settings() -> Settings:
    """Read settings from the environment (and a local .env file, if any)."""

    load_dotenv()

    pattern = (os.getenv("CHURCH_REGISTER_REFERENCE_PATTERN") or "").strip() or None
    return Settings(
        db_path=Path(os.getenv("CHURCH_REGISTER_DB_PATH") or DEFAULT_DB_PATH),
        max_statement_bytes=_int_from_env(
            "CHURCH_REGISTER_MAX_STATEMENT_BYTES",
            DEFAULT_MAX_STATEMENT_BYTES,
        ),
        reference_pattern=pattern,
        log_level=(os.getenv("CHURCH_REGISTER_LOG_LEVEL") or "INFO").upper(),
    )


def configure_logging(level: str | int = "INFO") -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
