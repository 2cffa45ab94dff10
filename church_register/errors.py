"""Error types raised by the contribution engine."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class EntryError:
    register_number: int
    message: str

    def __str__(self) -> str:
        return f"#{self.register_number}: {self.message}"


class ChurchRegisterError(ValueError):
    """Base class for all engine errors."""


class ValidationError(ChurchRegisterError):
    """Malformed input or a policy violation (for example a non-Sunday date)."""

    def __init__(self, message: str, errors: list[EntryError] | None = None) -> None:
        self.errors = list(errors or [])
        if self.errors:
            message = f"{message}: {', '.join(str(error) for error in self.errors)}"
        super().__init__(message)


class ConflictError(ChurchRegisterError):
    """A uniqueness constraint was hit at commit time."""


class NotFoundError(ChurchRegisterError):
    """A referenced member, batch, contribution or register number does not exist."""


class PartialParseError(ChurchRegisterError):
    """Row-level problems found while parsing a statement.

    The parser never raises this on its own; callers that want strict handling
    call ``StatementParseResult.raise_for_errors()``.
    """

    def __init__(self, errors: list[str], parsed_count: int) -> None:
        self.errors = list(errors)
        self.parsed_count = parsed_count
        super().__init__(
            f"{len(self.errors)} row(s) could not be parsed; {parsed_count} transaction(s) read."
        )
