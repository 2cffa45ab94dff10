"""SQLite-backed persistence for members, register numbers and the contribution ledger."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterator

from .errors import ConflictError, NotFoundError, ValidationError
from .models import (
    BankTransaction,
    BatchStatus,
    Contribution,
    ContributionRecord,
    ContributionSource,
    Member,
    MemberStatus,
    RegisterNumberAssignment,
)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _lastrowid(cursor: sqlite3.Cursor) -> int:
    row_id = cursor.lastrowid
    if row_id is None:
        raise RuntimeError("Insert did not return a row id.")
    return row_id


def _parse_date(value: str | None) -> date | None:
    if not value:
        return None
    return date.fromisoformat(value[:10])


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _member_from_row(row: sqlite3.Row) -> Member:
    return Member(
        id=row["id"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        member_since=_parse_date(row["member_since"]),
        status=MemberStatus(row["status"]),
        bank_reference=row["bank_reference"],
    )


def _transaction_from_row(row: sqlite3.Row) -> BankTransaction:
    return BankTransaction(
        id=row["id"],
        transaction_date=date.fromisoformat(row["transaction_date"]),
        description=row["description"],
        reference=row["reference"],
        amount_in_cents=row["amount_in_cents"],
        source_fingerprint=row["source_fingerprint"],
    )


def _contribution_from_row(row: sqlite3.Row) -> ContributionRecord:
    return ContributionRecord(
        id=row["id"],
        member_id=row["member_id"],
        amount_cents=row["amount_cents"],
        contribution_date=date.fromisoformat(row["contribution_date"]),
        transaction_ref=row["transaction_ref"],
        source_kind=ContributionSource(row["source_kind"]),
        description=row["description"],
        created_by=row["created_by"],
        created_at=_parse_timestamp(row["created_at"]),
    )


class UnitOfWork:
    """One explicit database transaction. Writes go through ``execute``."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self.connection = connection
        self._closed = False

    def execute(self, sql: str, parameters: tuple[Any, ...] | list[Any] = ()) -> sqlite3.Cursor:
        if self._closed:
            raise RuntimeError("Unit of work is already finished.")
        return self.connection.execute(sql, parameters)

    def commit(self) -> None:
        if not self._closed:
            self.connection.execute("COMMIT")
            self._closed = True

    def rollback(self) -> None:
        if not self._closed:
            self.connection.execute("ROLLBACK")
            self._closed = True


class Store:
    """Persistence operations for the contribution engine."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)

    def _connect(self, autocommit: bool = False) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        if autocommit:
            connection = sqlite3.connect(self.db_path, isolation_level=None)
        else:
            connection = sqlite3.connect(self.db_path)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON")
        return connection

    @contextmanager
    def unit_of_work(self) -> Iterator[UnitOfWork]:
        """Open a write transaction that commits on success and rolls back on error."""

        connection = self._connect(autocommit=True)
        try:
            connection.execute("BEGIN IMMEDIATE")
            uow = UnitOfWork(connection)
            try:
                yield uow
            except BaseException:
                uow.rollback()
                raise
            uow.commit()
        finally:
            connection.close()

    def init_db(self) -> None:
        with self._connect() as connection:
            connection.executescript(
                """
                CREATE TABLE IF NOT EXISTS members (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    first_name TEXT NOT NULL,
                    last_name TEXT NOT NULL,
                    member_since TEXT,
                    status TEXT NOT NULL DEFAULT 'Active' CHECK (status IN ('Active', 'Inactive')),
                    bank_reference TEXT,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS register_numbers (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    member_id INTEGER NOT NULL,
                    year INTEGER NOT NULL,
                    number INTEGER NOT NULL CHECK (number > 0),
                    created_by TEXT NOT NULL,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE (year, number),
                    UNIQUE (member_id, year),
                    FOREIGN KEY (member_id) REFERENCES members(id)
                );

                CREATE TABLE IF NOT EXISTS bank_transactions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    transaction_date TEXT NOT NULL,
                    description TEXT NOT NULL,
                    reference TEXT NOT NULL DEFAULT '',
                    amount_in_cents INTEGER NOT NULL CHECK (amount_in_cents > 0),
                    source_fingerprint TEXT NOT NULL,
                    uploaded_by TEXT NOT NULL,
                    is_processed INTEGER NOT NULL DEFAULT 0,
                    deleted INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS envelope_batches (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    collection_date TEXT NOT NULL UNIQUE,
                    total_amount_cents INTEGER NOT NULL CHECK (total_amount_cents > 0),
                    envelope_count INTEGER NOT NULL CHECK (envelope_count > 0),
                    status TEXT NOT NULL DEFAULT 'Submitted' CHECK (status IN ('Submitted')),
                    submitted_by TEXT NOT NULL,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS contributions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    member_id INTEGER NOT NULL,
                    amount_cents INTEGER NOT NULL CHECK (amount_cents > 0),
                    contribution_date TEXT NOT NULL,
                    transaction_ref TEXT NOT NULL,
                    description TEXT,
                    source_kind TEXT NOT NULL CHECK (source_kind IN ('BankImport', 'Envelope', 'Manual')),
                    bank_transaction_id INTEGER UNIQUE,
                    envelope_batch_id INTEGER,
                    register_number INTEGER,
                    manual INTEGER NOT NULL DEFAULT 0,
                    created_by TEXT NOT NULL,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    deleted INTEGER NOT NULL DEFAULT 0,
                    CHECK (
                        (bank_transaction_id IS NOT NULL)
                        + (envelope_batch_id IS NOT NULL)
                        + (manual = 1) = 1
                    ),
                    FOREIGN KEY (member_id) REFERENCES members(id),
                    FOREIGN KEY (bank_transaction_id) REFERENCES bank_transactions(id),
                    FOREIGN KEY (envelope_batch_id) REFERENCES envelope_batches(id)
                );

                CREATE INDEX IF NOT EXISTS idx_members_status ON members (status);
                CREATE INDEX IF NOT EXISTS idx_register_numbers_member ON register_numbers (member_id);
                CREATE INDEX IF NOT EXISTS idx_bank_transactions_key
                    ON bank_transactions (transaction_date, reference, amount_in_cents);
                CREATE INDEX IF NOT EXISTS idx_bank_transactions_processed
                    ON bank_transactions (is_processed, deleted);
                CREATE INDEX IF NOT EXISTS idx_contributions_member ON contributions (member_id);
                CREATE INDEX IF NOT EXISTS idx_contributions_date ON contributions (contribution_date);
                CREATE INDEX IF NOT EXISTS idx_contributions_batch ON contributions (envelope_batch_id);
                """
            )

    # Member directory

    def add_member(
        self,
        first_name: str,
        last_name: str,
        member_since: date | None,
        status: MemberStatus = MemberStatus.ACTIVE,
        bank_reference: str | None = None,
    ) -> int:
        clean_first = _clean(first_name)
        clean_last = _clean(last_name)
        if not clean_first or not clean_last:
            raise ValidationError("Members require first and last name.")

        with self._connect() as connection:
            cursor = connection.execute(
                """
                INSERT INTO members (first_name, last_name, member_since, status, bank_reference)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    clean_first,
                    clean_last,
                    member_since.isoformat() if member_since else None,
                    MemberStatus(status).value,
                    _clean(bank_reference),
                ),
            )
            return _lastrowid(cursor)

    def get_member(self, member_id: int) -> Member | None:
        with self._connect() as connection:
            row = connection.execute(
                "SELECT * FROM members WHERE id = ?",
                (member_id,),
            ).fetchone()
        return _member_from_row(row) if row else None

    def set_member_status(self, member_id: int, status: MemberStatus) -> None:
        with self._connect() as connection:
            cursor = connection.execute(
                "UPDATE members SET status = ? WHERE id = ?",
                (MemberStatus(status).value, member_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Member {member_id} was not found.")

    def set_bank_reference(self, member_id: int, bank_reference: str | None) -> None:
        with self._connect() as connection:
            cursor = connection.execute(
                "UPDATE members SET bank_reference = ? WHERE id = ?",
                (_clean(bank_reference), member_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Member {member_id} was not found.")

    def get_active_members(self) -> list[Member]:
        with self._connect() as connection:
            rows = connection.execute(
                "SELECT * FROM members WHERE status = ? ORDER BY id ASC",
                (MemberStatus.ACTIVE.value,),
            ).fetchall()
        return [_member_from_row(row) for row in rows]

    def members_by_bank_reference(self, uow: UnitOfWork) -> dict[str, list[int]]:
        rows = uow.execute(
            """
            SELECT id, bank_reference
            FROM members
            WHERE bank_reference IS NOT NULL AND TRIM(bank_reference) <> ''
            """
        ).fetchall()

        lookup: dict[str, list[int]] = {}
        for row in rows:
            key = row["bank_reference"].strip().lower()
            lookup.setdefault(key, []).append(row["id"])
        return lookup

    # Register numbers

    def has_register_numbers(self, year: int, uow: UnitOfWork | None = None) -> bool:
        query = "SELECT 1 FROM register_numbers WHERE year = ? LIMIT 1"
        if uow is not None:
            return uow.execute(query, (year,)).fetchone() is not None
        with self._connect() as connection:
            return connection.execute(query, (year,)).fetchone() is not None

    def register_numbers_for_year(self, year: int) -> dict[int, int]:
        with self._connect() as connection:
            rows = connection.execute(
                "SELECT member_id, number FROM register_numbers WHERE year = ?",
                (year,),
            ).fetchall()
        return {row["member_id"]: row["number"] for row in rows}

    def find_register_number(self, number: int, year: int) -> sqlite3.Row | None:
        with self._connect() as connection:
            return connection.execute(
                """
                SELECT
                    rn.member_id,
                    rn.number,
                    rn.year,
                    m.first_name,
                    m.last_name,
                    m.status
                FROM register_numbers rn
                JOIN members m ON m.id = rn.member_id
                WHERE rn.number = ? AND rn.year = ?
                """,
                (number, year),
            ).fetchone()

    def register_number_stats(self, year: int) -> sqlite3.Row:
        with self._connect() as connection:
            return connection.execute(
                """
                SELECT
                    COUNT(*) AS count,
                    MAX(number) AS max_number,
                    MIN(created_at) AS generated_at,
                    (
                        SELECT created_by
                        FROM register_numbers first_row
                        WHERE first_row.year = ?
                        ORDER BY first_row.id ASC
                        LIMIT 1
                    ) AS generated_by
                FROM register_numbers
                WHERE year = ?
                """,
                (year, year),
            ).fetchone()

    def insert_register_numbers(
        self,
        uow: UnitOfWork,
        assignments: list[RegisterNumberAssignment],
        created_by: str,
        created_at: datetime,
    ) -> int:
        try:
            for assignment in assignments:
                uow.execute(
                    """
                    INSERT INTO register_numbers (member_id, year, number, created_by, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        assignment.member_id,
                        assignment.year,
                        assignment.number,
                        created_by,
                        created_at.isoformat(),
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise ConflictError(
                f"Register numbers for {assignments[0].year} were committed concurrently."
            ) from exc
        return len(assignments)

    # Bank transactions

    def active_transaction_keys(self, uow: UnitOfWork) -> set[tuple[str, str, int]]:
        rows = uow.execute(
            """
            SELECT transaction_date, reference, amount_in_cents
            FROM bank_transactions
            WHERE deleted = 0
            """
        ).fetchall()
        return {
            (row["transaction_date"], row["reference"].strip(), row["amount_in_cents"])
            for row in rows
        }

    def insert_bank_transaction(
        self,
        uow: UnitOfWork,
        transaction: BankTransaction,
        uploaded_by: str,
        created_at: datetime,
    ) -> int:
        cursor = uow.execute(
            """
            INSERT INTO bank_transactions (
                transaction_date,
                description,
                reference,
                amount_in_cents,
                source_fingerprint,
                uploaded_by,
                created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                transaction.transaction_date.isoformat(),
                transaction.description,
                transaction.reference,
                transaction.amount_in_cents,
                transaction.source_fingerprint,
                uploaded_by,
                created_at.isoformat(),
            ),
        )
        return _lastrowid(cursor)

    def unprocessed_bank_transactions(self, uow: UnitOfWork) -> list[BankTransaction]:
        rows = uow.execute(
            """
            SELECT *
            FROM bank_transactions
            WHERE is_processed = 0 AND deleted = 0
            ORDER BY transaction_date ASC, id ASC
            """
        ).fetchall()
        return [_transaction_from_row(row) for row in rows]

    def mark_transaction_processed(self, uow: UnitOfWork, transaction_id: int) -> None:
        uow.execute(
            "UPDATE bank_transactions SET is_processed = 1 WHERE id = ?",
            (transaction_id,),
        )

    def soft_delete_bank_transaction(self, uow: UnitOfWork, transaction_id: int) -> None:
        cursor = uow.execute(
            "UPDATE bank_transactions SET deleted = 1 WHERE id = ? AND deleted = 0",
            (transaction_id,),
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"Bank transaction {transaction_id} was not found.")
        uow.execute(
            "UPDATE contributions SET deleted = 1 WHERE bank_transaction_id = ?",
            (transaction_id,),
        )

    def list_bank_transactions(self, unprocessed_only: bool = False) -> list[BankTransaction]:
        where_sql = "WHERE deleted = 0"
        if unprocessed_only:
            where_sql += " AND is_processed = 0"
        with self._connect() as connection:
            rows = connection.execute(
                f"SELECT * FROM bank_transactions {where_sql} ORDER BY transaction_date DESC, id DESC"
            ).fetchall()
        return [_transaction_from_row(row) for row in rows]

    # Envelope batches

    def batch_exists(self, collection_date: date, uow: UnitOfWork | None = None) -> bool:
        query = "SELECT 1 FROM envelope_batches WHERE collection_date = ?"
        if uow is not None:
            return uow.execute(query, (collection_date.isoformat(),)).fetchone() is not None
        with self._connect() as connection:
            return connection.execute(query, (collection_date.isoformat(),)).fetchone() is not None

    def insert_envelope_batch(
        self,
        uow: UnitOfWork,
        collection_date: date,
        total_amount_cents: int,
        envelope_count: int,
        submitted_by: str,
        created_at: datetime,
    ) -> int:
        try:
            cursor = uow.execute(
                """
                INSERT INTO envelope_batches (
                    collection_date,
                    total_amount_cents,
                    envelope_count,
                    status,
                    submitted_by,
                    created_at
                )
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    collection_date.isoformat(),
                    total_amount_cents,
                    envelope_count,
                    BatchStatus.SUBMITTED.value,
                    submitted_by,
                    created_at.isoformat(),
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise ConflictError(
                f"Contributions for Sunday {collection_date:%d %B %Y} have already been submitted."
            ) from exc
        return _lastrowid(cursor)

    def get_batch(self, batch_id: int) -> sqlite3.Row | None:
        with self._connect() as connection:
            return connection.execute(
                "SELECT * FROM envelope_batches WHERE id = ?",
                (batch_id,),
            ).fetchone()

    def list_batches(
        self,
        start_date: date | None,
        end_date: date | None,
        limit: int,
        offset: int,
    ) -> tuple[list[sqlite3.Row], int]:
        where_clauses: list[str] = []
        parameters: list[Any] = []

        if start_date is not None:
            where_clauses.append("collection_date >= ?")
            parameters.append(start_date.isoformat())
        if end_date is not None:
            where_clauses.append("collection_date <= ?")
            parameters.append(end_date.isoformat())

        where_sql = f"WHERE {' AND '.join(where_clauses)}" if where_clauses else ""
        with self._connect() as connection:
            total = connection.execute(
                f"SELECT COUNT(*) AS count FROM envelope_batches {where_sql}",
                parameters,
            ).fetchone()["count"]
            rows = connection.execute(
                f"""
                SELECT *
                FROM envelope_batches
                {where_sql}
                ORDER BY collection_date DESC
                LIMIT ? OFFSET ?
                """,
                [*parameters, limit, offset],
            ).fetchall()
        return rows, int(total)

    def batch_lines(self, batch_id: int) -> list[sqlite3.Row]:
        with self._connect() as connection:
            return connection.execute(
                """
                SELECT
                    c.id,
                    c.member_id,
                    c.amount_cents,
                    c.register_number,
                    m.first_name,
                    m.last_name
                FROM contributions c
                JOIN members m ON m.id = c.member_id
                WHERE c.envelope_batch_id = ? AND c.deleted = 0
                ORDER BY c.id ASC
                """,
                (batch_id,),
            ).fetchall()

    # Contributions

    def insert_contribution(
        self,
        uow: UnitOfWork,
        contribution: Contribution,
        created_at: datetime,
        register_number: int | None = None,
    ) -> int:
        source_kind = contribution.source_kind
        if source_kind is None:
            raise ValidationError("Contribution source kind is required.")
        try:
            cursor = uow.execute(
                """
                INSERT INTO contributions (
                    member_id,
                    amount_cents,
                    contribution_date,
                    transaction_ref,
                    description,
                    source_kind,
                    bank_transaction_id,
                    envelope_batch_id,
                    register_number,
                    manual,
                    created_by,
                    created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    contribution.member_id,
                    contribution.amount_cents,
                    contribution.contribution_date.isoformat(),
                    contribution.transaction_ref,
                    _clean(contribution.description),
                    source_kind.value,
                    contribution.bank_transaction_id,
                    contribution.envelope_batch_id,
                    register_number,
                    1 if contribution.manual else 0,
                    contribution.created_by,
                    created_at.isoformat(),
                ),
            )
        except sqlite3.IntegrityError as exc:
            if contribution.bank_transaction_id is not None and "UNIQUE" in str(exc):
                raise ConflictError(
                    f"Bank transaction {contribution.bank_transaction_id} already backs a contribution."
                ) from exc
            raise
        return _lastrowid(cursor)

    def soft_delete_contribution(self, uow: UnitOfWork, contribution_id: int) -> None:
        cursor = uow.execute(
            "UPDATE contributions SET deleted = 1 WHERE id = ? AND deleted = 0",
            (contribution_id,),
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"Contribution {contribution_id} was not found.")

    def list_contributions(
        self,
        member_id: int | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        source_kind: ContributionSource | None = None,
    ) -> list[ContributionRecord]:
        where_clauses: list[str] = ["deleted = 0"]
        parameters: list[Any] = []

        if member_id is not None:
            where_clauses.append("member_id = ?")
            parameters.append(member_id)
        if start_date is not None:
            where_clauses.append("contribution_date >= ?")
            parameters.append(start_date.isoformat())
        if end_date is not None:
            where_clauses.append("contribution_date <= ?")
            parameters.append(end_date.isoformat())
        if source_kind is not None:
            where_clauses.append("source_kind = ?")
            parameters.append(ContributionSource(source_kind).value)

        query = f"""
            SELECT *
            FROM contributions
            WHERE {' AND '.join(where_clauses)}
            ORDER BY contribution_date DESC, id DESC
        """
        with self._connect() as connection:
            rows = connection.execute(query, parameters).fetchall()
        return [_contribution_from_row(row) for row in rows]

    def contribution_total(
        self,
        member_id: int,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> int:
        where_clauses = ["deleted = 0", "member_id = ?"]
        parameters: list[Any] = [member_id]
        if start_date is not None:
            where_clauses.append("contribution_date >= ?")
            parameters.append(start_date.isoformat())
        if end_date is not None:
            where_clauses.append("contribution_date <= ?")
            parameters.append(end_date.isoformat())

        with self._connect() as connection:
            row = connection.execute(
                f"""
                SELECT COALESCE(SUM(amount_cents), 0) AS total
                FROM contributions
                WHERE {' AND '.join(where_clauses)}
                """,
                parameters,
            ).fetchone()
        return int(row["total"])

    def count_rows(self, table_name: str) -> int:
        if table_name not in {
            "members",
            "register_numbers",
            "bank_transactions",
            "envelope_batches",
            "contributions",
        }:
            raise ValueError(f"Unknown table {table_name!r}.")
        with self._connect() as connection:
            row = connection.execute(f"SELECT COUNT(*) AS count FROM {table_name}").fetchone()
        return int(row["count"])
