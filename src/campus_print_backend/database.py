"""
SQLite ledger store.

This module owns the schema and the row-level operations the ledger needs.
Mutating operations take an open connection so callers can compose several of
them into one unit of work::

    with store.unit_of_work() as conn:
        balance = store.read_balance(conn, student_id)
        store.decrement_balance(conn, student_id, cost)
        store.insert_print_job(conn, job)

``unit_of_work`` starts with ``BEGIN IMMEDIATE``, taking SQLite's write lock up
front, so two units touching the same balance never interleave; the second
waits (up to ``timeout``) and then observes the first one's committed state.
"""

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Iterator, List, Optional
from uuid import uuid4

from .models import (
    BalanceEntry,
    Document,
    PageBalance,
    PaperSize,
    PrintJob,
    PrintJobStatus,
    Transaction,
    TransactionStatus,
)


DEFAULT_DB_PATH = Path("data/campus_print.db")


def _ensure_db_dir(db_path: Path) -> None:
    """Ensure the database directory exists."""
    db_path.parent.mkdir(parents=True, exist_ok=True)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Serialize datetime to ISO format string."""
    return dt.isoformat() if dt else None


def _deserialize_datetime(s: Optional[str]) -> Optional[datetime]:
    """Deserialize ISO format string to datetime."""
    if not s:
        return None
    return datetime.fromisoformat(s)


SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS documents (
        id TEXT PRIMARY KEY,
        owner_id TEXT NOT NULL,
        filename TEXT NOT NULL,
        stored_path TEXT NOT NULL,
        mime_type TEXT NOT NULL,
        file_size INTEGER NOT NULL,
        detected_page_count INTEGER CHECK (detected_page_count IS NULL OR detected_page_count > 0),
        uploaded_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS page_balances (
        student_id TEXT PRIMARY KEY,
        current_balance INTEGER NOT NULL DEFAULT 0 CHECK (current_balance >= 0),
        default_pages INTEGER NOT NULL DEFAULT 0,
        purchased_pages INTEGER NOT NULL DEFAULT 0,
        used_pages INTEGER NOT NULL DEFAULT 0,
        semester TEXT,
        last_updated TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS print_jobs (
        id TEXT PRIMARY KEY,
        student_id TEXT NOT NULL,
        printer_id TEXT NOT NULL,
        document_id TEXT NOT NULL,
        total_pages INTEGER NOT NULL CHECK (total_pages > 0),
        resolved_pages INTEGER NOT NULL CHECK (resolved_pages > 0),
        copies INTEGER NOT NULL CHECK (copies > 0),
        paper_size TEXT NOT NULL CHECK (paper_size IN ('A4', 'A3')),
        duplex INTEGER NOT NULL DEFAULT 0,
        page_range TEXT,
        cost INTEGER NOT NULL CHECK (cost > 0),
        status TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS transactions (
        id TEXT PRIMARY KEY,
        student_id TEXT NOT NULL,
        amount TEXT NOT NULL,
        pages_added INTEGER NOT NULL CHECK (pages_added > 0),
        status TEXT NOT NULL DEFAULT 'PENDING'
            CHECK (status IN ('PENDING', 'COMPLETED', 'FAILED', 'REFUNDED')),
        payment_method TEXT,
        gateway_reference TEXT,
        failure_reason TEXT,
        created_at TEXT NOT NULL,
        completed_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS balance_entries (
        id TEXT PRIMARY KEY,
        student_id TEXT NOT NULL,
        delta INTEGER NOT NULL,
        print_job_id TEXT UNIQUE REFERENCES print_jobs(id),
        transaction_id TEXT UNIQUE REFERENCES transactions(id),
        created_at TEXT NOT NULL,
        CHECK ((print_job_id IS NULL) <> (transaction_id IS NULL))
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_print_jobs_student ON print_jobs(student_id)",
    "CREATE INDEX IF NOT EXISTS idx_transactions_student ON transactions(student_id)",
    "CREATE INDEX IF NOT EXISTS idx_transactions_status ON transactions(status)",
    "CREATE INDEX IF NOT EXISTS idx_balance_entries_student ON balance_entries(student_id, created_at)",
)


class LedgerStore:
    """
    SQLite store for documents, balances, print jobs and transactions.

    A store is built once by the process entry point and handed to every
    component that needs it. It keeps no connection open between calls.
    """

    def __init__(self, db_path: Path = DEFAULT_DB_PATH, timeout: float = 30.0):
        self.db_path = Path(db_path)
        self.timeout = timeout
        _ensure_db_dir(self.db_path)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Autocommit connection for single-statement reads and writes."""
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def unit_of_work(self) -> Iterator[sqlite3.Connection]:
        """Write transaction: commits on success, rolls back on any exception."""
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self.unit_of_work() as conn:
            for statement in SCHEMA:
                conn.execute(statement)

    # Documents

    def insert_document(self, document: Document) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO documents (
                    id, owner_id, filename, stored_path, mime_type,
                    file_size, detected_page_count, uploaded_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    document.id,
                    document.owner_id,
                    document.filename,
                    document.stored_path,
                    document.mime_type,
                    document.file_size,
                    document.detected_page_count,
                    _serialize_datetime(document.uploaded_at),
                ),
            )

    def get_document(self, document_id: str) -> Optional[Document]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM documents WHERE id = ?", (document_id,)).fetchone()
            return self._row_to_document(row) if row else None

    def set_document_page_count(self, document_id: str, page_count: int) -> int:
        """
        Record the detected page count unless one is already stored.

        Returns:
            The count now stored, which is the earlier one if another request
            got there first.
        """
        with self.unit_of_work() as conn:
            conn.execute(
                "UPDATE documents SET detected_page_count = ? WHERE id = ? AND detected_page_count IS NULL",
                (page_count, document_id),
            )
            row = conn.execute(
                "SELECT detected_page_count FROM documents WHERE id = ?", (document_id,)
            ).fetchone()
        return row["detected_page_count"] if row else page_count

    # Balances

    def insert_balance(self, balance: PageBalance) -> bool:
        """Create a balance row. Returns False if the student already has one."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO page_balances (
                    student_id, current_balance, default_pages, purchased_pages,
                    used_pages, semester, last_updated
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    balance.student_id,
                    balance.current_balance,
                    balance.default_pages,
                    balance.purchased_pages,
                    balance.used_pages,
                    balance.semester,
                    _serialize_datetime(balance.last_updated),
                ),
            )
            return cursor.rowcount > 0

    def get_balance(self, student_id: str) -> Optional[PageBalance]:
        with self._get_connection() as conn:
            return self.read_balance(conn, student_id)

    def read_balance(self, conn: sqlite3.Connection, student_id: str) -> Optional[PageBalance]:
        row = conn.execute("SELECT * FROM page_balances WHERE student_id = ?", (student_id,)).fetchone()
        return self._row_to_balance(row) if row else None

    def decrement_balance(self, conn: sqlite3.Connection, student_id: str, amount: int) -> bool:
        """Subtract ``amount`` only if the balance covers it. Returns whether a row changed."""
        cursor = conn.execute(
            """
            UPDATE page_balances
            SET current_balance = current_balance - ?,
                used_pages = used_pages + ?,
                last_updated = ?
            WHERE student_id = ? AND current_balance >= ?
            """,
            (amount, amount, _serialize_datetime(utcnow()), student_id, amount),
        )
        return cursor.rowcount == 1

    def increment_balance(self, conn: sqlite3.Connection, student_id: str, pages: int) -> bool:
        cursor = conn.execute(
            """
            UPDATE page_balances
            SET current_balance = current_balance + ?,
                purchased_pages = purchased_pages + ?,
                last_updated = ?
            WHERE student_id = ?
            """,
            (pages, pages, _serialize_datetime(utcnow()), student_id),
        )
        return cursor.rowcount == 1

    def insert_entry(
        self,
        conn: sqlite3.Connection,
        student_id: str,
        delta: int,
        print_job_id: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> str:
        entry_id = uuid4().hex
        conn.execute(
            """
            INSERT INTO balance_entries (id, student_id, delta, print_job_id, transaction_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (entry_id, student_id, delta, print_job_id, transaction_id, _serialize_datetime(utcnow())),
        )
        return entry_id

    def list_entries(self, student_id: str) -> List[BalanceEntry]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM balance_entries WHERE student_id = ? ORDER BY created_at, rowid",
                (student_id,),
            ).fetchall()
        return [
            BalanceEntry(
                id=row["id"],
                student_id=row["student_id"],
                delta=row["delta"],
                print_job_id=row["print_job_id"],
                transaction_id=row["transaction_id"],
                created_at=_deserialize_datetime(row["created_at"]),
            )
            for row in rows
        ]

    # Print jobs

    def insert_print_job(self, conn: sqlite3.Connection, job: PrintJob) -> None:
        conn.execute(
            """
            INSERT INTO print_jobs (
                id, student_id, printer_id, document_id, total_pages, resolved_pages,
                copies, paper_size, duplex, page_range, cost, status, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                job.id,
                job.student_id,
                job.printer_id,
                job.document_id,
                job.total_pages,
                job.resolved_pages,
                job.copies,
                job.paper_size.value,
                int(job.duplex),
                job.page_range,
                job.cost,
                job.status.value,
                _serialize_datetime(job.created_at),
            ),
        )

    def get_print_job(self, job_id: str) -> Optional[PrintJob]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM print_jobs WHERE id = ?", (job_id,)).fetchone()
            return self._row_to_print_job(row) if row else None

    def count_print_jobs(self, student_id: str) -> int:
        with self._get_connection() as conn:
            row = conn.execute("SELECT COUNT(*) AS n FROM print_jobs WHERE student_id = ?", (student_id,)).fetchone()
            return row["n"]

    # Transactions

    def insert_transaction(self, transaction: Transaction) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO transactions (
                    id, student_id, amount, pages_added, status, payment_method,
                    gateway_reference, failure_reason, created_at, completed_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    transaction.id,
                    transaction.student_id,
                    str(transaction.amount),
                    transaction.pages_added,
                    transaction.status.value,
                    transaction.payment_method,
                    transaction.gateway_reference,
                    transaction.failure_reason,
                    _serialize_datetime(transaction.created_at),
                    _serialize_datetime(transaction.completed_at),
                ),
            )

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        with self._get_connection() as conn:
            return self.read_transaction(conn, transaction_id)

    def read_transaction(self, conn: sqlite3.Connection, transaction_id: str) -> Optional[Transaction]:
        row = conn.execute("SELECT * FROM transactions WHERE id = ?", (transaction_id,)).fetchone()
        return self._row_to_transaction(row) if row else None

    def complete_transaction(
        self,
        conn: sqlite3.Connection,
        transaction_id: str,
        payment_method: Optional[str],
        gateway_reference: Optional[str],
    ) -> bool:
        """PENDING -> COMPLETED. Returns False if the row was not PENDING."""
        cursor = conn.execute(
            """
            UPDATE transactions
            SET status = 'COMPLETED', payment_method = ?, gateway_reference = ?, completed_at = ?
            WHERE id = ? AND status = 'PENDING'
            """,
            (payment_method, gateway_reference, _serialize_datetime(utcnow()), transaction_id),
        )
        return cursor.rowcount == 1

    def fail_transaction(self, conn: sqlite3.Connection, transaction_id: str, reason: str) -> bool:
        """PENDING -> FAILED. Returns False if the row was not PENDING."""
        cursor = conn.execute(
            "UPDATE transactions SET status = 'FAILED', failure_reason = ? WHERE id = ? AND status = 'PENDING'",
            (reason, transaction_id),
        )
        return cursor.rowcount == 1

    # Row mapping

    def _row_to_document(self, row: sqlite3.Row) -> Document:
        return Document(
            id=row["id"],
            owner_id=row["owner_id"],
            filename=row["filename"],
            stored_path=row["stored_path"],
            mime_type=row["mime_type"],
            file_size=row["file_size"],
            detected_page_count=row["detected_page_count"],
            uploaded_at=_deserialize_datetime(row["uploaded_at"]),
        )

    def _row_to_balance(self, row: sqlite3.Row) -> PageBalance:
        return PageBalance(
            student_id=row["student_id"],
            current_balance=row["current_balance"],
            default_pages=row["default_pages"],
            purchased_pages=row["purchased_pages"],
            used_pages=row["used_pages"],
            semester=row["semester"],
            last_updated=_deserialize_datetime(row["last_updated"]),
        )

    def _row_to_print_job(self, row: sqlite3.Row) -> PrintJob:
        return PrintJob(
            id=row["id"],
            student_id=row["student_id"],
            printer_id=row["printer_id"],
            document_id=row["document_id"],
            total_pages=row["total_pages"],
            resolved_pages=row["resolved_pages"],
            copies=row["copies"],
            paper_size=PaperSize(row["paper_size"]),
            duplex=bool(row["duplex"]),
            page_range=row["page_range"],
            cost=row["cost"],
            status=PrintJobStatus(row["status"]),
            created_at=_deserialize_datetime(row["created_at"]),
        )

    def _row_to_transaction(self, row: sqlite3.Row) -> Transaction:
        return Transaction(
            id=row["id"],
            student_id=row["student_id"],
            amount=Decimal(row["amount"]),
            pages_added=row["pages_added"],
            status=TransactionStatus(row["status"]),
            payment_method=row["payment_method"],
            gateway_reference=row["gateway_reference"],
            failure_reason=row["failure_reason"],
            created_at=_deserialize_datetime(row["created_at"]),
            completed_at=_deserialize_datetime(row["completed_at"]),
        )
