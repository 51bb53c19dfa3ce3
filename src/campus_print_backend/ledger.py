"""
Per-student page balance ledger.

Two operations mutate balances:

- ``debit`` settles a print job. The balance check, the decrement, the
  PrintJob row and the journal entry are one unit of work, so a job never
  exists without its charge and a charge never exists without its job.
- ``credit`` applies a completed top-up. The Transaction's PENDING -> COMPLETED
  transition is a compare-and-swap inside the same unit of work as the
  increment; a reference that is already COMPLETED is a successful no-op.

Every mutation writes one ``balance_entries`` row naming the PrintJob or the
Transaction it belongs to.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple
from uuid import uuid4

from .database import LedgerStore, utcnow
from .errors import BalanceNotFound, InputError, InsufficientBalance, TransactionNotFound
from .models import (
    BalanceEntry,
    CreditResult,
    PageBalance,
    PrintJob,
    PrintJobDraft,
    PrintJobStatus,
    TransactionStatus,
)

logger = logging.getLogger(__name__)


class BalanceLedger:
    def __init__(self, store: LedgerStore) -> None:
        self.store = store

    def open_balance(self, student_id: str, default_pages: int, semester: Optional[str] = None) -> PageBalance:
        """
        Create a student's balance with the semester allotment.

        Opening an existing balance leaves it untouched and returns it.
        """
        balance, _ = self.ensure_balance(student_id, default_pages, semester)
        return balance

    def ensure_balance(
        self, student_id: str, default_pages: int, semester: Optional[str] = None
    ) -> Tuple[PageBalance, bool]:
        """Like ``open_balance``, also reporting whether this call created the row."""
        if default_pages < 0:
            raise InputError("Default allotment cannot be negative", {"default_pages": default_pages})

        created = self.store.insert_balance(
            PageBalance(
                student_id=student_id,
                current_balance=default_pages,
                default_pages=default_pages,
                semester=semester,
                last_updated=utcnow(),
            )
        )
        if created:
            logger.info(f"Opened balance for {student_id}: {default_pages} pages ({semester or 'no semester'})")
        return self.get_balance(student_id), created

    def get_balance(self, student_id: str) -> PageBalance:
        balance = self.store.get_balance(student_id)
        if balance is None:
            raise BalanceNotFound(student_id)
        return balance

    def list_entries(self, student_id: str) -> List[BalanceEntry]:
        return self.store.list_entries(student_id)

    def debit(self, student_id: str, amount: int, job: PrintJobDraft) -> PrintJob:
        """
        Charge ``amount`` page units and persist the print job.

        Raises:
            InputError: If ``amount`` is not positive
            BalanceNotFound: If the student has no balance
            InsufficientBalance: If the balance does not cover ``amount``;
                nothing is written in that case
        """
        if amount <= 0:
            raise InputError("Debit amount must be positive", {"amount": amount})

        with self.store.unit_of_work() as conn:
            balance = self.store.read_balance(conn, student_id)
            if balance is None:
                raise BalanceNotFound(student_id)

            if balance.current_balance < amount or not self.store.decrement_balance(conn, student_id, amount):
                logger.warning(
                    f"Insufficient balance: student={student_id} requested={amount} available={balance.current_balance}"
                )
                raise InsufficientBalance(student_id, amount, balance.current_balance)

            print_job = PrintJob(
                id=uuid4().hex,
                student_id=student_id,
                cost=amount,
                status=PrintJobStatus.PENDING,
                created_at=utcnow(),
                **job.model_dump(),
            )
            self.store.insert_print_job(conn, print_job)
            self.store.insert_entry(conn, student_id, -amount, print_job_id=print_job.id)

        logger.info(
            f"Debited {amount} pages from {student_id} for job {print_job.id} "
            f"(balance {balance.current_balance} -> {balance.current_balance - amount})"
        )
        return print_job

    def credit(
        self,
        student_id: str,
        pages: int,
        external_ref: str,
        gateway_reference: Optional[str] = None,
        payment_method: str = "SePay",
    ) -> CreditResult:
        """
        Apply a top-up exactly once.

        Returns:
            ``applied=True`` when this call moved the Transaction to COMPLETED and
            raised the balance; ``applied=False`` when the Transaction was not
            PENDING (already completed, failed or refunded), in which case
            nothing changed.

        Raises:
            TransactionNotFound: If ``external_ref`` names no Transaction for
                this student
            BalanceNotFound: If the student has no balance (rolled back, the
                Transaction stays PENDING)
        """
        if pages <= 0:
            raise InputError("Credit must add pages", {"pages": pages})

        with self.store.unit_of_work() as conn:
            transaction = self.store.read_transaction(conn, external_ref)
            if transaction is None or transaction.student_id != student_id:
                raise TransactionNotFound(external_ref)

            if not self.store.complete_transaction(conn, external_ref, payment_method, gateway_reference):
                logger.info(f"Credit skipped for {external_ref}: transaction is {transaction.status.value}")
                return CreditResult(applied=False, status=transaction.status)

            if not self.store.increment_balance(conn, student_id, pages):
                raise BalanceNotFound(student_id)
            self.store.insert_entry(conn, student_id, pages, transaction_id=external_ref)

        logger.info(f"Credited {pages} pages to {student_id} for transaction {external_ref}")
        return CreditResult(applied=True, status=TransactionStatus.COMPLETED)

    def mark_failed(self, external_ref: str, reason: str) -> bool:
        """Guarded PENDING -> FAILED. Returns whether this call made the transition."""
        with self.store.unit_of_work() as conn:
            changed = self.store.fail_transaction(conn, external_ref, reason)
        if changed:
            logger.warning(f"Transaction {external_ref} marked FAILED: {reason}")
        return changed
