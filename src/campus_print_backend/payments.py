"""
Top-up payment intents.

A student picks a page package; we record a PENDING Transaction and hand back
a VietQR bank-transfer image URL whose memo carries the transaction id. The
gateway later echoes that memo in its webhook, which is how the reconciler
finds the Transaction again.
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from urllib.parse import quote
from uuid import uuid4

from .database import LedgerStore, utcnow
from .errors import BalanceNotFound, InputError, TransactionNotFound
from .models import PaymentIntent, PaymentStatus, Transaction, TransactionStatus

logger = logging.getLogger(__name__)

VIETQR_URL = "https://img.vietqr.io/image/{bank_id}-{account_no}-{template}.png?amount={amount}&addInfo={memo}"


class PaymentService:
    def __init__(
        self,
        store: LedgerStore,
        bank_id: str,
        account_no: str,
        template: str = "compact2",
        memo_prefix: str = "SSPS",
        min_amount: int = 2000,
        max_amount: int = 500000,
        min_pages: int = 10,
        max_pages: int = 500,
    ) -> None:
        self.store = store
        self.bank_id = bank_id
        self.account_no = account_no
        self.template = template
        self.memo_prefix = memo_prefix
        self.min_amount = Decimal(min_amount)
        self.max_amount = Decimal(max_amount)
        self.min_pages = min_pages
        self.max_pages = max_pages

    @classmethod
    def from_settings(cls, store: LedgerStore, settings) -> "PaymentService":
        payments = settings.payments
        return cls(
            store,
            bank_id=payments.bank_id,
            account_no=str(payments.account_no),
            template=payments.template,
            memo_prefix=payments.memo_prefix,
            min_amount=payments.min_amount,
            max_amount=payments.max_amount,
            min_pages=payments.min_pages,
            max_pages=payments.max_pages,
        )

    def memo_for(self, transaction_id: str) -> str:
        return f"{self.memo_prefix} {transaction_id}"

    def create_payment(self, student_id: str, amount, page_quantity: int) -> PaymentIntent:
        """
        Record a PENDING top-up and build its transfer QR code.

        Raises:
            InputError: If the amount or page quantity is outside the allowed range
            BalanceNotFound: If the student has no page balance to credit later
        """
        try:
            amount = Decimal(str(amount))
        except (InvalidOperation, ValueError) as exc:
            raise InputError(f"Invalid amount: {amount}") from exc

        if amount <= 0 or not self.min_amount <= amount <= self.max_amount:
            raise InputError(
                f"Amount must be between {self.min_amount} and {self.max_amount}",
                {"amount": str(amount)},
            )
        if page_quantity <= 0 or not self.min_pages <= page_quantity <= self.max_pages:
            raise InputError(
                f"Page quantity must be between {self.min_pages} and {self.max_pages}",
                {"page_quantity": page_quantity},
            )
        if self.store.get_balance(student_id) is None:
            raise BalanceNotFound(student_id)

        transaction = Transaction(
            id=str(uuid4()),
            student_id=student_id,
            amount=amount,
            pages_added=page_quantity,
            status=TransactionStatus.PENDING,
            created_at=utcnow(),
        )
        self.store.insert_transaction(transaction)

        memo = self.memo_for(transaction.id)
        qr_url = VIETQR_URL.format(
            bank_id=self.bank_id,
            account_no=self.account_no,
            template=self.template,
            amount=int(amount) if amount == amount.to_integral_value() else amount,
            memo=quote(memo, safe=""),
        )
        logger.info(f"Created payment {transaction.id} for {student_id}: {amount} -> {page_quantity} pages")
        return PaymentIntent(trans_id=transaction.id, memo=memo, qr_url=qr_url)

    def get_status(self, transaction_id: str) -> PaymentStatus:
        transaction = self.store.get_transaction(transaction_id)
        if transaction is None:
            raise TransactionNotFound(transaction_id)
        return PaymentStatus(status=transaction.status, pages=transaction.pages_added)

    def get_transaction(self, transaction_id: str) -> Transaction:
        transaction = self.store.get_transaction(transaction_id)
        if transaction is None:
            raise TransactionNotFound(transaction_id)
        return transaction
