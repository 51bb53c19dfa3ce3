"""
Payment gateway webhook reconciliation.

The gateway (SePay) posts one notification per bank transfer and may deliver
the same notification more than once. Reconciliation:

1. authenticate the ``Authorization: Apikey <secret>`` header,
2. find the Transaction id in the transfer memo,
3. check the transferred amount covers the Transaction,
4. credit the ledger exactly once.

Transfers that do not belong to us are acknowledged as ``ignored`` so the
gateway stops retrying them.
"""

from __future__ import annotations

import hmac
import logging
import re
from typing import Optional

from .errors import TransactionNotFound, WebhookAuthError, WebhookMismatch
from .ledger import BalanceLedger
from .models import Transaction, TransactionStatus, WebhookEvent, WebhookOutcome, WebhookResult

logger = logging.getLogger(__name__)

# Banks sometimes strip the hyphens from the memo, so accept both forms
UUID_WITH_HYPHENS = re.compile(r"[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}", re.IGNORECASE)
UUID_WITHOUT_HYPHENS = re.compile(r"[a-f0-9]{32}", re.IGNORECASE)


def extract_transaction_id(*texts: Optional[str]) -> Optional[str]:
    """
    Find a transaction id in the first text that carries one.

    Hyphenated UUIDs win over bare 32-character hex runs; a bare match is
    re-hyphenated into the canonical 8-4-4-4-12 form.
    """
    candidates = [text for text in texts if text]
    for pattern in (UUID_WITH_HYPHENS, UUID_WITHOUT_HYPHENS):
        for text in candidates:
            match = pattern.search(text)
            if match:
                found = match.group(0).lower()
                if "-" not in found:
                    found = f"{found[:8]}-{found[8:12]}-{found[12:16]}-{found[16:20]}-{found[20:32]}"
                return found
    return None


class WebhookReconciler:
    def __init__(self, ledger: BalanceLedger, api_key: str, payment_method: str = "SePay") -> None:
        self.ledger = ledger
        self.api_key = api_key or ""
        self.payment_method = payment_method

    def authenticate(self, authorization: Optional[str]) -> None:
        """
        Raises:
            WebhookAuthError: If the header is missing, does not equal
                ``Apikey <secret>``, or no secret is configured
        """
        if not self.api_key:
            logger.error("Webhook API key not configured; rejecting notification")
            raise WebhookAuthError("Server configuration error")
        if not authorization:
            logger.warning("Webhook rejected: missing Authorization header")
            raise WebhookAuthError("Missing Authorization header")

        received = authorization.strip()
        expected = f"Apikey {self.api_key}"
        if not hmac.compare_digest(received.encode(), expected.encode()):
            logger.warning(f"Webhook rejected: invalid API key ({received[:12]}...)")
            raise WebhookAuthError("Invalid API key")

    def reconcile(self, event: WebhookEvent) -> WebhookResult:
        """
        Apply one notification. Every returned result is safe to acknowledge.

        Only unexpected internal failures propagate.
        """
        if event.transfer_type.lower() != "in":
            logger.info(f"Ignoring outgoing transfer {event.external_id} (transferType={event.transfer_type})")
            return WebhookResult(outcome=WebhookOutcome.IGNORED)

        transaction_id = extract_transaction_id(event.content, event.description, event.reference_code)
        if transaction_id is None:
            logger.warning(f"No transaction id in notification {event.external_id}: {event.content!r} / {event.description!r}")
            return WebhookResult(outcome=WebhookOutcome.IGNORED)

        transaction = self.ledger.store.get_transaction(transaction_id)
        if transaction is None:
            logger.warning(f"Notification {event.external_id} references unknown transaction {transaction_id}")
            return WebhookResult(outcome=WebhookOutcome.IGNORED, transaction_id=transaction_id)

        if transaction.status is TransactionStatus.COMPLETED:
            logger.info(f"Transaction {transaction_id} already completed; acknowledging redelivery")
            return WebhookResult(outcome=WebhookOutcome.ALREADY_APPLIED, transaction_id=transaction_id)
        if transaction.status is not TransactionStatus.PENDING:
            logger.warning(f"Transaction {transaction_id} is {transaction.status.value}; not crediting")
            return WebhookResult(outcome=WebhookOutcome.IGNORED, transaction_id=transaction_id)

        try:
            self._check_amount(transaction, event)
        except WebhookMismatch as exc:
            self.ledger.mark_failed(transaction_id, str(exc))
            return WebhookResult(outcome=WebhookOutcome.AMOUNT_MISMATCH, transaction_id=transaction_id)

        try:
            result = self.ledger.credit(
                transaction.student_id,
                transaction.pages_added,
                transaction_id,
                gateway_reference=event.reference_code or None,
                payment_method=self.payment_method,
            )
        except TransactionNotFound:
            return WebhookResult(outcome=WebhookOutcome.IGNORED, transaction_id=transaction_id)

        if not result.applied:
            if result.status is TransactionStatus.COMPLETED:
                return WebhookResult(outcome=WebhookOutcome.ALREADY_APPLIED, transaction_id=transaction_id)
            return WebhookResult(outcome=WebhookOutcome.IGNORED, transaction_id=transaction_id)

        logger.info(
            f"Payment completed: transaction={transaction_id} student={transaction.student_id} "
            f"pages={transaction.pages_added} received={event.transfer_amount}"
        )
        return WebhookResult(outcome=WebhookOutcome.CREDITED, transaction_id=transaction_id)

    def _check_amount(self, transaction: Transaction, event: WebhookEvent) -> None:
        if event.transfer_amount < transaction.amount:
            logger.warning(
                f"Underpayment for {transaction.id}: required {transaction.amount}, received {event.transfer_amount}"
            )
            raise WebhookMismatch(transaction.id, transaction.amount, event.transfer_amount)
