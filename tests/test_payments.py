"""
Tests for top-up payment intents.
"""

from decimal import Decimal
from urllib.parse import parse_qs, urlparse

import pytest

from campus_print_backend.errors import BalanceNotFound, InputError, TransactionNotFound
from campus_print_backend.models import TransactionStatus


class TestCreatePayment:
    def test_creates_pending_transaction(self, ledger, payments, store):
        ledger.open_balance("s1", 0)

        intent = payments.create_payment("s1", 10000, 50)

        transaction = store.get_transaction(intent.trans_id)
        assert transaction.status is TransactionStatus.PENDING
        assert transaction.amount == Decimal("10000")
        assert transaction.pages_added == 50
        assert intent.memo == f"SSPS {intent.trans_id}"

    def test_qr_url_carries_amount_and_memo(self, ledger, payments):
        ledger.open_balance("s1", 0)

        intent = payments.create_payment("s1", "25000", 120)

        url = urlparse(intent.qr_url)
        assert url.netloc == "img.vietqr.io"
        assert url.path == "/image/BIDV-96247SSPS-compact2.png"
        query = parse_qs(url.query)
        assert query["amount"] == ["25000"]
        assert query["addInfo"] == [intent.memo]

    def test_transaction_ids_are_unique(self, ledger, payments):
        ledger.open_balance("s1", 0)
        ids = {payments.create_payment("s1", 10000, 50).trans_id for _ in range(5)}
        assert len(ids) == 5

    @pytest.mark.parametrize(
        "amount,pages",
        [(1999, 50), (500001, 50), (0, 50), (-5000, 50), (10000, 9), (10000, 501), (10000, 0), ("lots", 50)],
    )
    def test_out_of_bounds_requests_are_rejected(self, ledger, payments, store, amount, pages):
        ledger.open_balance("s1", 0)

        with pytest.raises(InputError):
            payments.create_payment("s1", amount, pages)

    def test_student_without_balance(self, payments):
        with pytest.raises(BalanceNotFound):
            payments.create_payment("ghost", 10000, 50)


class TestPaymentStatus:
    def test_status_follows_transaction(self, ledger, payments):
        ledger.open_balance("s1", 0)
        intent = payments.create_payment("s1", 10000, 50)

        assert payments.get_status(intent.trans_id).status is TransactionStatus.PENDING

        ledger.credit("s1", 50, intent.trans_id)
        status = payments.get_status(intent.trans_id)
        assert status.status is TransactionStatus.COMPLETED
        assert status.pages == 50

    def test_unknown_transaction(self, payments):
        with pytest.raises(TransactionNotFound):
            payments.get_status("missing")
