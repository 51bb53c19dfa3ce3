"""
Tests for webhook authentication and top-up reconciliation.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from campus_print_backend.errors import WebhookAuthError
from campus_print_backend.models import TransactionStatus, WebhookEvent, WebhookOutcome
from campus_print_backend.webhook import WebhookReconciler, extract_transaction_id

KEY = "gateway-secret"


@pytest.fixture
def reconciler(ledger):
    return WebhookReconciler(ledger, KEY)


@pytest.fixture
def intent(ledger, payments):
    ledger.open_balance("s1", 0)
    return payments.create_payment("s1", 10000, 50)


def notification(content, amount=10000, transfer_type="in", reference="FT2501", **extra):
    payload = {
        "id": 92704,
        "gateway": "BIDV",
        "transferType": transfer_type,
        "transferAmount": amount,
        "referenceCode": reference,
        "content": content,
        **extra,
    }
    return WebhookEvent.from_payload(payload)


class TestExtractTransactionId:
    def test_hyphenated_id(self):
        assert (
            extract_transaction_id("SSPS 0F8FAD5B-D9CB-469F-A165-70867728950E chuyen tien")
            == "0f8fad5b-d9cb-469f-a165-70867728950e"
        )

    def test_hyphens_stripped_by_bank(self):
        assert (
            extract_transaction_id("SSPS0f8fad5bd9cb469fa16570867728950e")
            == "0f8fad5b-d9cb-469f-a165-70867728950e"
        )

    def test_later_text_is_searched(self):
        assert extract_transaction_id(None, "", "ref 0f8fad5b-d9cb-469f-a165-70867728950e") is not None

    def test_nothing_found(self):
        assert extract_transaction_id("hello", None) is None


class TestAuthenticate:
    def test_valid_header(self, reconciler):
        reconciler.authenticate(f"Apikey {KEY}")
        reconciler.authenticate(f"  Apikey {KEY} ")

    @pytest.mark.parametrize("header", [None, "", "Apikey wrong", f"Bearer {KEY}", KEY])
    def test_rejected_headers(self, reconciler, header):
        with pytest.raises(WebhookAuthError):
            reconciler.authenticate(header)

    def test_unconfigured_key_rejects_everything(self, ledger):
        with pytest.raises(WebhookAuthError):
            WebhookReconciler(ledger, "").authenticate("Apikey ")


class TestReconcile:
    def test_matching_transfer_is_credited(self, reconciler, ledger, store, intent):
        result = reconciler.reconcile(notification(intent.memo))

        assert result.outcome is WebhookOutcome.CREDITED
        assert result.transaction_id == intent.trans_id
        assert ledger.get_balance("s1").current_balance == 50
        transaction = store.get_transaction(intent.trans_id)
        assert transaction.status is TransactionStatus.COMPLETED
        assert transaction.gateway_reference == "FT2501"
        assert transaction.payment_method == "SePay"

    def test_redelivery_is_acknowledged_without_second_credit(self, reconciler, ledger, intent):
        reconciler.reconcile(notification(intent.memo))
        again = reconciler.reconcile(notification(intent.memo))

        assert again.outcome is WebhookOutcome.ALREADY_APPLIED
        assert again.success is True
        assert ledger.get_balance("s1").current_balance == 50
        assert len(ledger.list_entries("s1")) == 1

    def test_memo_without_hyphens(self, reconciler, ledger, intent):
        memo = "SSPS" + intent.trans_id.replace("-", "").upper()

        result = reconciler.reconcile(notification(memo))

        assert result.outcome is WebhookOutcome.CREDITED
        assert ledger.get_balance("s1").current_balance == 50

    def test_id_found_in_description(self, reconciler, intent):
        event = notification("thanh toan", description=f"BIDV {intent.memo}")
        assert reconciler.reconcile(event).outcome is WebhookOutcome.CREDITED

    def test_outgoing_transfer_is_ignored(self, reconciler, ledger, store, intent):
        result = reconciler.reconcile(notification(intent.memo, transfer_type="out"))

        assert result.outcome is WebhookOutcome.IGNORED
        assert store.get_transaction(intent.trans_id).status is TransactionStatus.PENDING
        assert ledger.get_balance("s1").current_balance == 0

    def test_memo_without_id_is_ignored(self, reconciler, intent):
        assert reconciler.reconcile(notification("tien an trua")).outcome is WebhookOutcome.IGNORED

    def test_unknown_transaction_is_ignored(self, reconciler, intent):
        result = reconciler.reconcile(notification("SSPS 0f8fad5b-d9cb-469f-a165-70867728950e"))

        assert result.outcome is WebhookOutcome.IGNORED
        assert result.transaction_id == "0f8fad5b-d9cb-469f-a165-70867728950e"

    def test_underpayment_fails_transaction(self, reconciler, ledger, store, intent):
        result = reconciler.reconcile(notification(intent.memo, amount=9999))

        assert result.outcome is WebhookOutcome.AMOUNT_MISMATCH
        transaction = store.get_transaction(intent.trans_id)
        assert transaction.status is TransactionStatus.FAILED
        assert "9999" in transaction.failure_reason
        assert ledger.get_balance("s1").current_balance == 0

    def test_failed_transaction_is_not_revived(self, reconciler, ledger, intent):
        reconciler.reconcile(notification(intent.memo, amount=5000))

        result = reconciler.reconcile(notification(intent.memo, amount=10000, reference="FT2502"))

        assert result.outcome is WebhookOutcome.IGNORED
        assert ledger.get_balance("s1").current_balance == 0

    def test_overpayment_is_credited(self, reconciler, ledger, intent):
        result = reconciler.reconcile(notification(intent.memo, amount=Decimal("12000")))

        assert result.outcome is WebhookOutcome.CREDITED
        assert ledger.get_balance("s1").current_balance == 50

    @pytest.mark.parametrize("reference", ["", "FT-REUSED"])
    def test_separate_top_ups_sharing_a_gateway_reference(self, reconciler, ledger, payments, store, intent, reference):
        second = payments.create_payment("s1", 10000, 50)

        first_result = reconciler.reconcile(notification(intent.memo, reference=reference))
        second_result = reconciler.reconcile(notification(second.memo, reference=reference))

        assert first_result.outcome is WebhookOutcome.CREDITED
        assert second_result.outcome is WebhookOutcome.CREDITED
        assert ledger.get_balance("s1").current_balance == 100
        assert store.get_transaction(second.trans_id).status is TransactionStatus.COMPLETED

    def test_empty_gateway_reference_is_stored_as_missing(self, reconciler, store, intent):
        reconciler.reconcile(notification(intent.memo, reference=""))
        assert store.get_transaction(intent.trans_id).gateway_reference is None

    def test_concurrent_redelivery_credits_once(self, reconciler, ledger, intent):
        barrier = threading.Barrier(3)

        def deliver(_):
            barrier.wait()
            return reconciler.reconcile(notification(intent.memo)).outcome

        with ThreadPoolExecutor(max_workers=3) as pool:
            outcomes = list(pool.map(deliver, range(3)))

        assert outcomes.count(WebhookOutcome.CREDITED) == 1
        assert set(outcomes) <= {WebhookOutcome.CREDITED, WebhookOutcome.ALREADY_APPLIED}
        assert ledger.get_balance("s1").current_balance == 50


class TestWebhookEvent:
    def test_raw_payload_is_kept_and_extra_fields_allowed(self):
        event = notification("memo", accumulated=123, subAccount=None)

        assert event.raw["accumulated"] == 123
        assert event.transfer_amount == Decimal("10000")
        assert "raw" not in event.model_dump()

    def test_missing_amount_is_rejected(self):
        with pytest.raises(ValueError):
            WebhookEvent.from_payload({"content": "memo"})
