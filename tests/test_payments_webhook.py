import hashlib
import hmac
from decimal import Decimal

import pytest
from fastapi import HTTPException

from ispsync.models import BillStatus, ConnectionStatus
from ispsync.models.billing import Payment, PaymentMethod
from ispsync.models.network import NetworkSyncTask, SyncAction
from ispsync.schemas.payments import PaymentWebhookPayload
from ispsync.services import payments


def _payload(bill, customer, amount="800.00", status="COMPLETED", transaction_id="TXN-1001"):
    return PaymentWebhookPayload(
        transaction_id=transaction_id,
        invoice_id="INV-77",
        status=status,
        amount=Decimal(amount),
        payment_method="bkash",
        sender_number="01700000000",
        metadata={
            "bill_id": str(bill.id),
            "customer_id": str(customer.id),
            "tenant_id": str(customer.tenant_id),
        },
    )


@pytest.fixture()
def webhook_secret(monkeypatch):
    secret = "whsec-test"
    monkeypatch.setattr(
        payments,
        "settings",
        payments.settings.model_copy(update={"payment_webhook_secret": secret}),
    )
    return secret


# =============================================================================
# Signature
# =============================================================================


class TestVerifySignature:
    def test_no_secret_configured(self):
        payments.verify_signature(b"{}", None)

    def test_valid_signature(self, webhook_secret):
        body = b'{"transaction_id": "TXN-1"}'
        signature = hmac.new(webhook_secret.encode(), body, hashlib.sha256).hexdigest()
        payments.verify_signature(body, signature.upper())

    @pytest.mark.parametrize("signature", [None, "", "deadbeef"])
    def test_rejected(self, webhook_secret, signature):
        with pytest.raises(HTTPException) as exc:
            payments.verify_signature(b"{}", signature)
        assert exc.value.status_code == 401


# =============================================================================
# Processing
# =============================================================================


class TestProcessPaymentWebhook:
    def test_pending_status_is_ignored(self, db_session, customer, make_bill):
        bill = make_bill(customer)
        result = payments.process_payment_webhook(
            db_session, _payload(bill, customer, status="PENDING")
        )
        assert result.success is True
        assert result.processed is False
        assert db_session.query(Payment).count() == 0

    def test_full_payment_settles_bill(self, db_session, customer, make_bill):
        customer.due_balance = Decimal("800.00")
        db_session.commit()
        bill = make_bill(customer)

        result = payments.process_payment_webhook(db_session, _payload(bill, customer))

        assert result.processed is True
        assert result.reactivated is False
        payment = db_session.get(Payment, result.payment_id)
        assert payment.reference == "TXN-1001"
        assert payment.method == PaymentMethod.online
        assert "bkash" in payment.notes
        db_session.refresh(bill)
        db_session.refresh(customer)
        assert bill.status == BillStatus.paid
        assert customer.due_balance == Decimal("0.00")

    def test_short_payment_is_partial(self, db_session, customer, make_bill):
        bill = make_bill(customer)
        payments.process_payment_webhook(db_session, _payload(bill, customer, amount="300"))
        db_session.refresh(bill)
        assert bill.status == BillStatus.partial

    def test_installments_settle_bill(self, db_session, customer, make_bill):
        customer.due_balance = Decimal("800.00")
        db_session.commit()
        bill = make_bill(customer)

        payments.process_payment_webhook(
            db_session, _payload(bill, customer, amount="500", transaction_id="TXN-1")
        )
        db_session.refresh(bill)
        assert bill.status == BillStatus.partial

        payments.process_payment_webhook(
            db_session, _payload(bill, customer, amount="300", transaction_id="TXN-2")
        )
        db_session.refresh(bill)
        db_session.refresh(customer)
        assert bill.status == BillStatus.paid
        assert customer.due_balance == Decimal("0.00")

    def test_redelivery_is_a_duplicate(self, db_session, customer, make_bill):
        customer.due_balance = Decimal("1600.00")
        db_session.commit()
        bill = make_bill(customer)
        first = payments.process_payment_webhook(db_session, _payload(bill, customer))

        second = payments.process_payment_webhook(db_session, _payload(bill, customer))

        assert second.duplicate is True
        assert second.processed is False
        assert second.payment_id == first.payment_id
        assert db_session.query(Payment).count() == 1
        db_session.refresh(customer)
        assert customer.due_balance == Decimal("800.00")

    def test_clearing_dues_reactivates_and_enables(
        self, db_session, customer, make_bill, integration, fake_provider
    ):
        customer.connection_status = ConnectionStatus.suspended
        customer.due_balance = Decimal("800.00")
        db_session.commit()
        bill = make_bill(customer, status=BillStatus.overdue)

        result = payments.process_payment_webhook(db_session, _payload(bill, customer))

        assert result.reactivated is True
        assert result.network_sync["success"] is True
        db_session.refresh(customer)
        assert customer.connection_status == ConnectionStatus.active
        assert fake_provider.calls == [("enable", customer.network_username)]
        task = db_session.query(NetworkSyncTask).one()
        assert task.action == SyncAction.enable

    def test_partial_payment_keeps_suspension(
        self, db_session, customer, make_bill, integration, fake_provider
    ):
        customer.connection_status = ConnectionStatus.suspended
        customer.due_balance = Decimal("1600.00")
        db_session.commit()
        bill = make_bill(customer, status=BillStatus.overdue)

        result = payments.process_payment_webhook(db_session, _payload(bill, customer))

        assert result.reactivated is False
        assert fake_provider.calls == []

    def test_missing_metadata(self, db_session):
        payload = PaymentWebhookPayload(transaction_id="TXN-9", status="COMPLETED", amount=10)
        with pytest.raises(HTTPException) as exc:
            payments.process_payment_webhook(db_session, payload)
        assert exc.value.status_code == 400

    def test_bill_of_another_customer(self, db_session, tenant, customer, make_customer, make_bill):
        bill = make_bill(make_customer(tenant))
        with pytest.raises(HTTPException) as exc:
            payments.process_payment_webhook(db_session, _payload(bill, customer))
        assert exc.value.status_code == 400

    def test_customer_of_another_tenant(
        self, db_session, other_tenant, customer, make_customer, make_bill
    ):
        bill = make_bill(customer)
        payload = _payload(bill, customer)
        payload.metadata.tenant_id = other_tenant.id
        with pytest.raises(HTTPException) as exc:
            payments.process_payment_webhook(db_session, payload)
        assert exc.value.status_code == 404
