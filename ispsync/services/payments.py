"""Payment provider webhook handling.

A completed payment is applied at most once per provider transaction id:
the id is stored as ``Payment.reference`` under a unique constraint, so a
redelivered notification is answered as a duplicate and changes nothing.
"""

from __future__ import annotations

import hashlib
import hmac
from decimal import Decimal

from fastapi import HTTPException
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ispsync.config import settings
from ispsync.logging import get_logger
from ispsync.models.billing import Bill, BillStatus, Payment, PaymentMethod
from ispsync.models.customer import ConnectionStatus, Customer
from ispsync.models.network import SyncAction
from ispsync.schemas.payments import PaymentWebhookPayload, PaymentWebhookResult
from ispsync.services.common import get_for_tenant_or_404, round_money, utcnow
from ispsync.services.network_sync import sync_customer_immediately

logger = get_logger(__name__)

COMPLETED = "COMPLETED"


def _compute_signature(payload: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: str | None) -> None:
    """Check the HMAC-SHA256 signature when a webhook secret is configured."""
    secret = settings.payment_webhook_secret
    if not secret:
        return
    if not signature:
        raise HTTPException(status_code=401, detail="Missing webhook signature")
    expected = _compute_signature(raw_body, secret)
    if not hmac.compare_digest(expected, signature.strip().lower()):
        raise HTTPException(status_code=401, detail="Invalid webhook signature")


def _find_existing(db: Session, tenant_id, reference: str) -> Payment | None:
    return (
        db.query(Payment)
        .filter(Payment.tenant_id == tenant_id)
        .filter(Payment.reference == reference)
        .first()
    )


def _duplicate(payment_id) -> PaymentWebhookResult:
    return PaymentWebhookResult(
        processed=False,
        duplicate=True,
        message="Payment already processed",
        payment_id=payment_id,
    )


def _payment_notes(payload: PaymentWebhookPayload) -> str:
    parts = [f"Online payment via {payload.payment_method or 'gateway'}"]
    if payload.sender_number:
        parts.append(f"sender {payload.sender_number}")
    if payload.fee is not None:
        parts.append(f"fee {payload.fee}")
    if payload.invoice_id:
        parts.append(f"invoice {payload.invoice_id}")
    return ", ".join(parts)


def _settled_before(db: Session, bill_id) -> Decimal:
    total = db.scalar(
        select(func.coalesce(func.sum(Payment.amount), 0)).where(Payment.bill_id == bill_id)
    )
    return round_money(total or 0)


def process_payment_webhook(db: Session, payload: PaymentWebhookPayload) -> PaymentWebhookResult:
    if payload.status.upper() != COMPLETED:
        logger.info(
            "PAYMENT_WEBHOOK_IGNORED transaction_id=%s status=%s",
            payload.transaction_id,
            payload.status,
        )
        return PaymentWebhookResult(message=f"Payment status {payload.status} not processed")
    if payload.metadata is None:
        raise HTTPException(
            status_code=400, detail="Missing metadata: bill_id, customer_id and tenant_id"
        )

    meta = payload.metadata
    existing = _find_existing(db, meta.tenant_id, payload.transaction_id)
    if existing:
        logger.info(
            "PAYMENT_WEBHOOK_DUPLICATE transaction_id=%s payment_id=%s",
            payload.transaction_id,
            existing.id,
        )
        return _duplicate(existing.id)

    customer = get_for_tenant_or_404(
        db, Customer, meta.tenant_id, meta.customer_id, "Customer not found"
    )
    bill = get_for_tenant_or_404(db, Bill, meta.tenant_id, meta.bill_id, "Bill not found")
    if bill.customer_id != customer.id:
        raise HTTPException(status_code=400, detail="Bill does not belong to customer")
    amount = round_money(payload.amount)
    if amount <= 0:
        raise HTTPException(status_code=400, detail="Payment amount must be positive")

    settled = _settled_before(db, bill.id) + amount
    now = utcnow()
    payment = Payment(
        tenant_id=meta.tenant_id,
        customer_id=customer.id,
        bill_id=bill.id,
        amount=amount,
        method=PaymentMethod.online,
        reference=payload.transaction_id,
        notes=_payment_notes(payload),
        paid_at=now,
    )
    db.add(payment)
    bill.status = BillStatus.paid if settled >= round_money(bill.amount) else BillStatus.partial
    bill.paid_at = now
    new_due = round_money(customer.due_balance or 0) - amount
    customer.due_balance = max(Decimal("0.00"), new_due)
    customer.last_payment_date = now.date()
    reactivate = (
        customer.connection_status == ConnectionStatus.suspended
        and customer.due_balance == 0
    )
    if reactivate:
        customer.connection_status = ConnectionStatus.active
    try:
        db.commit()
    except IntegrityError:
        # A concurrent delivery of the same transaction won the insert.
        db.rollback()
        winner = _find_existing(db, meta.tenant_id, payload.transaction_id)
        logger.info("PAYMENT_WEBHOOK_DUPLICATE_RACE transaction_id=%s", payload.transaction_id)
        return _duplicate(winner.id if winner else None)
    db.refresh(payment)
    logger.info(
        "PAYMENT_WEBHOOK_APPLIED transaction_id=%s payment_id=%s customer_id=%s reactivated=%s",
        payload.transaction_id,
        payment.id,
        customer.id,
        reactivate,
    )

    network_sync = None
    if reactivate:
        try:
            network_sync = sync_customer_immediately(
                db, customer, SyncAction.enable, "automatic"
            )
        except Exception:
            # The payment is committed; the enable task stays in the queue.
            db.rollback()
            logger.exception("PAYMENT_REACTIVATION_SYNC_ERROR customer_id=%s", customer.id)
    return PaymentWebhookResult(
        processed=True,
        message="Payment applied",
        payment_id=payment.id,
        reactivated=reactivate,
        network_sync=_jsonable(network_sync),
    )


def _jsonable(outcome: dict | None) -> dict | None:
    if outcome is None:
        return None
    return {key: str(value) if key.endswith("_id") and value else value for key, value in outcome.items()}
