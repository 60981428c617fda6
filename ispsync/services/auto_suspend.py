"""Auto-suspend scheduler.

Once a day every tenant with ``auto_suspend_days > 0`` has its active
customers checked for bills that went overdue at least that many days ago.
Those customers are suspended and a disable sync is attempted immediately.
The suspension stands even when the network call fails; the queue keeps
retrying the disable.
"""

from __future__ import annotations

import time
from datetime import date, timedelta

from sqlalchemy.orm import Session

from ispsync.logging import get_logger
from ispsync.models.billing import Bill, BillStatus
from ispsync.models.customer import ConnectionStatus, Customer
from ispsync.models.network import SyncAction
from ispsync.models.tenant import Tenant
from ispsync.schemas.auto_suspend import AutoSuspendSummary, TenantSuspendResult
from ispsync.services.common import utcnow
from ispsync.services.network_sync import sync_customer_immediately

logger = get_logger(__name__)

TRIGGERED_BY = "auto_suspend"


def find_overdue_customers(db: Session, tenant: Tenant, today: date) -> list[Customer]:
    cutoff = today - timedelta(days=tenant.auto_suspend_days)
    overdue_customer_ids = (
        db.query(Bill.customer_id)
        .filter(Bill.tenant_id == tenant.id)
        .filter(Bill.status == BillStatus.overdue)
        .filter(Bill.due_date <= cutoff)
        .distinct()
    )
    return (
        db.query(Customer)
        .filter(Customer.tenant_id == tenant.id)
        .filter(Customer.connection_status == ConnectionStatus.active)
        .filter(Customer.id.in_(overdue_customer_ids))
        .order_by(Customer.created_at.asc())
        .all()
    )


def suspend_tenant(db: Session, tenant: Tenant, today: date) -> TenantSuspendResult:
    result = TenantSuspendResult(tenant_id=tenant.id, tenant_name=tenant.name)
    for customer in find_overdue_customers(db, tenant, today):
        customer.connection_status = ConnectionStatus.suspended
        customer.updated_at = utcnow()
        db.commit()
        result.suspended_count += 1
        logger.info(
            "AUTO_SUSPEND_CUSTOMER tenant_id=%s customer_id=%s", tenant.id, customer.id
        )
        try:
            outcome = sync_customer_immediately(
                db, customer, SyncAction.disable, TRIGGERED_BY
            )
        except Exception as exc:
            db.rollback()
            logger.exception(
                "AUTO_SUSPEND_SYNC_ERROR tenant_id=%s customer_id=%s",
                tenant.id,
                customer.id,
            )
            result.errors.append(f"{customer.name}: {exc}")
            continue
        if outcome is None:
            continue
        if outcome["success"]:
            result.network_synced += 1
        else:
            result.errors.append(f"{customer.name}: {outcome['message']}")
    return result


def run_auto_suspend(db: Session, today: date | None = None) -> AutoSuspendSummary:
    started = time.monotonic()
    today = today or utcnow().date()
    summary = AutoSuspendSummary()
    tenants = (
        db.query(Tenant)
        .filter(Tenant.is_active.is_(True))
        .filter(Tenant.auto_suspend_days > 0)
        .order_by(Tenant.created_at.asc())
        .all()
    )
    for tenant in tenants:
        tenant_id, tenant_name = tenant.id, tenant.name
        try:
            tenant_result = suspend_tenant(db, tenant, today)
        except Exception as exc:
            db.rollback()
            logger.exception("AUTO_SUSPEND_TENANT_ERROR tenant_id=%s", tenant_id)
            tenant_result = TenantSuspendResult(
                tenant_id=tenant_id, tenant_name=tenant_name, errors=[str(exc)]
            )
        summary.tenants_processed += 1
        summary.total_suspended += tenant_result.suspended_count
        summary.total_network_synced += tenant_result.network_synced
        summary.details.append(tenant_result)

    summary.duration_ms = int((time.monotonic() - started) * 1000)
    logger.info(
        "AUTO_SUSPEND_COMPLETE tenants=%s suspended=%s synced=%s duration_ms=%s",
        summary.tenants_processed,
        summary.total_suspended,
        summary.total_network_synced,
        summary.duration_ms,
    )
    return summary
