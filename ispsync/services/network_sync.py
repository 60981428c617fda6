"""Sync executor.

``execute`` runs one claimed task against its integration and writes exactly
one ``NetworkSyncLog`` row for the attempt. Configuration faults (missing or
disabled integration, customer without a network identity, undecryptable
credentials) fail the task for good; everything else is retried with
exponential backoff until ``max_retries`` is spent.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from datetime import timedelta

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ispsync.config import settings
from ispsync.logging import get_logger
from ispsync.metrics import observe_sync
from ispsync.models.customer import Customer
from ispsync.models.network import (
    NetworkIntegration,
    NetworkSyncLog,
    NetworkSyncTask,
    SyncAction,
    SyncLogStatus,
    SyncTaskStatus,
)
from ispsync.services import sync_queue
from ispsync.services.common import get_for_tenant_or_404, utcnow, validate_enum
from ispsync.services.network_integrations import (
    get_enabled_integration,
    network_integrations,
    resolve_provider,
)
from ispsync.services.network_providers import (
    ProviderError,
    ProviderResult,
    SyncTarget,
)
from ispsync.services.sync_logs import build_log

logger = get_logger(__name__)


def _run_with_deadline(fn, timeout: float) -> ProviderResult:
    # Some provider libraries have no timeout knob; bound the call here.
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="network-sync")
    future = pool.submit(fn)
    try:
        return future.result(timeout=timeout)
    except FuturesTimeout as exc:
        raise ProviderError(f"Provider call timed out after {timeout:g}s") from exc
    finally:
        pool.shutdown(wait=False, cancel_futures=True)


def _config_failure(message: str) -> ProviderResult:
    return ProviderResult(success=False, message=message, retryable=False)


def _build_target(customer: Customer) -> SyncTarget:
    package = customer.package
    return SyncTarget(
        customer_id=str(customer.id),
        customer_name=customer.name,
        network_username=customer.network_username,
        package_name=package.name if package else None,
        speed_label=package.speed_label if package else None,
        network_password_encrypted=customer.network_password_encrypted,
    )


def execute(db: Session, task: NetworkSyncTask, timeout: float | None = None) -> NetworkSyncLog:
    """Run one claimed task and record the attempt."""
    if task.status != SyncTaskStatus.in_progress:
        raise ValueError(f"Sync task {task.id} must be claimed before execution")

    timeout = timeout or settings.network_sync_timeout_seconds
    started_at = utcnow()
    started = time.monotonic()
    payload = task.payload or {}
    request_payload: dict = {
        "action": task.action.value,
        "task_id": str(task.id),
        "customer_id": str(task.customer_id) if task.customer_id else None,
        "triggered_by": payload.get("triggered_by"),
        "attempt": task.retry_count + 1,
    }

    integration = db.get(NetworkIntegration, task.integration_id)
    if integration is not None and integration.tenant_id != task.tenant_id:
        integration = None
    customer = db.get(Customer, task.customer_id) if task.customer_id else None
    if customer is not None and customer.tenant_id != task.tenant_id:
        customer = None

    result: ProviderResult | None = None
    provider_name = integration.provider_type.value if integration else "unknown"
    if integration is None:
        result = _config_failure(f"Network integration {task.integration_id} not found")
    elif not integration.is_enabled or integration.archived_at is not None:
        result = _config_failure(
            f"Network integration '{integration.name}' ({integration.id}) is disabled"
        )

    target = None
    if result is None and task.action != SyncAction.test_connection:
        if customer is None:
            result = _config_failure(f"Customer {task.customer_id} not found")
        elif not customer.network_username:
            result = _config_failure(f"Customer {customer.id} has no network username")
        else:
            target = _build_target(customer)
            request_payload["customer"] = target.snapshot()

    if result is None:
        try:
            provider = resolve_provider(integration)
            request_payload["provider"] = provider.describe(integration)
            db.refresh(integration)
            result = _run_with_deadline(
                lambda: provider.run(task.action, integration, target), timeout
            )
        except ProviderError as exc:
            result = ProviderResult(
                success=False, message=exc.message, retryable=exc.retryable
            )
        except Exception as exc:
            logger.warning(
                "SYNC_PROVIDER_ERROR task_id=%s provider=%s error=%s",
                task.id,
                provider_name,
                exc,
            )
            result = ProviderResult(success=False, message=f"{type(exc).__name__}: {exc}")

    return _record(
        db, task, integration, customer, result, request_payload, started_at, started
    )


def _record(
    db: Session,
    task: NetworkSyncTask,
    integration: NetworkIntegration | None,
    customer: Customer | None,
    result: ProviderResult,
    request_payload: dict,
    started_at,
    started: float,
) -> NetworkSyncLog:
    completed_at = utcnow()
    duration = time.monotonic() - started
    next_retry_at = None

    if result.success:
        status = SyncTaskStatus.success
    elif result.retryable and task.retry_count < task.max_retries:
        task.retry_count += 1
        next_retry_at = completed_at + timedelta(
            seconds=sync_queue.backoff_seconds(task.retry_count)
        )
        status = SyncTaskStatus.retrying
    else:
        status = SyncTaskStatus.failed

    payload = task.payload or {}
    log = build_log(
        tenant_id=task.tenant_id,
        integration_id=integration.id if integration else None,
        customer_id=customer.id if customer else None,
        task_id=task.id,
        action=task.action,
        status=SyncLogStatus.success if result.success else SyncLogStatus.failed,
        error_message=None if result.success else result.message,
        request_payload=request_payload,
        response_payload={"message": result.message, "data": result.data},
        retry_count=task.retry_count,
        next_retry_at=next_retry_at,
        triggered_by=payload.get("triggered_by"),
        triggered_by_user=payload.get("triggered_by_user"),
        started_at=started_at,
        completed_at=completed_at,
        duration_ms=int(duration * 1000),
    )
    db.add(log)
    sync_queue.mark(
        db,
        task,
        status,
        error=None if result.success else result.message,
        next_attempt_at=next_retry_at,
        commit=False,
    )
    sync_status = "success" if result.success else "failed"
    if customer is not None and task.action != SyncAction.test_connection:
        customer.last_network_sync_at = completed_at
        customer.last_network_sync_status = sync_status
    if integration is not None:
        integration.last_sync_at = completed_at
        integration.last_sync_status = sync_status
    db.commit()
    db.refresh(log)

    provider_name = integration.provider_type.value if integration else "unknown"
    observe_sync(provider_name, task.action.value, sync_status, duration)
    if result.success:
        logger.info(
            "SYNC_TASK_SUCCESS task_id=%s action=%s customer_id=%s duration_ms=%s",
            task.id,
            task.action.value,
            task.customer_id,
            log.duration_ms,
        )
    elif status == SyncTaskStatus.retrying:
        logger.info(
            "SYNC_TASK_RETRYING task_id=%s retry_count=%s/%s next_attempt_at=%s error=%s",
            task.id,
            task.retry_count,
            task.max_retries,
            next_retry_at.isoformat(),
            result.message,
        )
    else:
        logger.warning(
            "SYNC_TASK_FAILED task_id=%s tenant_id=%s action=%s retry_count=%s error=%s",
            task.id,
            task.tenant_id,
            task.action.value,
            task.retry_count,
            result.message,
        )
    return log


def _response(log: NetworkSyncLog, task: NetworkSyncTask) -> dict:
    response = log.response_payload or {}
    return {
        "success": log.status == SyncLogStatus.success,
        "message": log.error_message or response.get("message") or "Sync completed",
        "data": response.get("data"),
        "response_time_ms": log.duration_ms,
        "task_id": task.id,
        "log_id": log.id,
        "queued": False,
    }


def _queued_response(task: NetworkSyncTask) -> dict:
    return {
        "success": False,
        "message": "Request queued behind an open task for this customer",
        "data": None,
        "response_time_ms": 0,
        "task_id": task.id,
        "log_id": None,
        "queued": True,
    }


def sync_customer_now(
    db: Session,
    tenant_id,
    integration_id,
    customer_id,
    action: SyncAction | str,
    triggered_by: str = "manual",
    triggered_by_user: str | None = None,
) -> dict:
    """Operator-triggered sync: a fresh task, claimed and executed right away."""
    action = validate_enum(action, SyncAction, "action")
    integration = network_integrations.get(db, tenant_id, integration_id)
    if action != SyncAction.test_connection:
        if customer_id is None:
            raise HTTPException(status_code=400, detail="customer_id is required")
        get_for_tenant_or_404(db, Customer, tenant_id, customer_id, "Customer not found")
    else:
        customer_id = None
    task = sync_queue.enqueue(
        db,
        tenant_id,
        integration.id,
        customer_id,
        action,
        triggered_by=triggered_by,
        triggered_by_user=triggered_by_user,
        priority=10,
        coalesce=False,
    )
    if not sync_queue.claim(db, task):
        return _queued_response(task)
    return _response(execute(db, task), task)


def sync_customer_immediately(
    db: Session,
    customer: Customer,
    action: SyncAction,
    triggered_by: str,
) -> dict | None:
    """Push a billing-driven state change to the tenant's network right away.

    Returns None when the tenant has no enabled integration or the customer
    has no network identity. A failed attempt leaves the task retrying in
    the queue.
    """
    integration = get_enabled_integration(db, customer.tenant_id)
    if integration is None or not customer.network_username:
        return None
    task = sync_queue.enqueue(
        db,
        customer.tenant_id,
        integration.id,
        customer.id,
        action,
        triggered_by=triggered_by,
        priority=5,
    )
    if not sync_queue.claim(db, task):
        return _queued_response(task)
    return _response(execute(db, task), task)
