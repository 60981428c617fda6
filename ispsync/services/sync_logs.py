"""Append-only sync attempt history."""

from sqlalchemy.orm import Session

from ispsync.models.network import NetworkSyncLog, SyncAction, SyncLogStatus
from ispsync.services.common import (
    apply_ordering,
    apply_pagination,
    coerce_uuid,
    get_for_tenant_or_404,
    parse_uuid,
    validate_enum,
)
from ispsync.services.redaction import redact_secrets
from ispsync.services.response import ListResponseMixin


def build_log(
    *,
    tenant_id,
    integration_id,
    customer_id,
    task_id,
    action: SyncAction,
    status: SyncLogStatus,
    error_message: str | None,
    request_payload: dict,
    response_payload: dict | None,
    retry_count: int,
    next_retry_at,
    triggered_by: str | None,
    triggered_by_user: str | None,
    started_at,
    completed_at,
    duration_ms: int,
) -> NetworkSyncLog:
    return NetworkSyncLog(
        tenant_id=tenant_id,
        integration_id=integration_id,
        customer_id=customer_id,
        task_id=task_id,
        action=action,
        status=status,
        error_message=error_message,
        request_payload=redact_secrets(request_payload),
        response_payload=redact_secrets(response_payload) if response_payload else None,
        retry_count=retry_count,
        next_retry_at=next_retry_at,
        triggered_by=triggered_by,
        triggered_by_user=triggered_by_user,
        started_at=started_at,
        completed_at=completed_at,
        duration_ms=duration_ms,
    )


class SyncLogs(ListResponseMixin):
    @staticmethod
    def get(db: Session, tenant_id, log_id) -> NetworkSyncLog:
        return get_for_tenant_or_404(db, NetworkSyncLog, tenant_id, log_id, "Sync log not found")

    @staticmethod
    def list(
        db: Session,
        tenant_id,
        customer_id: str | None = None,
        task_id: str | None = None,
        status: str | None = None,
        order_by: str = "created_at",
        order_dir: str = "desc",
        limit: int = 50,
        offset: int = 0,
    ):
        query = db.query(NetworkSyncLog).filter(
            NetworkSyncLog.tenant_id == coerce_uuid(tenant_id)
        )
        if customer_id:
            query = query.filter(NetworkSyncLog.customer_id == parse_uuid(customer_id, "customer_id"))
        if task_id:
            query = query.filter(NetworkSyncLog.task_id == parse_uuid(task_id, "task_id"))
        if status:
            query = query.filter(
                NetworkSyncLog.status == validate_enum(status, SyncLogStatus, "status")
            )
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {"created_at": NetworkSyncLog.created_at, "started_at": NetworkSyncLog.started_at},
        )
        return apply_pagination(query, limit, offset).all()


sync_logs = SyncLogs()
