from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ispsync.api.deps import get_current_user, get_db, limiter, resolve_tenant_id
from ispsync.config import settings
from ispsync.schemas.common import ListResponse
from ispsync.schemas.network import (
    IntegrationToggle,
    ManualSyncRequest,
    ManualSyncResponse,
    NetworkIntegrationCreate,
    NetworkIntegrationRead,
    NetworkIntegrationUpdate,
    SyncLogRead,
    SyncTaskRead,
)
from ispsync.services import network_sync as network_sync_service
from ispsync.services.network_integrations import network_integrations
from ispsync.services.sync_logs import sync_logs
from ispsync.services.sync_queue import sync_tasks

router = APIRouter(prefix="/network", tags=["network"])


@router.post("/sync", response_model=ManualSyncResponse)
@limiter.limit(settings.manual_sync_rate_limit)
def sync_customer(
    request: Request,
    payload: ManualSyncRequest,
    tenant_id: str | None = None,
    auth=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    result = network_sync_service.sync_customer_now(
        db,
        resolve_tenant_id(auth, tenant_id),
        payload.integration_id,
        payload.customer_id,
        payload.action,
        triggered_by=payload.triggered_by,
        triggered_by_user=auth["user_id"],
    )
    body = ManualSyncResponse.model_validate(result)
    if not body.success and not body.queued:
        return JSONResponse(body.model_dump(mode="json"), status_code=400)
    return body


@router.get("/integrations", response_model=ListResponse[NetworkIntegrationRead])
def list_integrations(
    tenant_id: str | None = None,
    provider_type: str | None = None,
    include_archived: bool = False,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    auth=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return network_integrations.list_response(
        db,
        resolve_tenant_id(auth, tenant_id),
        provider_type,
        include_archived,
        order_by,
        order_dir,
        limit=limit,
        offset=offset,
    )


@router.post(
    "/integrations",
    response_model=NetworkIntegrationRead,
    status_code=status.HTTP_201_CREATED,
)
def create_integration(
    payload: NetworkIntegrationCreate,
    tenant_id: str | None = None,
    auth=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return network_integrations.upsert(db, resolve_tenant_id(auth, tenant_id), payload)


@router.get("/integrations/{integration_id}", response_model=NetworkIntegrationRead)
def get_integration(
    integration_id: str,
    tenant_id: str | None = None,
    auth=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return network_integrations.get(db, resolve_tenant_id(auth, tenant_id), integration_id)


@router.patch("/integrations/{integration_id}", response_model=NetworkIntegrationRead)
def update_integration(
    integration_id: str,
    payload: NetworkIntegrationUpdate,
    tenant_id: str | None = None,
    auth=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return network_integrations.upsert(
        db, resolve_tenant_id(auth, tenant_id), payload, integration_id
    )


@router.post(
    "/integrations/{integration_id}/toggle", response_model=NetworkIntegrationRead
)
def toggle_integration(
    integration_id: str,
    payload: IntegrationToggle,
    tenant_id: str | None = None,
    auth=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return network_integrations.toggle_enabled(
        db, resolve_tenant_id(auth, tenant_id), integration_id, payload.enabled
    )


@router.delete("/integrations/{integration_id}")
def delete_integration(
    integration_id: str,
    tenant_id: str | None = None,
    auth=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    outcome = network_integrations.delete(
        db, resolve_tenant_id(auth, tenant_id), integration_id
    )
    return {"id": integration_id, "result": outcome}


@router.get("/tasks", response_model=ListResponse[SyncTaskRead])
def list_sync_tasks(
    tenant_id: str | None = None,
    status: str | None = None,
    customer_id: str | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    auth=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return sync_tasks.list_response(
        db,
        resolve_tenant_id(auth, tenant_id),
        status,
        customer_id,
        order_by,
        order_dir,
        limit=limit,
        offset=offset,
    )


@router.get("/tasks/{task_id}", response_model=SyncTaskRead)
def get_sync_task(
    task_id: str,
    tenant_id: str | None = None,
    auth=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return sync_tasks.get(db, resolve_tenant_id(auth, tenant_id), task_id)


@router.get("/logs", response_model=ListResponse[SyncLogRead])
def list_sync_logs(
    tenant_id: str | None = None,
    customer_id: str | None = None,
    task_id: str | None = None,
    status: str | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    auth=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return sync_logs.list_response(
        db,
        resolve_tenant_id(auth, tenant_id),
        customer_id,
        task_id,
        status,
        order_by,
        order_dir,
        limit=limit,
        offset=offset,
    )


@router.get("/logs/{log_id}", response_model=SyncLogRead)
def get_sync_log(
    log_id: str,
    tenant_id: str | None = None,
    auth=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return sync_logs.get(db, resolve_tenant_id(auth, tenant_id), log_id)
