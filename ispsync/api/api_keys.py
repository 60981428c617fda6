from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ispsync.api.deps import get_db, require_role, resolve_tenant_id
from ispsync.schemas.api_keys import ApiKeyCreate, ApiKeyCreated, ApiKeyRead
from ispsync.schemas.common import ListResponse
from ispsync.services.api_keys import api_keys

router = APIRouter(prefix="/api-keys", tags=["api-keys"])


@router.get("", response_model=ListResponse[ApiKeyRead])
def list_api_keys(
    tenant_id: str | None = None,
    include_revoked: bool = False,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    auth=Depends(require_role("admin")),
    db: Session = Depends(get_db),
):
    return api_keys.list_response(
        db,
        resolve_tenant_id(auth, tenant_id),
        include_revoked,
        limit=limit,
        offset=offset,
    )


@router.post("", response_model=ApiKeyCreated, status_code=status.HTTP_201_CREATED)
def create_api_key(
    payload: ApiKeyCreate,
    tenant_id: str | None = None,
    auth=Depends(require_role("admin")),
    db: Session = Depends(get_db),
):
    api_key, raw_key = api_keys.create(
        db, resolve_tenant_id(auth, tenant_id), payload, created_by=auth["user_id"]
    )
    return ApiKeyCreated(
        **ApiKeyRead.model_validate(api_key).model_dump(), key=raw_key
    )


@router.post("/{key_id}/revoke", response_model=ApiKeyRead)
def revoke_api_key(
    key_id: str,
    tenant_id: str | None = None,
    auth=Depends(require_role("admin")),
    db: Session = Depends(get_db),
):
    return api_keys.revoke(
        db, resolve_tenant_id(auth, tenant_id), key_id, revoked_by=auth["user_id"]
    )
