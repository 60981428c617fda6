"""FastAPI dependencies for the operator API."""

import hmac

from fastapi import Depends, Header, HTTPException, Request

from ispsync.config import settings
from ispsync.services.auth_flow import OPERATOR_ROLES, decode_access_token
from ispsync.services.common import coerce_uuid


def _unauthorized(detail: str = "Unauthorized") -> HTTPException:
    return HTTPException(status_code=401, detail=detail)


def _bearer_token(authorization: str | None) -> str:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise _unauthorized()
    return token.strip()


def _parse_auth(authorization: str | None, request: Request | None) -> dict:
    claims = decode_access_token(_bearer_token(authorization))
    user_id = claims.get("sub")
    if not user_id:
        raise _unauthorized()
    roles = claims.get("roles")
    raw_tenant = claims.get("tenant_id")
    try:
        tenant_id = coerce_uuid(raw_tenant) if raw_tenant else None
    except (TypeError, ValueError) as exc:
        raise _unauthorized("Invalid token") from exc
    if request is not None:
        request.state.actor_id = str(user_id)
        request.state.tenant_id = str(tenant_id) if tenant_id else None
    return {
        "user_id": str(user_id),
        "tenant_id": tenant_id,
        "roles": [str(role) for role in roles] if isinstance(roles, list) else [],
    }


def require_user_auth(
    authorization: str | None = Header(default=None),
    request: Request = None,
):
    auth = _parse_auth(authorization, request)
    if not set(auth["roles"]) & set(OPERATOR_ROLES):
        raise HTTPException(status_code=403, detail="Forbidden")
    return auth


def is_super_admin(auth: dict) -> bool:
    return "super_admin" in (auth.get("roles") or [])


def can_access_tenant(auth: dict, tenant_id) -> bool:
    if is_super_admin(auth):
        return True
    own = auth.get("tenant_id")
    return own is not None and own == coerce_uuid(tenant_id)


def resolve_tenant_id(auth: dict, requested=None):
    """Tenant an operator call acts on: the requested one, else the caller's own."""
    if requested is None:
        if auth.get("tenant_id") is None:
            raise HTTPException(status_code=400, detail="tenant_id is required")
        return auth["tenant_id"]
    try:
        tenant_id = coerce_uuid(requested)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail="Invalid tenant_id") from exc
    if not can_access_tenant(auth, tenant_id):
        raise HTTPException(status_code=403, detail="Forbidden")
    return tenant_id


def require_role(role_name: str):
    def _require_role(auth=Depends(require_user_auth)):
        if role_name in auth["roles"] or is_super_admin(auth):
            return auth
        raise HTTPException(status_code=403, detail="Forbidden")

    return _require_role


def require_scheduler_trigger(
    authorization: str | None = Header(default=None),
    x_cron_secret: str | None = Header(default=None),
    request: Request = None,
):
    """Super-admin token or the shared cron secret."""
    secret = settings.cron_secret
    if x_cron_secret and secret and hmac.compare_digest(x_cron_secret, secret):
        return {"actor_type": "cron", "actor_id": "cron"}
    if not authorization:
        raise _unauthorized()
    auth = _parse_auth(authorization, request)
    if not is_super_admin(auth):
        raise HTTPException(status_code=403, detail="Forbidden")
    return {"actor_type": "user", "actor_id": auth["user_id"]}
