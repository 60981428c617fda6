from fastapi import Depends
from slowapi import Limiter
from slowapi.util import get_remote_address

from ispsync.db import get_db
from ispsync.services.auth_dependencies import (
    require_role,
    require_scheduler_trigger,
    require_user_auth,
    resolve_tenant_id,
)

limiter = Limiter(key_func=get_remote_address)


def get_current_user(auth=Depends(require_user_auth)):
    """Authenticated operator: user_id, tenant_id and roles."""
    return auth


__all__ = [
    "get_current_user",
    "get_db",
    "limiter",
    "require_role",
    "require_scheduler_trigger",
    "require_user_auth",
    "resolve_tenant_id",
]
