from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ispsync.models.api_access import ApiKeyScope


class ApiKeyCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    scope: ApiKeyScope = ApiKeyScope.read_only
    expires_at: datetime | None = None


class ApiKeyRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    name: str
    key_prefix: str
    scope: ApiKeyScope
    is_active: bool
    created_by: str | None = None
    last_used_at: datetime | None = None
    expires_at: datetime | None = None
    revoked_at: datetime | None = None
    created_at: datetime


class ApiKeyCreated(ApiKeyRead):
    # Only ever returned by the create call.
    key: str
