from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ispsync.models.network import (
    ProviderType,
    SyncAction,
    SyncLogStatus,
    SyncMode,
    SyncTaskStatus,
)


class NetworkIntegrationBase(BaseModel):
    name: str = Field(min_length=1, max_length=160)
    provider_type: ProviderType
    host: str | None = Field(default=None, max_length=255)
    port: int | None = Field(default=None, ge=1, le=65535)
    username: str | None = Field(default=None, max_length=120)
    mikrotik_use_ssl: bool = False
    mikrotik_ppp_profile: str | None = Field(default=None, max_length=120)
    mikrotik_address_list: str | None = Field(default=None, max_length=120)
    radius_auth_port: int = Field(default=1812, ge=1, le=65535)
    radius_acct_port: int = Field(default=1813, ge=1, le=65535)
    api_base_url: str | None = Field(default=None, max_length=500)
    sync_mode: SyncMode = SyncMode.manual
    sync_interval_minutes: int | None = Field(default=None, ge=1)
    is_enabled: bool = False


class NetworkIntegrationCreate(NetworkIntegrationBase):
    password: str | None = None
    radius_secret: str | None = None
    radius_db_url: str | None = None


class NetworkIntegrationUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=160)
    provider_type: ProviderType | None = None
    host: str | None = Field(default=None, max_length=255)
    port: int | None = Field(default=None, ge=1, le=65535)
    username: str | None = Field(default=None, max_length=120)
    password: str | None = None
    mikrotik_use_ssl: bool | None = None
    mikrotik_ppp_profile: str | None = Field(default=None, max_length=120)
    mikrotik_address_list: str | None = Field(default=None, max_length=120)
    radius_secret: str | None = None
    radius_db_url: str | None = None
    radius_auth_port: int | None = Field(default=None, ge=1, le=65535)
    radius_acct_port: int | None = Field(default=None, ge=1, le=65535)
    api_base_url: str | None = Field(default=None, max_length=500)
    sync_mode: SyncMode | None = None
    sync_interval_minutes: int | None = Field(default=None, ge=1)
    is_enabled: bool | None = None


class NetworkIntegrationRead(NetworkIntegrationBase):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    has_credentials: bool = False
    last_sync_at: datetime | None = None
    last_sync_status: str | None = None
    archived_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class IntegrationToggle(BaseModel):
    enabled: bool


class SyncTaskRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    integration_id: UUID
    customer_id: UUID | None = None
    action: SyncAction
    status: SyncTaskStatus
    retry_count: int
    max_retries: int
    priority: int
    last_error: str | None = None
    next_attempt_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime


class SyncLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    integration_id: UUID | None = None
    customer_id: UUID | None = None
    task_id: UUID | None = None
    action: SyncAction
    status: SyncLogStatus
    error_message: str | None = None
    request_payload: dict | None = None
    response_payload: dict | None = None
    retry_count: int
    next_retry_at: datetime | None = None
    triggered_by: str | None = None
    triggered_by_user: str | None = None
    started_at: datetime
    completed_at: datetime
    duration_ms: int


class ManualSyncRequest(BaseModel):
    action: SyncAction
    integration_id: UUID
    customer_id: UUID | None = None
    triggered_by: str = Field(default="manual", max_length=40)


class ManualSyncResponse(BaseModel):
    success: bool
    message: str
    data: dict | None = None
    response_time_ms: int = 0
    task_id: UUID | None = None
    log_id: UUID | None = None
    queued: bool = False


class QueueDrainResult(BaseModel):
    claimed: int = 0
    succeeded: int = 0
    failed: int = 0
    retrying: int = 0
