from uuid import UUID

from pydantic import BaseModel, Field


class TenantSuspendResult(BaseModel):
    tenant_id: UUID
    tenant_name: str
    suspended_count: int = 0
    network_synced: int = 0
    errors: list[str] = Field(default_factory=list)


class AutoSuspendSummary(BaseModel):
    success: bool = True
    tenants_processed: int = 0
    total_suspended: int = 0
    total_network_synced: int = 0
    duration_ms: int = 0
    details: list[TenantSuspendResult] = Field(default_factory=list)
