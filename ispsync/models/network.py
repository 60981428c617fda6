import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ispsync.db import Base


class ProviderType(enum.Enum):
    mikrotik = "mikrotik"
    radius = "radius"
    custom = "custom"


class SyncMode(enum.Enum):
    manual = "manual"
    scheduled = "scheduled"
    event_driven = "event_driven"


class SyncAction(enum.Enum):
    enable = "enable"
    disable = "disable"
    update_speed = "update_speed"
    test_connection = "test_connection"


class SyncTaskStatus(enum.Enum):
    pending = "pending"
    in_progress = "in_progress"
    success = "success"
    failed = "failed"
    retrying = "retrying"


class SyncLogStatus(enum.Enum):
    success = "success"
    failed = "failed"


class NetworkIntegration(Base):
    __tablename__ = "network_integrations"
    __table_args__ = (
        # One policy source of truth per tenant.
        Index(
            "uq_network_integrations_tenant_enabled",
            "tenant_id",
            unique=True,
            postgresql_where=text("is_enabled"),
            sqlite_where=text("is_enabled = 1"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    provider_type: Mapped[ProviderType] = mapped_column(
        Enum(ProviderType), nullable=False
    )
    host: Mapped[str | None] = mapped_column(String(255))
    port: Mapped[int | None] = mapped_column(Integer)
    username: Mapped[str | None] = mapped_column(String(120))
    credentials_encrypted: Mapped[str | None] = mapped_column(Text)

    mikrotik_use_ssl: Mapped[bool] = mapped_column(Boolean, default=False)
    mikrotik_ppp_profile: Mapped[str | None] = mapped_column(String(120))
    mikrotik_address_list: Mapped[str | None] = mapped_column(String(120))

    radius_secret_encrypted: Mapped[str | None] = mapped_column(Text)
    radius_auth_port: Mapped[int] = mapped_column(Integer, default=1812)
    radius_acct_port: Mapped[int] = mapped_column(Integer, default=1813)
    radius_db_url_encrypted: Mapped[str | None] = mapped_column(Text)

    api_base_url: Mapped[str | None] = mapped_column(String(500))

    sync_mode: Mapped[SyncMode] = mapped_column(Enum(SyncMode), default=SyncMode.manual)
    sync_interval_minutes: Mapped[int | None] = mapped_column(Integer)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_sync_status: Mapped[str | None] = mapped_column(String(40))
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )

    tenant = relationship("Tenant", back_populates="integrations")

    @property
    def has_credentials(self) -> bool:
        return bool(self.credentials_encrypted or self.radius_secret_encrypted)


class NetworkSyncTask(Base):
    __tablename__ = "network_sync_tasks"
    __table_args__ = (
        # The in-flight lock: one in_progress task per (tenant, customer, integration).
        Index(
            "uq_network_sync_tasks_in_flight",
            "tenant_id",
            "customer_id",
            "integration_id",
            unique=True,
            postgresql_where=text("status = 'in_progress'"),
            sqlite_where=text("status = 'in_progress'"),
        ),
        Index("ix_network_sync_tasks_due", "status", "next_attempt_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True
    )
    integration_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("network_integrations.id"), nullable=False
    )
    customer_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("customers.id")
    )
    action: Mapped[SyncAction] = mapped_column(Enum(SyncAction), nullable=False)
    status: Mapped[SyncTaskStatus] = mapped_column(
        Enum(SyncTaskStatus), default=SyncTaskStatus.pending
    )
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, default=3)
    priority: Mapped[int] = mapped_column(Integer, default=0)
    payload: Mapped[dict | None] = mapped_column(JSON)
    last_error: Mapped[str | None] = mapped_column(Text)
    next_attempt_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )

    integration = relationship("NetworkIntegration")
    customer = relationship("Customer")
    logs = relationship("NetworkSyncLog", back_populates="task")


class NetworkSyncLog(Base):
    """One row per executor attempt. Rows are never updated."""

    __tablename__ = "network_sync_logs"
    __table_args__ = (
        Index("ix_network_sync_logs_tenant_created", "tenant_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False
    )
    # Kept nullable: the referenced integration may be gone when the attempt ran.
    integration_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("network_integrations.id")
    )
    customer_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("customers.id"), index=True
    )
    task_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("network_sync_tasks.id"), index=True
    )
    action: Mapped[SyncAction] = mapped_column(Enum(SyncAction), nullable=False)
    status: Mapped[SyncLogStatus] = mapped_column(Enum(SyncLogStatus), nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text)
    request_payload: Mapped[dict | None] = mapped_column(JSON)
    response_payload: Mapped[dict | None] = mapped_column(JSON)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    triggered_by: Mapped[str | None] = mapped_column(String(40))
    triggered_by_user: Mapped[str | None] = mapped_column(String(120))
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_ms: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )

    task = relationship("NetworkSyncTask", back_populates="logs")
