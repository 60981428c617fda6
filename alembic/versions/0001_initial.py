"""initial schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


connection_status = sa.Enum("active", "suspended", "pending", name="connectionstatus")
bill_status = sa.Enum("due", "partial", "paid", "overdue", name="billstatus")
payment_method = sa.Enum("cash", "bank", "mobile", "online", name="paymentmethod")
provider_type = sa.Enum("mikrotik", "radius", "custom", name="providertype")
sync_mode = sa.Enum("manual", "scheduled", "event_driven", name="syncmode")
sync_action = sa.Enum(
    "enable", "disable", "update_speed", "test_connection", name="syncaction"
)
sync_task_status = sa.Enum(
    "pending", "in_progress", "success", "failed", "retrying", name="synctaskstatus"
)
sync_log_status = sa.Enum("success", "failed", name="synclogstatus")
api_key_scope = sa.Enum("read_only", "read_write", name="apikeyscope")


def _timestamps(updated: bool = True) -> list[sa.Column]:
    columns = [sa.Column("created_at", sa.DateTime(timezone=True))]
    if updated:
        columns.append(sa.Column("updated_at", sa.DateTime(timezone=True)))
    return columns


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(160), nullable=False),
        sa.Column("subdomain", sa.String(80), nullable=False, unique=True),
        sa.Column("api_enabled", sa.Boolean, server_default=sa.true()),
        sa.Column("auto_suspend_days", sa.Integer, server_default="0"),
        sa.Column("currency", sa.String(3), server_default="BDT"),
        sa.Column("timezone", sa.String(64), server_default="UTC"),
        sa.Column("is_active", sa.Boolean, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "packages",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("name", sa.String(160), nullable=False),
        sa.Column("speed_label", sa.String(60)),
        sa.Column("monthly_price", sa.Numeric(12, 2), server_default="0"),
        sa.Column("validity_days", sa.Integer, server_default="30"),
        sa.Column("is_active", sa.Boolean, server_default=sa.true()),
        *_timestamps(updated=False),
    )
    op.create_index("ix_packages_tenant_id", "packages", ["tenant_id"])

    op.create_table(
        "customers",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("name", sa.String(160), nullable=False),
        sa.Column("phone", sa.String(40), nullable=False),
        sa.Column("email", sa.String(255)),
        sa.Column("address", sa.Text),
        sa.Column("package_id", UUID(as_uuid=True), sa.ForeignKey("packages.id")),
        sa.Column("connection_status", connection_status, server_default="pending"),
        sa.Column("due_balance", sa.Numeric(12, 2), server_default="0"),
        sa.Column("advance_balance", sa.Numeric(12, 2), server_default="0"),
        sa.Column("join_date", sa.Date),
        sa.Column("last_payment_date", sa.Date),
        sa.Column("network_username", sa.String(120)),
        sa.Column("network_password_encrypted", sa.Text),
        sa.Column("last_network_sync_at", sa.DateTime(timezone=True)),
        sa.Column("last_network_sync_status", sa.String(40)),
        *_timestamps(),
    )
    op.create_index("ix_customers_tenant_id", "customers", ["tenant_id"])
    op.create_index(
        "ix_customers_tenant_status", "customers", ["tenant_id", "connection_status"]
    )

    op.create_table(
        "bills",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column(
            "customer_id", UUID(as_uuid=True), sa.ForeignKey("customers.id"), nullable=False
        ),
        sa.Column("invoice_number", sa.String(60)),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("due_date", sa.Date, nullable=False),
        sa.Column("status", bill_status, server_default="due"),
        sa.Column("billing_period_start", sa.Date),
        sa.Column("billing_period_end", sa.Date),
        sa.Column("paid_at", sa.DateTime(timezone=True)),
        sa.Column("notes", sa.Text),
        *_timestamps(),
    )
    op.create_index("ix_bills_customer_id", "bills", ["customer_id"])
    op.create_index(
        "ix_bills_tenant_status_due", "bills", ["tenant_id", "status", "due_date"]
    )

    op.create_table(
        "payments",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column(
            "customer_id", UUID(as_uuid=True), sa.ForeignKey("customers.id"), nullable=False
        ),
        sa.Column("bill_id", UUID(as_uuid=True), sa.ForeignKey("bills.id")),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("method", payment_method, server_default="cash"),
        sa.Column("reference", sa.String(160)),
        sa.Column("notes", sa.Text),
        sa.Column("paid_at", sa.DateTime(timezone=True)),
        *_timestamps(updated=False),
        sa.UniqueConstraint("tenant_id", "reference", name="uq_payments_tenant_reference"),
    )
    op.create_index("ix_payments_tenant_id", "payments", ["tenant_id"])
    op.create_index("ix_payments_customer_id", "payments", ["customer_id"])

    op.create_table(
        "network_integrations",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("name", sa.String(160), nullable=False),
        sa.Column("provider_type", provider_type, nullable=False),
        sa.Column("host", sa.String(255)),
        sa.Column("port", sa.Integer),
        sa.Column("username", sa.String(120)),
        sa.Column("credentials_encrypted", sa.Text),
        sa.Column("mikrotik_use_ssl", sa.Boolean, server_default=sa.false()),
        sa.Column("mikrotik_ppp_profile", sa.String(120)),
        sa.Column("mikrotik_address_list", sa.String(120)),
        sa.Column("radius_secret_encrypted", sa.Text),
        sa.Column("radius_auth_port", sa.Integer, server_default="1812"),
        sa.Column("radius_acct_port", sa.Integer, server_default="1813"),
        sa.Column("radius_db_url_encrypted", sa.Text),
        sa.Column("api_base_url", sa.String(500)),
        sa.Column("sync_mode", sync_mode, server_default="manual"),
        sa.Column("sync_interval_minutes", sa.Integer),
        sa.Column("is_enabled", sa.Boolean, server_default=sa.false()),
        sa.Column("last_sync_at", sa.DateTime(timezone=True)),
        sa.Column("last_sync_status", sa.String(40)),
        sa.Column("archived_at", sa.DateTime(timezone=True)),
        *_timestamps(),
    )
    op.create_index(
        "ix_network_integrations_tenant_id", "network_integrations", ["tenant_id"]
    )
    op.create_index(
        "uq_network_integrations_tenant_enabled",
        "network_integrations",
        ["tenant_id"],
        unique=True,
        postgresql_where=sa.text("is_enabled"),
        sqlite_where=sa.text("is_enabled = 1"),
    )

    op.create_table(
        "network_sync_tasks",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column(
            "integration_id",
            UUID(as_uuid=True),
            sa.ForeignKey("network_integrations.id"),
            nullable=False,
        ),
        sa.Column("customer_id", UUID(as_uuid=True), sa.ForeignKey("customers.id")),
        sa.Column("action", sync_action, nullable=False),
        sa.Column("status", sync_task_status, server_default="pending"),
        sa.Column("retry_count", sa.Integer, server_default="0"),
        sa.Column("max_retries", sa.Integer, server_default="3"),
        sa.Column("priority", sa.Integer, server_default="0"),
        sa.Column("payload", sa.JSON),
        sa.Column("last_error", sa.Text),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True)),
        sa.Column("started_at", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        *_timestamps(),
    )
    op.create_index("ix_network_sync_tasks_tenant_id", "network_sync_tasks", ["tenant_id"])
    op.create_index(
        "ix_network_sync_tasks_due", "network_sync_tasks", ["status", "next_attempt_at"]
    )
    op.create_index(
        "uq_network_sync_tasks_in_flight",
        "network_sync_tasks",
        ["tenant_id", "customer_id", "integration_id"],
        unique=True,
        postgresql_where=sa.text("status = 'in_progress'"),
        sqlite_where=sa.text("status = 'in_progress'"),
    )

    op.create_table(
        "network_sync_logs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column(
            "integration_id", UUID(as_uuid=True), sa.ForeignKey("network_integrations.id")
        ),
        sa.Column("customer_id", UUID(as_uuid=True), sa.ForeignKey("customers.id")),
        sa.Column("task_id", UUID(as_uuid=True), sa.ForeignKey("network_sync_tasks.id")),
        sa.Column("action", sync_action, nullable=False),
        sa.Column("status", sync_log_status, nullable=False),
        sa.Column("error_message", sa.Text),
        sa.Column("request_payload", sa.JSON),
        sa.Column("response_payload", sa.JSON),
        sa.Column("retry_count", sa.Integer, server_default="0"),
        sa.Column("next_retry_at", sa.DateTime(timezone=True)),
        sa.Column("triggered_by", sa.String(40)),
        sa.Column("triggered_by_user", sa.String(120)),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_ms", sa.Integer, server_default="0"),
        *_timestamps(updated=False),
    )
    op.create_index(
        "ix_network_sync_logs_customer_id", "network_sync_logs", ["customer_id"]
    )
    op.create_index("ix_network_sync_logs_task_id", "network_sync_logs", ["task_id"])
    op.create_index(
        "ix_network_sync_logs_tenant_created",
        "network_sync_logs",
        ["tenant_id", "created_at"],
    )

    op.create_table(
        "api_keys",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("key_hash", sa.String(64), nullable=False, unique=True),
        sa.Column("key_prefix", sa.String(20), nullable=False),
        sa.Column("scope", api_key_scope, server_default="read_only"),
        sa.Column("is_active", sa.Boolean, server_default=sa.true()),
        sa.Column("created_by", sa.String(120)),
        sa.Column("last_used_at", sa.DateTime(timezone=True)),
        sa.Column("expires_at", sa.DateTime(timezone=True)),
        sa.Column("revoked_at", sa.DateTime(timezone=True)),
        sa.Column("revoked_by", sa.String(120)),
        *_timestamps(updated=False),
    )
    op.create_index("ix_api_keys_tenant_id", "api_keys", ["tenant_id"])

    op.create_table(
        "api_logs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.id")),
        sa.Column("api_key_id", UUID(as_uuid=True), sa.ForeignKey("api_keys.id")),
        sa.Column("endpoint", sa.String(255), nullable=False),
        sa.Column("method", sa.String(10), nullable=False),
        sa.Column("status_code", sa.Integer, nullable=False),
        sa.Column("response_time_ms", sa.Integer, server_default="0"),
        sa.Column("request_ip", sa.String(64)),
        sa.Column("user_agent", sa.String(255)),
        sa.Column("error_message", sa.Text),
        *_timestamps(updated=False),
    )
    op.create_index("ix_api_logs_tenant_id", "api_logs", ["tenant_id"])
    op.create_index("ix_api_logs_key_created", "api_logs", ["api_key_id", "created_at"])


def downgrade() -> None:
    for table in (
        "api_logs",
        "api_keys",
        "network_sync_logs",
        "network_sync_tasks",
        "network_integrations",
        "payments",
        "bills",
        "customers",
        "packages",
        "tenants",
    ):
        op.drop_table(table)
    bind = op.get_bind()
    for enum_type in (
        api_key_scope,
        sync_log_status,
        sync_task_status,
        sync_action,
        sync_mode,
        provider_type,
        payment_method,
        bill_status,
        connection_status,
    ):
        enum_type.drop(bind, checkfirst=True)
