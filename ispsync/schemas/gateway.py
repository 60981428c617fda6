"""Shapes exposed through the tenant API gateway."""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ispsync.models.billing import BillStatus, PaymentMethod
from ispsync.models.customer import ConnectionStatus


class CustomerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    phone: str
    email: str | None = None
    address: str | None = None
    package_id: UUID | None = None
    connection_status: ConnectionStatus
    due_balance: Decimal
    advance_balance: Decimal
    join_date: date | None = None
    last_payment_date: date | None = None
    network_username: str | None = None
    last_network_sync_at: datetime | None = None
    last_network_sync_status: str | None = None
    created_at: datetime


class CustomerCreateIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = Field(min_length=1, max_length=160)
    phone: str = Field(min_length=1, max_length=40)
    email: str | None = Field(default=None, max_length=255)
    address: str | None = None
    package_id: UUID | None = None
    network_username: str | None = Field(default=None, max_length=120)


class CustomerUpdateIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str | None = Field(default=None, min_length=1, max_length=160)
    phone: str | None = Field(default=None, min_length=1, max_length=40)
    email: str | None = Field(default=None, max_length=255)
    address: str | None = None
    package_id: UUID | None = None
    connection_status: ConnectionStatus | None = None


class BillOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    customer_id: UUID
    invoice_number: str | None = None
    amount: Decimal
    due_date: date
    status: BillStatus
    billing_period_start: date | None = None
    billing_period_end: date | None = None
    paid_at: datetime | None = None
    created_at: datetime


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    customer_id: UUID
    bill_id: UUID | None = None
    amount: Decimal
    method: PaymentMethod
    reference: str | None = None
    notes: str | None = None
    paid_at: datetime


class PackageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    speed_label: str | None = None
    monthly_price: Decimal
    validity_days: int
    is_active: bool
