from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class PaymentWebhookMetadata(BaseModel):
    bill_id: UUID
    customer_id: UUID
    tenant_id: UUID


class PaymentWebhookPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    transaction_id: str = Field(min_length=1, max_length=160)
    invoice_id: str | None = None
    status: str
    amount: Decimal
    fee: Decimal | None = None
    charged_amount: Decimal | None = None
    payment_method: str | None = None
    sender_number: str | None = None
    metadata: PaymentWebhookMetadata | None = None


class PaymentWebhookResult(BaseModel):
    success: bool = True
    processed: bool = False
    duplicate: bool = False
    message: str
    payment_id: UUID | None = None
    reactivated: bool = False
    network_sync: dict | None = None
