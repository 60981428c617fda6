from fastapi import APIRouter, Depends, Header, Request
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from ispsync.api.deps import get_db
from ispsync.schemas.payments import PaymentWebhookPayload, PaymentWebhookResult
from ispsync.services import payments as payments_service

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/payments", response_model=PaymentWebhookResult)
async def payment_webhook(
    request: Request,
    x_webhook_signature: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    # The signature covers the exact bytes the provider sent.
    raw_body = await request.body()
    payments_service.verify_signature(raw_body, x_webhook_signature)
    try:
        payload = PaymentWebhookPayload.model_validate_json(raw_body)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors()) from exc
    return await run_in_threadpool(payments_service.process_payment_webhook, db, payload)
