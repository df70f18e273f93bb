from datetime import datetime
from typing import Any, Mapping
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from tripdesk_api.api.dependencies.security import require_gateway_source
from tripdesk_api.api.dependencies.services import get_gateway_client, get_notification_service
from tripdesk_api.core.errors import AppError, GatewayNotConfiguredError, NotFoundError, ValidationError
from tripdesk_api.db.session import get_session
from tripdesk_api.models.payment import Payment, PaymentProviderEnum, PaymentStatusEnum
from tripdesk_api.observability.payments import get_payment_store
from tripdesk_api.services.notifications import NotificationService
from tripdesk_api.services.payments import (
    GatewayClient,
    PaymentReconciliationService,
    normalize_webhook_payload,
)


router = APIRouter(prefix="/payments", tags=["payments"])

_FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


class WebhookAck(BaseModel):
    """Acknowledgement returned to the gateway once a notification is resolved."""

    status: str = Field("ok", description="Always 'ok' when the notification was handled")
    outcome: str = Field(..., description="Reconciliation outcome")


class PaymentStatusResponse(BaseModel):
    id: UUID
    order_id: UUID
    provider: PaymentProviderEnum
    status: PaymentStatusEnum
    amount_cents: int
    currency: str
    paid_at: datetime | None = None
    created_at: datetime

    @classmethod
    def from_payment(cls, payment: Payment) -> "PaymentStatusResponse":
        return cls(
            id=payment.id,
            order_id=payment.order_id,
            provider=payment.provider,
            status=payment.status,
            amount_cents=payment.amount_cents,
            currency=payment.currency,
            paid_at=payment.paid_at,
            created_at=payment.created_at,
        )


async def _read_webhook_body(request: Request) -> Mapping[str, Any]:
    content_type = request.headers.get("content-type", "").lower()
    if content_type.startswith(_FORM_CONTENT_TYPES):
        form = await request.form()
        return {key: value for key, value in form.items() if isinstance(value, str)}

    try:
        body = await request.json()
    except ValueError as error:
        raise ValidationError("Invalid JSON body") from error
    if not isinstance(body, dict):
        raise ValidationError("Webhook body must be an object")
    return body


@router.post(
    "/webhook",
    response_model=WebhookAck,
    dependencies=[Depends(require_gateway_source)],
)
@router.post(
    "/webhooks/gateway",
    response_model=WebhookAck,
    dependencies=[Depends(require_gateway_source)],
    include_in_schema=False,
)
async def handle_gateway_webhook(
    request: Request,
    db: AsyncSession = Depends(get_session),
    gateway: GatewayClient | None = Depends(get_gateway_client),
    notifications: NotificationService = Depends(get_notification_service),
) -> WebhookAck:
    """Receive a gateway status notification and reconcile the order.

    Resolved outcomes, including a verification failure, are acknowledged with
    200. Errors the gateway should retry (gateway unreachable, database
    failure) surface as 5xx through the application error handlers.
    """

    store = get_payment_store()
    session_id: str | None = None
    try:
        notification = normalize_webhook_payload(await _read_webhook_body(request))
        session_id = notification.session_id
        if gateway is None:
            raise GatewayNotConfiguredError("Payment gateway is not configured")

        service = PaymentReconciliationService(db, gateway, notifications)
        result = await service.process_webhook(notification)
    except AppError as exc:
        store.record_webhook("error", session_id=session_id, error=exc.message)
        raise

    store.record_webhook(result.outcome, session_id=session_id)
    logger.info(
        "Gateway webhook acknowledged",
        order_number=result.order_number,
        outcome=result.outcome,
        payment_id=str(result.payment_id) if result.payment_id else None,
    )
    return WebhookAck(outcome=result.outcome)


@router.get("/status/{payment_id}", response_model=PaymentStatusResponse)
async def get_payment_status(
    payment_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> PaymentStatusResponse:
    payment = await db.get(Payment, payment_id)
    if payment is None:
        raise NotFoundError("Payment", details={"payment_id": str(payment_id)})
    return PaymentStatusResponse.from_payment(payment)

