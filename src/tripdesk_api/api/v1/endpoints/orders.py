from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from tripdesk_api.api.dependencies.services import get_gateway_client, get_notification_service
from tripdesk_api.core.errors import AppError, NotFoundError
from tripdesk_api.db.session import get_session
from tripdesk_api.models.order import OrderStatusEnum
from tripdesk_api.models.payment import PaymentProviderEnum, PaymentStatusEnum
from tripdesk_api.observability.payments import get_payment_store
from tripdesk_api.services.notifications import NotificationService
from tripdesk_api.services.payments import GatewayClient, PaymentInitiationService
from tripdesk_api.services.payments.records import get_order_by_number, load_payments

from .payments import PaymentStatusResponse


router = APIRouter(prefix="/orders", tags=["orders"])


class PaymentInitiationRequest(BaseModel):
    provider: PaymentProviderEnum = Field(
        PaymentProviderEnum.EXTERNAL_GATEWAY,
        description="Payment method chosen by the customer",
    )
    force_new: bool = Field(False, description="Cancel open attempts and start a new one")


class PaymentInitiationResponse(BaseModel):
    payment_id: UUID
    provider: PaymentProviderEnum
    status: PaymentStatusEnum
    amount_cents: int
    currency: str
    message: str
    redirect_url: str | None = None


class OrderPaymentStatusResponse(BaseModel):
    order_number: str
    order_status: OrderStatusEnum
    total_cents: int
    currency: str
    payment: PaymentStatusResponse | None = None


@router.post(
    "/{order_id}/payments",
    response_model=PaymentInitiationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def initiate_payment(
    order_id: UUID,
    payload: PaymentInitiationRequest,
    response: Response,
    db: AsyncSession = Depends(get_session),
    gateway: GatewayClient | None = Depends(get_gateway_client),
    notifications: NotificationService = Depends(get_notification_service),
) -> PaymentInitiationResponse:
    """Start (or resume) payment for an order.

    Returns 201 when a new attempt was created and 200 when an existing paid or
    pending attempt is returned instead.
    """

    store = get_payment_store()
    service = PaymentInitiationService(db, gateway, notifications)
    try:
        result = await service.initiate(order_id, payload.provider, force_new=payload.force_new)
    except AppError as exc:
        store.record_initiation_failure(exc.message)
        raise

    if result.created:
        store.record_initiation_success(str(result.payment.id))
    else:
        response.status_code = status.HTTP_200_OK

    payment = result.payment
    return PaymentInitiationResponse(
        payment_id=payment.id,
        provider=payment.provider,
        status=payment.status,
        amount_cents=payment.amount_cents,
        currency=payment.currency,
        message=result.message,
        redirect_url=result.redirect_url,
    )


@router.get("/{order_number}/payment-status", response_model=OrderPaymentStatusResponse)
async def get_order_payment_status(
    order_number: str,
    db: AsyncSession = Depends(get_session),
) -> OrderPaymentStatusResponse:
    order = await get_order_by_number(db, order_number)
    if order is None:
        raise NotFoundError("Order", details={"order_number": order_number})

    payments = await load_payments(db, order.id)
    latest = payments[0] if payments else None
    return OrderPaymentStatusResponse(
        order_number=order.order_number,
        order_status=order.status,
        total_cents=order.total_cents,
        currency=order.currency,
        payment=PaymentStatusResponse.from_payment(latest) if latest else None,
    )
