"""Payment initiation for gateway and manual transfer checkouts."""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from tripdesk_api.core.clock import utcnow
from tripdesk_api.core.errors import ConflictError, GatewayNotConfiguredError
from tripdesk_api.core.settings import Settings, settings as default_settings
from tripdesk_api.models.order import Order, OrderStatusEnum
from tripdesk_api.models.payment import Payment, PaymentProviderEnum, PaymentStatusEnum
from tripdesk_api.services.notifications import NotificationService

from .audit import merge_raw
from .gateway import GatewayClient, RegistrationRequest
from .records import first_with_status, load_payments, lock_order

BANK_DETAILS_FALLBACK = "Bank account details will be sent by our staff."


@dataclass(frozen=True)
class InitiationResult:
    payment: Payment
    created: bool
    message: str
    redirect_url: str | None = None


def new_gateway_session_id(order_number: str) -> str:
    """Per-attempt gateway session id, e.g. ``DTS-2026-000123-9f2c01ab``."""

    return f"{order_number}-{secrets.token_hex(4)}"


class PaymentInitiationService:
    """Creates payment attempts for an order, reusing open ones unless asked not to."""

    def __init__(
        self,
        db_session: AsyncSession,
        gateway: GatewayClient | None,
        notifications: NotificationService | None = None,
        *,
        config: Settings | None = None,
    ) -> None:
        self.db = db_session
        self.gateway = gateway
        self.notifications = notifications
        self.config = config or default_settings

    async def initiate(
        self,
        order_id: UUID,
        provider: PaymentProviderEnum,
        *,
        force_new: bool = False,
    ) -> InitiationResult:
        # The order row lock is held until commit, so concurrent requests for
        # the same order see each other's attempts.
        order = await lock_order(self.db, order_id)
        try:
            if order.status == OrderStatusEnum.CANCELLED:
                raise ConflictError("Order is cancelled", details={"order_number": order.order_number})

            payments = await load_payments(self.db, order.id, provider=provider)
            paid = first_with_status(payments, PaymentStatusEnum.PAID)
            if paid is not None:
                await self.db.commit()
                return InitiationResult(payment=paid, created=False, message="Payment already paid")
            if order.status == OrderStatusEnum.CONFIRMED:
                raise ConflictError("Order is already confirmed", details={"order_number": order.order_number})

            pending = [payment for payment in payments if payment.status == PaymentStatusEnum.PENDING]
            if pending and not force_new:
                latest = pending[0]
                await self.db.commit()
                return InitiationResult(
                    payment=latest,
                    created=False,
                    message="Payment already initiated",
                    redirect_url=self._redirect_url(latest),
                )

            if provider == PaymentProviderEnum.EXTERNAL_GATEWAY:
                payment, redirect_url = await self._initiate_gateway(order)
            else:
                payment, redirect_url = await self._initiate_manual(order), None

            for stale in pending:
                stale.status = PaymentStatusEnum.CANCELLED
                stale.raw = merge_raw(stale.raw, supersededBy=str(payment.id), cancelledAt=utcnow().isoformat())
            if order.status == OrderStatusEnum.DRAFT:
                order.status = OrderStatusEnum.SUBMITTED
                order.submitted_at = utcnow()

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        logger.info(
            "Payment initiated",
            order_number=order.order_number,
            payment_id=str(payment.id),
            provider=provider.value,
            superseded=len(pending),
        )

        if provider == PaymentProviderEnum.MANUAL_TRANSFER and self.notifications is not None:
            await self.notifications.send_payment_instructions(
                order.customer_email,
                order.order_number,
                order.total_cents,
                order.currency,
                self._bank_details(),
            )

        return InitiationResult(
            payment=payment,
            created=True,
            message="Payment created",
            redirect_url=redirect_url,
        )

    async def _initiate_gateway(self, order: Order) -> tuple[Payment, str]:
        if self.gateway is None:
            raise GatewayNotConfiguredError("Payment gateway is not configured")

        session_id = new_gateway_session_id(order.order_number)
        registration = await self.gateway.register_transaction(
            RegistrationRequest(
                session_id=session_id,
                amount=order.total_cents,
                currency=order.currency,
                description=f"Order {order.order_number}",
                email=order.customer_email,
                client=order.customer_name or order.customer_email,
                phone=order.customer_phone,
                url_return=f"{self.config.frontend_url.rstrip('/')}/platnosc.html?order={order.order_number}",
                url_status=f"{self.config.server_public_url.rstrip('/')}/api/v1/payments/webhook",
                time_limit_minutes=self.config.gateway_payment_time_limit_minutes,
            )
        )

        payment = Payment(
            order_id=order.id,
            provider=PaymentProviderEnum.EXTERNAL_GATEWAY,
            status=PaymentStatusEnum.PENDING,
            amount_cents=order.total_cents,
            currency=order.currency,
            external_id=registration.token,
            raw=merge_raw(
                registration.raw,
                _meta={"gatewaySessionId": session_id, "orderNumber": order.order_number},
            ),
        )
        self.db.add(payment)
        await self.db.flush()
        return payment, self.gateway.payment_url(registration.token)

    async def _initiate_manual(self, order: Order) -> Payment:
        payment = Payment(
            order_id=order.id,
            provider=PaymentProviderEnum.MANUAL_TRANSFER,
            status=PaymentStatusEnum.PENDING,
            amount_cents=order.total_cents,
            currency=order.currency,
            raw={"_meta": {"orderNumber": order.order_number}},
        )
        self.db.add(payment)
        await self.db.flush()
        return payment

    def _redirect_url(self, payment: Payment) -> str | None:
        if payment.provider != PaymentProviderEnum.EXTERNAL_GATEWAY or not payment.external_id:
            return None
        if self.gateway is None:
            return None
        return self.gateway.payment_url(payment.external_id)

    def _bank_details(self) -> str:
        account = self.config.bank_account.strip()
        if not account:
            return BANK_DETAILS_FALLBACK
        holder = self.config.bank_account_holder.strip()
        return f"{holder}\n{account}" if holder else account
