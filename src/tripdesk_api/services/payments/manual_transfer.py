"""Operator actions for orders paid by bank transfer."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from tripdesk_api.core.clock import utcnow
from tripdesk_api.core.errors import ConflictError, ValidationError
from tripdesk_api.models.order import OrderStatusEnum
from tripdesk_api.models.payment import PaymentProviderEnum, PaymentStatusEnum
from tripdesk_api.services.notifications import NotificationService
from tripdesk_api.services.reservations.cancellation import CancellationSummary, cancel_order

from .audit import merge_raw
from .confirmation import confirm_order
from .records import lock_order, load_payments


@dataclass(frozen=True)
class ManualConfirmation:
    order_number: str
    payment_id: UUID
    already_paid: bool
    points_spent: int = 0
    points_earned: int = 0


@dataclass(frozen=True)
class ManualCancellation:
    order_number: str
    already_cancelled: bool
    summary: CancellationSummary


class ManualTransferService:
    """Confirms or cancels orders on an operator's instruction."""

    def __init__(self, db_session: AsyncSession, notifications: NotificationService | None = None) -> None:
        self.db = db_session
        self.notifications = notifications

    async def mark_paid(self, order_id: UUID) -> ManualConfirmation:
        now = utcnow()
        async with self.db.begin():
            order = await lock_order(self.db, order_id)
            payments = await load_payments(self.db, order.id)

            if any(
                p.provider == PaymentProviderEnum.EXTERNAL_GATEWAY and p.status == PaymentStatusEnum.PAID
                for p in payments
            ):
                raise ConflictError(
                    "Order already paid via gateway",
                    details={"order_number": order.order_number},
                )
            if order.status == OrderStatusEnum.CANCELLED:
                raise ConflictError("Order is cancelled", details={"order_number": order.order_number})

            manual = [p for p in payments if p.provider == PaymentProviderEnum.MANUAL_TRANSFER]
            if not manual:
                raise ValidationError(
                    "Order has no manual transfer payment",
                    details={"order_number": order.order_number},
                )

            paid = next((p for p in manual if p.status == PaymentStatusEnum.PAID), None)
            already_paid = paid is not None
            payment = paid or manual[0]
            if not already_paid:
                payment.status = PaymentStatusEnum.PAID
                payment.paid_at = now
                payment.raw = merge_raw(payment.raw, markedPaidAt=now.isoformat())
                for other in payments:
                    if other is not payment and other.status == PaymentStatusEnum.PENDING:
                        other.status = PaymentStatusEnum.CANCELLED
                        other.raw = merge_raw(other.raw, cancelledAt=now.isoformat(), cancelReason="paid_manually")

            applied = await confirm_order(self.db, order, now=now)
            result = ManualConfirmation(
                order_number=order.order_number,
                payment_id=payment.id,
                already_paid=already_paid,
                points_spent=applied.spent,
                points_earned=applied.earned,
            )
            email = order.customer_email
            total_cents = order.total_cents
            currency = order.currency

        logger.info(
            "Manual transfer marked paid",
            order_number=result.order_number,
            payment_id=str(result.payment_id),
            already_paid=result.already_paid,
        )
        if not result.already_paid and self.notifications is not None:
            await self.notifications.send_payment_confirmation(
                email,
                result.order_number,
                total_cents,
                currency,
                result.points_earned,
            )
        return result

    async def cancel(self, order_id: UUID, *, reason: str = "cancelled_by_operator") -> ManualCancellation:
        async with self.db.begin():
            order = await lock_order(self.db, order_id)
            payments = await load_payments(self.db, order.id)
            if any(p.status == PaymentStatusEnum.PAID for p in payments):
                raise ConflictError("Order has a paid payment", details={"order_number": order.order_number})
            if order.status == OrderStatusEnum.CANCELLED:
                return ManualCancellation(
                    order_number=order.order_number,
                    already_cancelled=True,
                    summary=CancellationSummary(),
                )
            summary = await cancel_order(self.db, order, payments, reason=reason)
            return ManualCancellation(order_number=order.order_number, already_cancelled=False, summary=summary)
