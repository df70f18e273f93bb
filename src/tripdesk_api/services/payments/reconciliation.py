"""Webhook-driven reconciliation of orders, payments and loyalty points."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict
from uuid import UUID

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tripdesk_api.core.clock import utcnow
from tripdesk_api.core.errors import InfrastructureError, NotFoundError, ValidationError
from tripdesk_api.models.order import OrderStatusEnum
from tripdesk_api.models.payment import Payment, PaymentProviderEnum, PaymentStatusEnum
from tripdesk_api.services.notifications import NotificationService

from .audit import merge_raw
from .confirmation import confirm_order
from .gateway import GatewayClient, VerificationRequest, VerificationResult
from .records import first_with_status, get_order_by_number, load_payments, lock_order
from .webhook import WebhookNotification


OUTCOME_PAID = "paid"
OUTCOME_ALREADY_PAID = "already_paid"
OUTCOME_VERIFICATION_FAILED = "verification_failed"
OUTCOME_AMOUNT_MISMATCH = "amount_mismatch"
OUTCOME_ORDER_CANCELLED = "order_cancelled"


@dataclass(frozen=True)
class _OrderSnapshot:
    id: UUID
    order_number: str
    total_cents: int
    currency: str
    customer_email: str


@dataclass(frozen=True)
class ReconciliationResult:
    outcome: str
    order_number: str
    payment_id: UUID | None = None
    points_spent: int = 0
    points_earned: int = 0
    already_paid: bool = False
    signature_valid: bool = True

    @property
    def confirmed(self) -> bool:
        return self.outcome in {OUTCOME_PAID, OUTCOME_ALREADY_PAID}


class PaymentReconciliationService:
    """Applies a gateway notification to the order it belongs to.

    The remote verify call happens outside any database transaction. Every
    state change afterwards is made in one transaction that holds the order
    row lock, so duplicate deliveries and the expiry sweeper serialize on it.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        gateway: GatewayClient,
        notifications: NotificationService | None = None,
    ) -> None:
        self.db = db_session
        self.gateway = gateway
        self.notifications = notifications

    async def process_webhook(self, notification: WebhookNotification) -> ReconciliationResult:
        snapshot = await self._resolve_order(notification)
        signature_valid = self.gateway.verify_signature(notification)

        try:
            gateway_order_id = int(notification.gateway_order_id)
        except ValueError as error:
            raise ValidationError(
                "Gateway order id must be numeric",
                details={"order_id": notification.gateway_order_id},
            ) from error

        verification = await self.gateway.verify_transaction(
            VerificationRequest(
                session_id=notification.session_id,
                gateway_order_id=gateway_order_id,
                amount=notification.amount,
                currency=notification.currency,
            )
        )

        if not verification.succeeded:
            if not signature_valid:
                logger.warning(
                    "Rejected unverified gateway notification with invalid signature",
                    order_number=snapshot.order_number,
                    session_id=notification.session_id,
                    verify_status=verification.status,
                )
                raise ValidationError(
                    "Invalid signature",
                    details={"session_id": notification.session_id},
                )
            payment_id = await self._record_failed_attempt(snapshot, notification, verification)
            logger.warning(
                "Gateway verification failed",
                order_number=snapshot.order_number,
                session_id=notification.session_id,
                verify_status=verification.status,
                verify_message=verification.message,
            )
            return ReconciliationResult(
                outcome=OUTCOME_VERIFICATION_FAILED,
                order_number=snapshot.order_number,
                payment_id=payment_id,
                signature_valid=signature_valid,
            )

        if notification.amount != snapshot.total_cents:
            mismatch = {"expected": snapshot.total_cents, "received": notification.amount}
            payment_id = await self._record_failed_attempt(
                snapshot, notification, verification, amount_mismatch=mismatch
            )
            logger.error(
                "Gateway amount mismatch",
                order_number=snapshot.order_number,
                session_id=notification.session_id,
                **mismatch,
            )
            return ReconciliationResult(
                outcome=OUTCOME_AMOUNT_MISMATCH,
                order_number=snapshot.order_number,
                payment_id=payment_id,
                signature_valid=signature_valid,
            )

        result = await self._confirm(snapshot, notification, verification, signature_valid=signature_valid)

        if result.outcome == OUTCOME_PAID and self.notifications is not None:
            await self.notifications.send_payment_confirmation(
                snapshot.customer_email,
                snapshot.order_number,
                snapshot.total_cents,
                snapshot.currency,
                result.points_earned,
            )
        return result

    async def _resolve_order(self, notification: WebhookNotification) -> _OrderSnapshot:
        order_number = notification.order_number
        order = await get_order_by_number(self.db, order_number)
        if order is None:
            logger.warning(
                "Gateway notification for unknown order",
                order_number=order_number,
                session_id=notification.session_id,
            )
            raise NotFoundError("Order", details={"order_number": order_number})

        snapshot = _OrderSnapshot(
            id=order.id,
            order_number=order.order_number,
            total_cents=order.total_cents,
            currency=order.currency,
            customer_email=order.customer_email,
        )
        # Release the read transaction before the remote call.
        await self.db.commit()
        return snapshot

    @staticmethod
    def _audit_fields(notification: WebhookNotification, verification: VerificationResult) -> Dict[str, Any]:
        return {
            "webhook": notification.payload,
            "gatewayOrderId": notification.gateway_order_id,
            "verify": verification.raw,
        }

    async def _record_failed_attempt(
        self,
        snapshot: _OrderSnapshot,
        notification: WebhookNotification,
        verification: VerificationResult,
        *,
        amount_mismatch: Dict[str, int] | None = None,
    ) -> UUID | None:
        """Mark the pending gateway attempt FAILED unless the order is already paid."""

        audit = self._audit_fields(notification, verification)
        try:
            async with self.db.begin():
                await lock_order(self.db, snapshot.id)
                payments = await load_payments(
                    self.db, snapshot.id, provider=PaymentProviderEnum.EXTERNAL_GATEWAY
                )
                paid = first_with_status(payments, PaymentStatusEnum.PAID)
                if paid is not None:
                    logger.info(
                        "Ignoring failed notification for paid order",
                        order_number=snapshot.order_number,
                        payment_id=str(paid.id),
                    )
                    return paid.id

                pending = first_with_status(payments, PaymentStatusEnum.PENDING)
                if pending is not None:
                    pending.status = PaymentStatusEnum.FAILED
                    pending.raw = merge_raw(pending.raw, amountMismatch=amount_mismatch, **audit)
                    payment = pending
                else:
                    payment = Payment(
                        order_id=snapshot.id,
                        provider=PaymentProviderEnum.EXTERNAL_GATEWAY,
                        status=PaymentStatusEnum.FAILED,
                        amount_cents=snapshot.total_cents,
                        currency=snapshot.currency,
                        raw=merge_raw(None, amountMismatch=amount_mismatch, **audit),
                    )
                    self.db.add(payment)
                await self.db.flush()
                return payment.id
        except SQLAlchemyError as error:
            raise InfrastructureError(
                "Database error while recording failed payment",
                details={"order_number": snapshot.order_number},
            ) from error

    async def _confirm(
        self,
        snapshot: _OrderSnapshot,
        notification: WebhookNotification,
        verification: VerificationResult,
        *,
        signature_valid: bool,
    ) -> ReconciliationResult:
        audit = self._audit_fields(notification, verification)
        now = utcnow()
        try:
            async with self.db.begin():
                order = await lock_order(self.db, snapshot.id)
                payments = await load_payments(
                    self.db, snapshot.id, provider=PaymentProviderEnum.EXTERNAL_GATEWAY
                )
                paid = first_with_status(payments, PaymentStatusEnum.PAID)
                pending = first_with_status(payments, PaymentStatusEnum.PENDING)

                if order.status == OrderStatusEnum.CANCELLED and paid is None:
                    return await self._record_late_confirmation(order.id, snapshot, pending, audit, now)

                already_paid = paid is not None
                if paid is not None:
                    payment = paid
                elif pending is not None:
                    pending.status = PaymentStatusEnum.PAID
                    pending.paid_at = now
                    pending.raw = merge_raw(pending.raw, **audit)
                    payment = pending
                else:
                    payment = Payment(
                        order_id=order.id,
                        provider=PaymentProviderEnum.EXTERNAL_GATEWAY,
                        status=PaymentStatusEnum.PAID,
                        amount_cents=notification.amount,
                        currency=notification.currency,
                        paid_at=now,
                        raw=merge_raw(None, **audit),
                    )
                    self.db.add(payment)
                await self.db.flush()

                applied = await confirm_order(self.db, order, now=now)
                payment_id = payment.id
        except SQLAlchemyError as error:
            raise InfrastructureError(
                "Database error during payment reconciliation",
                details={"order_number": snapshot.order_number},
            ) from error

        logger.info(
            "Processed gateway payment",
            order_number=snapshot.order_number,
            payment_id=str(payment_id),
            already_paid=already_paid,
            points_spent=applied.spent,
            points_earned=applied.earned,
            signature_valid=signature_valid,
        )
        return ReconciliationResult(
            outcome=OUTCOME_ALREADY_PAID if already_paid else OUTCOME_PAID,
            order_number=snapshot.order_number,
            payment_id=payment_id,
            points_spent=applied.spent,
            points_earned=applied.earned,
            already_paid=already_paid,
            signature_valid=signature_valid,
        )

    async def _record_late_confirmation(
        self,
        order_id: UUID,
        snapshot: _OrderSnapshot,
        pending: Payment | None,
        audit: Dict[str, Any],
        now: datetime,
    ) -> ReconciliationResult:
        """Keep a cancelled order cancelled; its seats and points are already released."""

        late = {"orderStatus": OrderStatusEnum.CANCELLED.value, "receivedAt": now.isoformat()}
        if pending is not None:
            pending.status = PaymentStatusEnum.FAILED
            pending.raw = merge_raw(pending.raw, lateConfirmation=late, **audit)
            payment = pending
        else:
            payment = Payment(
                order_id=order_id,
                provider=PaymentProviderEnum.EXTERNAL_GATEWAY,
                status=PaymentStatusEnum.FAILED,
                amount_cents=snapshot.total_cents,
                currency=snapshot.currency,
                raw=merge_raw(None, lateConfirmation=late, **audit),
            )
            self.db.add(payment)
        await self.db.flush()
        logger.error(
            "Gateway confirmed payment for cancelled order; manual refund required",
            order_number=snapshot.order_number,
            payment_id=str(payment.id),
        )
        return ReconciliationResult(
            outcome=OUTCOME_ORDER_CANCELLED,
            order_number=snapshot.order_number,
            payment_id=payment.id,
        )


__all__ = [
    "OUTCOME_ALREADY_PAID",
    "OUTCOME_AMOUNT_MISMATCH",
    "OUTCOME_ORDER_CANCELLED",
    "OUTCOME_PAID",
    "OUTCOME_VERIFICATION_FAILED",
    "PaymentReconciliationService",
    "ReconciliationResult",
]
