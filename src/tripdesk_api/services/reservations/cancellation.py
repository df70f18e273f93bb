"""Release everything an unpaid order holds when it is cancelled."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from tripdesk_api.core.clock import utcnow
from tripdesk_api.models.checkout_session import CheckoutSessionStatusEnum
from tripdesk_api.models.loyalty import LoyaltyTransactionTypeEnum
from tripdesk_api.models.order import Order, OrderStatusEnum
from tripdesk_api.models.payment import Payment, PaymentStatusEnum
from tripdesk_api.services.inventory import CapacityStore
from tripdesk_api.services.loyalty import LoyaltyLedger
from tripdesk_api.services.payments.audit import merge_raw


@dataclass(frozen=True)
class CancellationSummary:
    released_seats: int = 0
    released_points: int = 0
    refunded_points: int = 0
    cancelled_payments: int = 0


async def cancel_order(
    db: AsyncSession,
    order: Order,
    payments: list[Payment],
    *,
    reason: str,
    now: datetime | None = None,
) -> CancellationSummary:
    """Cancel a locked, unpaid order and release its seats and points.

    The caller holds the order row lock and has checked that no payment is
    PAID. Pending attempts are cancelled, seats go back to their trips, a
    still-open checkout session is cancelled with its reservation cleared and a
    SPEND already posted for the order is compensated with an ADJUST entry.
    """

    now = now or utcnow()
    order.status = OrderStatusEnum.CANCELLED

    cancelled_payments = 0
    for payment in payments:
        if payment.status == PaymentStatusEnum.PENDING:
            payment.status = PaymentStatusEnum.CANCELLED
            payment.raw = merge_raw(payment.raw, cancelledAt=now.isoformat(), cancelReason=reason)
            cancelled_payments += 1

    released_seats = await CapacityStore(db).release_order_items(order.items)

    released_points = 0
    session = order.checkout_session
    if session is not None:
        if session.status == CheckoutSessionStatusEnum.PENDING:
            session.status = CheckoutSessionStatusEnum.CANCELLED
        released_points = session.points_reserved
        session.points_reserved = 0

    refunded = await _refund_spent_points(db, order, session_user_id=session.user_id if session else None)
    await db.flush()

    logger.info(
        "Order cancelled",
        order_number=order.order_number,
        reason=reason,
        released_seats=released_seats,
        released_points=released_points,
        refunded_points=refunded,
        cancelled_payments=cancelled_payments,
    )
    return CancellationSummary(
        released_seats=released_seats,
        released_points=released_points,
        refunded_points=refunded,
        cancelled_payments=cancelled_payments,
    )


async def _refund_spent_points(db: AsyncSession, order: Order, *, session_user_id: UUID | None) -> int:
    user_id = order.user_id or session_user_id
    if user_id is None:
        return 0

    ledger = LoyaltyLedger(db)
    account = await ledger.find_account_for_user(user_id)
    if account is None:
        return 0
    if await ledger.has_entry(account.id, order.id, LoyaltyTransactionTypeEnum.ADJUST):
        return 0

    spent = sum(
        abs(entry.points)
        for entry in await ledger.list_entries(account.id)
        if entry.order_id == order.id and entry.type == LoyaltyTransactionTypeEnum.SPEND
    )
    if spent <= 0:
        return 0
    await ledger.record_adjustment(
        account.id,
        spent,
        order.id,
        note=f"Refund of points for cancelled order {order.order_number}",
    )
    return spent
