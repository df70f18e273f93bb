"""Order confirmation side effects shared by gateway and manual payments."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from tripdesk_api.core.clock import utcnow
from tripdesk_api.core.settings import settings
from tripdesk_api.models.checkout_session import CheckoutSessionStatusEnum
from tripdesk_api.models.loyalty import LoyaltyTransactionTypeEnum
from tripdesk_api.models.order import Order, OrderStatusEnum
from tripdesk_api.services.loyalty import LoyaltyLedger


@dataclass(frozen=True)
class PointsApplied:
    spent: int = 0
    earned: int = 0


def points_for_total(total_cents: int) -> int:
    """Loyalty points earned for an order total (one point per full divisor)."""

    return max(0, total_cents // settings.loyalty_earn_divisor)


async def confirm_order(
    db: AsyncSession,
    order: Order,
    *,
    ledger: LoyaltyLedger | None = None,
    now: datetime | None = None,
) -> PointsApplied:
    """Mark a locked order confirmed and settle its loyalty points.

    Must run inside the caller's transaction with ``order`` loaded through
    ``lock_order``. Each ledger step checks for an existing entry first, so a
    repeated call only fills in whatever a previous attempt did not write.
    """

    now = now or utcnow()
    ledger = ledger or LoyaltyLedger(db)

    order.status = OrderStatusEnum.CONFIRMED
    session = order.checkout_session
    if session is not None and session.status != CheckoutSessionStatusEnum.PAID:
        session.status = CheckoutSessionStatusEnum.PAID

    user_id = order.user_id or (session.user_id if session is not None else None)
    if user_id is None:
        await db.flush()
        return PointsApplied()

    account = await ledger.ensure_account(user_id)
    spent = 0
    earned = 0

    reserved = session.points_reserved if session is not None else 0
    if reserved > 0 and not await ledger.has_entry(account.id, order.id, LoyaltyTransactionTypeEnum.SPEND):
        await ledger.record_spend(
            account.id,
            reserved,
            order.id,
            note=f"Points redeemed for order {order.order_number}",
            enforce_balance=False,
        )
        spent = reserved

    to_earn = points_for_total(order.total_cents)
    if to_earn > 0 and not await ledger.has_entry(account.id, order.id, LoyaltyTransactionTypeEnum.EARN):
        await ledger.record_earn(
            account.id,
            to_earn,
            order.id,
            note=f"Points earned for order {order.order_number}",
            now=now,
        )
        earned = to_earn

    logger.info(
        "Order confirmed",
        order_number=order.order_number,
        account_id=str(account.id),
        points_spent=spent,
        points_earned=earned,
    )
    return PointsApplied(spent=spent, earned=earned)
