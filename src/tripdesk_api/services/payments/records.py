"""Shared order/payment lookups used inside reconciliation transactions."""

from __future__ import annotations

from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tripdesk_api.core.errors import NotFoundError
from tripdesk_api.models.order import Order
from tripdesk_api.models.payment import Payment, PaymentProviderEnum, PaymentStatusEnum


async def lock_order(db: AsyncSession, order_id: UUID) -> Order:
    """Re-read the order under ``FOR UPDATE``; concurrent writers queue on this row."""

    stmt = (
        select(Order)
        .options(selectinload(Order.items), selectinload(Order.checkout_session))
        .where(Order.id == order_id)
        .with_for_update(of=Order)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    order = result.scalar_one_or_none()
    if order is None:
        raise NotFoundError("Order", details={"order_id": str(order_id)})
    return order


async def get_order_by_number(db: AsyncSession, order_number: str) -> Order | None:
    stmt = select(Order).where(Order.order_number == order_number)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def load_payments(
    db: AsyncSession,
    order_id: UUID,
    *,
    provider: PaymentProviderEnum | None = None,
) -> list[Payment]:
    """Payments of an order, newest first, always re-read from the database."""

    stmt = select(Payment).where(Payment.order_id == order_id)
    if provider is not None:
        stmt = stmt.where(Payment.provider == provider)
    stmt = stmt.order_by(Payment.created_at.desc()).execution_options(populate_existing=True)
    result = await db.execute(stmt)
    return list(result.scalars().all())


def first_with_status(payments: Sequence[Payment], status: PaymentStatusEnum) -> Payment | None:
    """First payment with ``status`` in the given (newest-first) sequence."""

    return next((payment for payment in payments if payment.status == status), None)
