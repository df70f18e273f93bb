"""Expiry sweep for checkout sessions and unpaid gateway reservations."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tripdesk_api.core.clock import ensure_aware, utcnow
from tripdesk_api.core.settings import settings
from tripdesk_api.models.checkout_session import CheckoutSession, CheckoutSessionStatusEnum
from tripdesk_api.models.order import Order, OrderStatusEnum
from tripdesk_api.models.payment import Payment, PaymentProviderEnum, PaymentStatusEnum
from tripdesk_api.services.payments.records import load_payments, lock_order

from .cancellation import cancel_order


@dataclass
class SweepSummary:
    expired_sessions: int = 0
    released_points: int = 0
    expired_orders: int = 0
    released_seats: int = 0
    skipped_paid: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def reservation_started_at(order: Order, payments: list[Payment]) -> datetime:
    """Start of the gateway reservation: the latest gateway attempt, else submission."""

    attempts = [
        ensure_aware(payment.created_at)
        for payment in payments
        if payment.provider == PaymentProviderEnum.EXTERNAL_GATEWAY
    ]
    if attempts:
        return max(attempts)
    return ensure_aware(order.submitted_at or order.created_at)


class ReservationSweeper:
    """Expires stale checkout sessions and cancels unpaid gateway orders.

    Candidates are read first, then each one is handled in its own transaction
    that re-reads the order under a row lock. An order that gained a PAID
    payment in the meantime is left alone. An expired session keeps its points
    reservation while its order is alive, so a late confirmation still posts
    the SPEND.
    """

    def __init__(self, db_session: AsyncSession, *, reservation_ttl: timedelta | None = None) -> None:
        self.db = db_session
        self.reservation_ttl = reservation_ttl or timedelta(minutes=settings.gateway_reservation_ttl_minutes)

    async def sweep(self, now: datetime | None = None) -> SweepSummary:
        now = ensure_aware(now or utcnow())
        summary = SweepSummary()

        for session_id in await self._expired_session_ids(now):
            try:
                await self._expire_session(session_id, now, summary)
            except SQLAlchemyError:
                logger.exception("Failed to expire checkout session", checkout_session_id=str(session_id))

        for order_id in await self._stale_order_ids(now):
            try:
                await self._expire_order(order_id, now, summary)
            except SQLAlchemyError:
                logger.exception("Failed to cancel expired order", order_id=str(order_id))

        logger.bind(summary=summary.as_dict()).info("Reservation sweep completed")
        return summary

    async def _expired_session_ids(self, now: datetime) -> list[UUID]:
        stmt = select(CheckoutSession.id, CheckoutSession.expires_at).where(
            CheckoutSession.status == CheckoutSessionStatusEnum.PENDING
        )
        rows = (await self.db.execute(stmt)).all()
        await self.db.commit()
        return [row.id for row in rows if ensure_aware(row.expires_at) < now]

    async def _stale_order_ids(self, now: datetime) -> list[UUID]:
        stmt = (
            select(Order)
            .options(selectinload(Order.payments))
            .where(Order.status == OrderStatusEnum.SUBMITTED)
            .execution_options(populate_existing=True)
        )
        orders = (await self.db.execute(stmt)).scalars().all()
        cutoff = now - self.reservation_ttl
        stale = [
            order.id
            for order in orders
            if not any(p.provider == PaymentProviderEnum.MANUAL_TRANSFER for p in order.payments)
            and reservation_started_at(order, list(order.payments)) < cutoff
        ]
        await self.db.commit()
        return stale

    async def _expire_session(self, session_id: UUID, now: datetime, summary: SweepSummary) -> None:
        async with self.db.begin():
            stmt = (
                select(CheckoutSession)
                .where(CheckoutSession.id == session_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            session = (await self.db.execute(stmt)).scalar_one_or_none()
            if session is None or session.status != CheckoutSessionStatusEnum.PENDING:
                return
            if ensure_aware(session.expires_at) >= now:
                return

            order_id = (
                await self.db.execute(select(Order.id).where(Order.checkout_session_id == session_id))
            ).scalar_one_or_none()
            order = await lock_order(self.db, order_id) if order_id is not None else None

            if order is None or order.status == OrderStatusEnum.CANCELLED:
                summary.expired_sessions += 1
                summary.released_points += session.points_reserved
                session.status = CheckoutSessionStatusEnum.EXPIRED
                session.points_reserved = 0
                return

            # The reservation belongs to a live order until that order is cancelled.
            if order.status != OrderStatusEnum.SUBMITTED:
                return
            payments = await load_payments(self.db, order.id)
            if payments:
                logger.info(
                    "Keeping expired checkout session of order with payment attempts",
                    checkout_session_id=str(session_id),
                    order_number=order.order_number,
                )
                return

            session.status = CheckoutSessionStatusEnum.EXPIRED
            cancelled = await cancel_order(self.db, order, payments, reason="checkout_session_expired", now=now)
            summary.expired_sessions += 1
            summary.released_points += cancelled.released_points
            summary.expired_orders += 1
            summary.released_seats += cancelled.released_seats

    async def _expire_order(self, order_id: UUID, now: datetime, summary: SweepSummary) -> None:
        async with self.db.begin():
            order = await lock_order(self.db, order_id)
            payments = await load_payments(self.db, order.id)
            if any(p.status == PaymentStatusEnum.PAID for p in payments):
                summary.skipped_paid += 1
                logger.info("Skipping expiry of paid order", order_number=order.order_number)
                return
            if order.status != OrderStatusEnum.SUBMITTED:
                return
            if any(p.provider == PaymentProviderEnum.MANUAL_TRANSFER for p in payments):
                return
            if reservation_started_at(order, payments) >= now - self.reservation_ttl:
                return

            cancelled = await cancel_order(self.db, order, payments, reason="gateway_reservation_expired", now=now)
            summary.expired_orders += 1
            summary.released_seats += cancelled.released_seats
            summary.released_points += cancelled.released_points
