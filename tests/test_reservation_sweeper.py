from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from tripdesk_api.models.checkout_session import CheckoutSession, CheckoutSessionStatusEnum
from tripdesk_api.models.loyalty import LoyaltyAccount, LoyaltyTransaction, LoyaltyTransactionTypeEnum
from tripdesk_api.models.order import Order, OrderStatusEnum
from tripdesk_api.models.payment import Payment, PaymentProviderEnum, PaymentStatusEnum
from tripdesk_api.models.trip import Trip
from tripdesk_api.observability.payments import get_payment_store
from tripdesk_api.services.loyalty import LoyaltyLedger
from tripdesk_api.services.payments import PaymentReconciliationService, VerificationResult
from tripdesk_api.services.payments.reconciliation import OUTCOME_ORDER_CANCELLED, OUTCOME_PAID
from tripdesk_api.services.payments.records import load_payments, lock_order
from tripdesk_api.services.reservations import ReservationSweeper, cancel_order
from tripdesk_api.workers import ReservationSweeperWorker


TTL = timedelta(minutes=120)


async def _sweep(session_factory, now=None):
    async with session_factory() as session:
        return await ReservationSweeper(session, reservation_ttl=TTL).sweep(now=now)


@pytest.mark.asyncio
async def test_stale_gateway_order_is_cancelled_and_seats_released(session_factory, seed_order) -> None:
    three_hours_ago = datetime.now(timezone.utc) - timedelta(hours=3)
    seeded = await seed_order(submitted_at=three_hours_ago, seats_booked=2, trip_capacity=10, points_reserved=200)

    summary = await _sweep(session_factory)

    assert summary.expired_orders == 1
    assert summary.released_seats == 2
    assert summary.released_points == 200
    assert summary.skipped_paid == 0

    async with session_factory() as session:
        order = await session.get(Order, seeded.order_id)
        assert order.status == OrderStatusEnum.CANCELLED
        trip = await session.get(Trip, seeded.trip_id)
        assert trip.seats_left == 10
        payment = await session.get(Payment, seeded.payment_id)
        assert payment.status == PaymentStatusEnum.CANCELLED
        assert payment.raw["cancelReason"] == "gateway_reservation_expired"
        checkout = await session.get(CheckoutSession, seeded.checkout_session_id)
        assert checkout.status == CheckoutSessionStatusEnum.CANCELLED
        assert checkout.points_reserved == 0


@pytest.mark.asyncio
async def test_recent_gateway_order_is_kept(session_factory, seed_order) -> None:
    seeded = await seed_order(submitted_at=datetime.now(timezone.utc) - timedelta(minutes=30))

    summary = await _sweep(session_factory)

    assert summary.expired_orders == 0
    async with session_factory() as session:
        order = await session.get(Order, seeded.order_id)
        assert order.status == OrderStatusEnum.SUBMITTED


@pytest.mark.asyncio
async def test_paid_order_wins_the_race(session_factory, seed_order) -> None:
    seeded = await seed_order(
        submitted_at=datetime.now(timezone.utc) - timedelta(hours=3),
        payment_status=PaymentStatusEnum.PAID,
    )

    summary = await _sweep(session_factory)

    assert summary.skipped_paid == 1
    assert summary.expired_orders == 0
    async with session_factory() as session:
        order = await session.get(Order, seeded.order_id)
        assert order.status == OrderStatusEnum.SUBMITTED
        trip = await session.get(Trip, seeded.trip_id)
        assert trip.seats_left == 8


@pytest.mark.asyncio
async def test_manual_transfer_orders_wait_for_operator(session_factory, seed_order) -> None:
    seeded = await seed_order(
        submitted_at=datetime.now(timezone.utc) - timedelta(hours=30),
        payment_provider=PaymentProviderEnum.MANUAL_TRANSFER,
    )

    summary = await _sweep(session_factory)

    assert summary.expired_orders == 0
    async with session_factory() as session:
        order = await session.get(Order, seeded.order_id)
        assert order.status == OrderStatusEnum.SUBMITTED


@pytest.mark.asyncio
async def test_expired_checkout_session_releases_points_and_unpaid_order(session_factory, seed_order) -> None:
    now = datetime.now(timezone.utc)
    seeded = await seed_order(
        payment_provider=None,
        submitted_at=now - timedelta(minutes=20),
        session_expires_at=now - timedelta(minutes=5),
        points_reserved=150,
    )

    summary = await _sweep(session_factory, now=now)

    assert summary.expired_sessions == 1
    assert summary.released_points == 150
    assert summary.expired_orders == 1
    assert summary.released_seats == 2

    async with session_factory() as session:
        checkout = await session.get(CheckoutSession, seeded.checkout_session_id)
        assert checkout.status == CheckoutSessionStatusEnum.EXPIRED
        assert checkout.points_reserved == 0
        order = await session.get(Order, seeded.order_id)
        assert order.status == OrderStatusEnum.CANCELLED


@pytest.mark.asyncio
async def test_expired_session_keeps_order_with_payment_attempt(session_factory, seed_order) -> None:
    now = datetime.now(timezone.utc)
    seeded = await seed_order(submitted_at=now - timedelta(minutes=20), session_expires_at=now - timedelta(minutes=1))

    summary = await _sweep(session_factory, now=now)

    assert summary.expired_sessions == 0
    assert summary.released_points == 0
    assert summary.expired_orders == 0
    async with session_factory() as session:
        order = await session.get(Order, seeded.order_id)
        assert order.status == OrderStatusEnum.SUBMITTED
        checkout = await session.get(CheckoutSession, seeded.checkout_session_id)
        assert checkout.status == CheckoutSessionStatusEnum.PENDING
        assert checkout.points_reserved == 200


@pytest.mark.asyncio
async def test_late_confirmation_after_session_expiry_still_spends_points(
    session_factory, seed_order, gateway_client, signed_notification
) -> None:
    now = datetime.now(timezone.utc)
    seeded = await seed_order(
        total_cents=50000,
        points_reserved=200,
        starting_points=500,
        submitted_at=now - timedelta(minutes=20),
        session_expires_at=now - timedelta(minutes=1),
    )
    await _sweep(session_factory, now=now)

    gateway_client.verify_transaction = AsyncMock(return_value=VerificationResult(status="success"))
    async with session_factory() as session:
        result = await PaymentReconciliationService(session, gateway_client).process_webhook(
            signed_notification(amount=50000)
        )

    assert result.outcome == OUTCOME_PAID
    assert (result.points_spent, result.points_earned) == (200, 50)
    async with session_factory() as session:
        entries = (
            await session.execute(select(LoyaltyTransaction).where(LoyaltyTransaction.order_id == seeded.order_id))
        ).scalars().all()
        assert sorted((entry.type.value, entry.points) for entry in entries) == [("earn", 50), ("spend", -200)]
        account = await session.get(LoyaltyAccount, seeded.account_id)
        assert account.points_balance == 350
        checkout = await session.get(CheckoutSession, seeded.checkout_session_id)
        assert checkout.status == CheckoutSessionStatusEnum.PAID


@pytest.mark.asyncio
async def test_confirmation_after_sweep_cannot_revive_order(
    session_factory, seed_order, gateway_client, signed_notification
) -> None:
    seeded = await seed_order(submitted_at=datetime.now(timezone.utc) - timedelta(hours=3))
    summary = await _sweep(session_factory)
    assert summary.expired_orders == 1

    gateway_client.verify_transaction = AsyncMock(return_value=VerificationResult(status="success"))
    async with session_factory() as session:
        result = await PaymentReconciliationService(session, gateway_client).process_webhook(
            signed_notification(amount=50000)
        )

    assert result.outcome == OUTCOME_ORDER_CANCELLED
    async with session_factory() as session:
        order = await session.get(Order, seeded.order_id)
        assert order.status == OrderStatusEnum.CANCELLED
        statuses = (
            await session.execute(select(Payment.status).where(Payment.order_id == seeded.order_id))
        ).scalars().all()
        assert PaymentStatusEnum.PAID not in statuses
        trip = await session.get(Trip, seeded.trip_id)
        assert trip.seats_left == 10
        assert (
            await session.execute(select(LoyaltyTransaction).where(LoyaltyTransaction.order_id == seeded.order_id))
        ).scalars().all() == []


@pytest.mark.asyncio
async def test_cancellation_refunds_posted_spend_once(session_factory, seed_order) -> None:
    seeded = await seed_order(points_reserved=0, starting_points=300)
    async with session_factory() as session:
        await LoyaltyLedger(session).record_spend(seeded.account_id, 120, seeded.order_id)
        await session.commit()

    refunds = []
    for _ in range(2):
        async with session_factory() as session:
            async with session.begin():
                order = await lock_order(session, seeded.order_id)
                payments = await load_payments(session, order.id)
                summary = await cancel_order(session, order, payments, reason="test")
        refunds.append(summary.refunded_points)

    assert refunds == [120, 0]

    async with session_factory() as session:
        adjustments = (
            await session.execute(
                select(LoyaltyTransaction).where(
                    LoyaltyTransaction.order_id == seeded.order_id,
                    LoyaltyTransaction.type == LoyaltyTransactionTypeEnum.ADJUST,
                )
            )
        ).scalars().all()
        assert [entry.points for entry in adjustments] == [120]
        assert await LoyaltyLedger(session).get_available_points(seeded.account_id) == 300


@pytest.mark.asyncio
async def test_worker_run_once_records_sweep(session_factory, seed_order) -> None:
    await seed_order(submitted_at=datetime.now(timezone.utc) - timedelta(hours=5))

    worker = ReservationSweeperWorker(session_factory, interval_seconds=1, reservation_ttl_minutes=120)
    summary = await worker.run_once()

    assert summary["expired_orders"] == 1
    totals = get_payment_store().snapshot().sweep_totals
    assert totals["runs"] == 1
    assert totals["expired_orders"] == 1


@pytest.mark.asyncio
async def test_worker_start_and_stop(session_factory) -> None:
    worker = ReservationSweeperWorker(session_factory, interval_seconds=60)

    worker.start()
    assert worker.is_running
    await worker.stop()

    assert not worker.is_running
