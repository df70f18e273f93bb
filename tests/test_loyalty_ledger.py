from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from tripdesk_api.core.errors import InsufficientPointsError, LedgerConflictError, ValidationError
from tripdesk_api.models.loyalty import LoyaltyAccount, LoyaltyTransaction, LoyaltyTransactionTypeEnum
from tripdesk_api.models.order import Order
from tripdesk_api.models.user import User
from tripdesk_api.services.loyalty import LoyaltyLedger, calculate_expiration, derive_available_points


def _entry(entry_type: LoyaltyTransactionTypeEnum, points: int, *, expires_at=None) -> LoyaltyTransaction:
    return LoyaltyTransaction(type=entry_type, points=points, expires_at=expires_at)


async def _account(session, email: str = "member@example.com") -> LoyaltyAccount:
    user = User(email=email)
    session.add(user)
    await session.flush()
    return await LoyaltyLedger(session).ensure_account(user.id)


def test_derive_available_points_combines_entry_types() -> None:
    now = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)
    entries = [
        _entry(LoyaltyTransactionTypeEnum.EARN, 300, expires_at=now + timedelta(days=10)),
        _entry(LoyaltyTransactionTypeEnum.EARN, 100, expires_at=now - timedelta(days=1)),
        _entry(LoyaltyTransactionTypeEnum.EARN, 20),
        _entry(LoyaltyTransactionTypeEnum.SPEND, -120),
        _entry(LoyaltyTransactionTypeEnum.ADJUST, 15),
        _entry(LoyaltyTransactionTypeEnum.ADJUST, -5),
    ]

    assert derive_available_points(entries, now) == 300 + 20 - 120 + 15 - 5


def test_derive_available_points_never_negative() -> None:
    now = datetime(2026, 10, 17, tzinfo=timezone.utc)
    entries = [
        _entry(LoyaltyTransactionTypeEnum.EARN, 50, expires_at=now + timedelta(days=1)),
        _entry(LoyaltyTransactionTypeEnum.SPEND, -200),
    ]

    assert derive_available_points(entries, now) == 0


def test_earn_expires_exactly_one_validity_period_after_posting() -> None:
    posted_at = datetime(2026, 1, 1, 8, 30, tzinfo=timezone.utc)
    validity = timedelta(days=365)
    expires_at = calculate_expiration(posted_at, validity)
    entries = [_entry(LoyaltyTransactionTypeEnum.EARN, 75, expires_at=expires_at)]

    assert expires_at == posted_at + validity
    assert derive_available_points(entries, posted_at + validity - timedelta(seconds=1)) == 75
    assert derive_available_points(entries, posted_at + validity) == 0
    assert derive_available_points(entries, posted_at + validity + timedelta(seconds=1)) == 0


def test_naive_timestamps_are_read_as_utc() -> None:
    expires_at = datetime(2027, 1, 1, 0, 0)
    entries = [_entry(LoyaltyTransactionTypeEnum.EARN, 10, expires_at=expires_at)]

    assert derive_available_points(entries, datetime(2026, 12, 31, 23, 59, 59, tzinfo=timezone.utc)) == 10
    assert derive_available_points(entries, datetime(2027, 1, 1, 0, 0, 1, tzinfo=timezone.utc)) == 0


@pytest.mark.asyncio
async def test_record_entries_keep_cached_balance_in_step(session_factory) -> None:
    async with session_factory() as session:
        ledger = LoyaltyLedger(session)
        account = await _account(session)

        earn = await ledger.record_earn(account.id, 120, None, note="Welcome bonus")
        await ledger.record_spend(account.id, 50, None)
        await ledger.record_adjustment(account.id, 5, note="Goodwill")
        await session.commit()

        refreshed = await session.get(LoyaltyAccount, account.id, populate_existing=True)
        assert refreshed.points_balance == 75
        assert await ledger.get_available_points(account.id) == 75
        assert earn.expires_at is not None

        spend = (
            await session.execute(
                select(LoyaltyTransaction).where(LoyaltyTransaction.type == LoyaltyTransactionTypeEnum.SPEND)
            )
        ).scalar_one()
        assert spend.points == -50
        assert spend.expires_at is None


@pytest.mark.asyncio
async def test_record_spend_enforces_derived_balance(session_factory) -> None:
    async with session_factory() as session:
        ledger = LoyaltyLedger(session)
        account = await _account(session)
        await ledger.record_earn(account.id, 40, None)

        with pytest.raises(InsufficientPointsError):
            await ledger.record_spend(account.id, 41, None)

        entry = await ledger.record_spend(account.id, 41, None, enforce_balance=False)
        assert entry.points == -41
        assert await ledger.get_available_points(account.id) == 0


@pytest.mark.asyncio
async def test_order_scoped_entries_are_unique_per_type(session_factory) -> None:
    async with session_factory() as session:
        ledger = LoyaltyLedger(session)
        account = await _account(session)
        order = Order(order_number="DTS-2026-000900", customer_email="member@example.com", total_cents=1000)
        session.add(order)
        await session.flush()

        await ledger.record_earn(account.id, 10, order.id)
        with pytest.raises(LedgerConflictError):
            await ledger.record_earn(account.id, 10, order.id)

        await ledger.record_spend(account.id, 5, order.id)
        with pytest.raises(LedgerConflictError):
            await ledger.record_spend(account.id, 5, order.id)

        assert await ledger.has_entry(account.id, order.id, LoyaltyTransactionTypeEnum.EARN)
        assert not await ledger.has_entry(account.id, order.id, LoyaltyTransactionTypeEnum.ADJUST)


@pytest.mark.asyncio
async def test_invalid_amounts_are_rejected(session_factory) -> None:
    async with session_factory() as session:
        ledger = LoyaltyLedger(session)
        account = await _account(session)

        with pytest.raises(ValidationError):
            await ledger.record_earn(account.id, 0, None)
        with pytest.raises(ValidationError):
            await ledger.record_spend(account.id, -3, None)
        with pytest.raises(ValidationError):
            await ledger.record_adjustment(account.id, 0)


@pytest.mark.asyncio
async def test_resync_cached_balance_repairs_drift(session_factory) -> None:
    async with session_factory() as session:
        ledger = LoyaltyLedger(session)
        account = await _account(session)
        await ledger.record_earn(account.id, 60, None)
        account.points_balance = 999
        await session.flush()

        check = await ledger.resync_cached_balance(account.id)
        await session.commit()

        assert check.drifted
        assert (check.cached, check.derived) == (999, 60)
        refreshed = await session.get(LoyaltyAccount, account.id, populate_existing=True)
        assert refreshed.points_balance == 60
        assert not (await ledger.check_cached_balance(account.id)).drifted


@pytest.mark.asyncio
async def test_ensure_account_is_reused(session_factory) -> None:
    async with session_factory() as session:
        ledger = LoyaltyLedger(session)
        user = User(email="twice@example.com")
        session.add(user)
        await session.flush()

        first = await ledger.ensure_account(user.id)
        second = await ledger.ensure_account(user.id)

        assert first.id == second.id
        assert first.points_balance == 0
