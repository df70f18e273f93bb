"""Append-only loyalty points ledger with a derived, expiry-aware balance."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tripdesk_api.core.clock import ensure_aware, utcnow
from tripdesk_api.core.errors import (
    InsufficientPointsError,
    LedgerConflictError,
    NotFoundError,
    ValidationError,
)
from tripdesk_api.core.settings import settings
from tripdesk_api.models.loyalty import (
    LoyaltyAccount,
    LoyaltyTransaction,
    LoyaltyTransactionTypeEnum,
)


def default_validity() -> timedelta:
    return timedelta(days=settings.loyalty_points_validity_days)


def calculate_expiration(created_at: datetime, validity: timedelta | None = None) -> datetime:
    """Return the expiry of points earned at ``created_at``."""

    return ensure_aware(created_at) + (validity or default_validity())


def derive_available_points(entries: Iterable[LoyaltyTransaction], as_of: datetime) -> int:
    """Compute the spendable balance from raw ledger rows.

    EARN rows count while ``expires_at`` is unset or still in the future at
    ``as_of``. Every SPEND counts against the balance regardless of age, ADJUST
    rows are applied with their sign. The result never drops below zero.
    """

    as_of = ensure_aware(as_of)
    valid_earned = 0
    spent = 0
    adjusted = 0
    for entry in entries:
        if entry.type == LoyaltyTransactionTypeEnum.EARN:
            if entry.expires_at is None or ensure_aware(entry.expires_at) > as_of:
                valid_earned += entry.points
        elif entry.type == LoyaltyTransactionTypeEnum.SPEND:
            spent += abs(entry.points)
        else:
            adjusted += entry.points
    return max(0, valid_earned - spent + adjusted)


@dataclass(frozen=True)
class BalanceCheck:
    account_id: UUID
    cached: int
    derived: int

    @property
    def drifted(self) -> bool:
        return self.cached != self.derived


class LoyaltyLedger:
    """Posts ledger entries and keeps the cached balance in step.

    Methods flush but never commit: callers own the transaction so that ledger
    writes land atomically with the order/payment changes that caused them.
    """

    def __init__(self, db_session: AsyncSession, *, validity: timedelta | None = None) -> None:
        self._db = db_session
        self._validity = validity or default_validity()

    async def get_account(self, account_id: UUID) -> LoyaltyAccount:
        account = await self._db.get(LoyaltyAccount, account_id)
        if account is None:
            raise NotFoundError("Loyalty account", details={"account_id": str(account_id)})
        return account

    async def find_account_for_user(self, user_id: UUID) -> LoyaltyAccount | None:
        stmt = select(LoyaltyAccount).where(LoyaltyAccount.user_id == user_id)
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def ensure_account(self, user_id: UUID) -> LoyaltyAccount:
        """Fetch or create the loyalty account for a user.

        A concurrent creation surfaces as an ``IntegrityError`` on the unique
        ``user_id`` and aborts the caller's transaction; the retry finds the row.
        """

        account = await self.find_account_for_user(user_id)
        if account is not None:
            return account

        account = LoyaltyAccount(user_id=user_id, points_balance=0)
        self._db.add(account)
        await self._db.flush()
        logger.info("Created loyalty account", user_id=str(user_id), account_id=str(account.id))
        return account

    async def list_entries(self, account_id: UUID) -> list[LoyaltyTransaction]:
        stmt = (
            select(LoyaltyTransaction)
            .where(LoyaltyTransaction.account_id == account_id)
            .order_by(LoyaltyTransaction.created_at.asc())
        )
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def get_available_points(self, account_id: UUID, *, as_of: datetime | None = None) -> int:
        """Recompute the available balance from the ledger, ignoring the cache."""

        entries = await self.list_entries(account_id)
        return derive_available_points(entries, as_of or utcnow())

    async def has_enough_points(
        self,
        account_id: UUID,
        required: int,
        *,
        as_of: datetime | None = None,
    ) -> bool:
        return await self.get_available_points(account_id, as_of=as_of) >= required

    async def has_entry(
        self,
        account_id: UUID,
        order_id: UUID,
        entry_type: LoyaltyTransactionTypeEnum,
    ) -> bool:
        stmt = (
            select(LoyaltyTransaction.id)
            .where(
                LoyaltyTransaction.account_id == account_id,
                LoyaltyTransaction.order_id == order_id,
                LoyaltyTransaction.type == entry_type,
            )
            .limit(1)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def record_earn(
        self,
        account_id: UUID,
        points: int,
        order_id: UUID | None,
        note: str | None = None,
        *,
        now: datetime | None = None,
    ) -> LoyaltyTransaction:
        """Post an EARN entry expiring one validity period after ``now``."""

        if points <= 0:
            raise ValidationError("Earned points must be positive", details={"points": points})
        if order_id is not None and await self.has_entry(account_id, order_id, LoyaltyTransactionTypeEnum.EARN):
            raise LedgerConflictError(
                "Points were already earned for this order",
                details={"account_id": str(account_id), "order_id": str(order_id)},
            )

        created_at = now or utcnow()
        entry = LoyaltyTransaction(
            account_id=account_id,
            type=LoyaltyTransactionTypeEnum.EARN,
            points=points,
            note=note,
            order_id=order_id,
            expires_at=calculate_expiration(created_at, self._validity),
            created_at=created_at,
        )
        await self._append(entry, delta=points)
        return entry

    async def record_spend(
        self,
        account_id: UUID,
        points: int,
        order_id: UUID | None,
        note: str | None = None,
        *,
        enforce_balance: bool = True,
    ) -> LoyaltyTransaction:
        """Post a SPEND entry (stored negative) and debit the cache.

        With ``enforce_balance`` the recomputed balance must cover ``points``.
        Reconciliation disables it: the discount was already granted at
        checkout, so the debit is recorded even if the balance has since drifted.
        """

        if points <= 0:
            raise ValidationError("Spent points must be positive", details={"points": points})
        if order_id is not None and await self.has_entry(account_id, order_id, LoyaltyTransactionTypeEnum.SPEND):
            raise LedgerConflictError(
                "Points were already spent for this order",
                details={"account_id": str(account_id), "order_id": str(order_id)},
            )

        available = await self.get_available_points(account_id)
        if points > available:
            if enforce_balance:
                raise InsufficientPointsError(
                    "Not enough loyalty points",
                    details={"requested": points, "available": available},
                )
            logger.warning(
                "Posting loyalty spend beyond available balance",
                account_id=str(account_id),
                order_id=str(order_id) if order_id else None,
                requested=points,
                available=available,
            )

        entry = LoyaltyTransaction(
            account_id=account_id,
            type=LoyaltyTransactionTypeEnum.SPEND,
            points=-points,
            note=note,
            order_id=order_id,
        )
        await self._append(entry, delta=-points)
        return entry

    async def record_adjustment(
        self,
        account_id: UUID,
        points: int,
        order_id: UUID | None = None,
        note: str | None = None,
    ) -> LoyaltyTransaction:
        if points == 0:
            raise ValidationError("Adjustments require a non-zero amount")

        entry = LoyaltyTransaction(
            account_id=account_id,
            type=LoyaltyTransactionTypeEnum.ADJUST,
            points=points,
            note=note,
            order_id=order_id,
        )
        await self._append(entry, delta=points)
        return entry

    async def check_cached_balance(self, account_id: UUID) -> BalanceCheck:
        account = await self.get_account(account_id)
        derived = await self.get_available_points(account_id)
        return BalanceCheck(account_id=account_id, cached=account.points_balance, derived=derived)

    async def resync_cached_balance(self, account_id: UUID) -> BalanceCheck:
        """Overwrite the cache with the derived balance when they disagree."""

        check = await self.check_cached_balance(account_id)
        if check.drifted:
            await self._db.execute(
                update(LoyaltyAccount)
                .where(LoyaltyAccount.id == account_id)
                .values(points_balance=check.derived, updated_at=utcnow())
            )
            logger.warning(
                "Resynced loyalty balance cache",
                account_id=str(account_id),
                cached=check.cached,
                derived=check.derived,
            )
        return check

    async def _append(self, entry: LoyaltyTransaction, *, delta: int) -> None:
        self._db.add(entry)
        await self._db.flush()
        await self._db.execute(
            update(LoyaltyAccount)
            .where(LoyaltyAccount.id == entry.account_id)
            .values(points_balance=LoyaltyAccount.points_balance + delta, updated_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        logger.info(
            "Recorded loyalty ledger entry",
            account_id=str(entry.account_id),
            order_id=str(entry.order_id) if entry.order_id else None,
            entry_type=entry.type.value,
            points=entry.points,
        )
