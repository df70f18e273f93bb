"""Async worker that validates cached loyalty balances against the ledger."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tripdesk_api.core.settings import settings
from tripdesk_api.models.loyalty import LoyaltyAccount
from tripdesk_api.services.loyalty import LoyaltyLedger

SessionFactory = Callable[[], Awaitable[AsyncSession]] | Callable[[], AsyncSession]


async def reconcile_loyalty_balances(db: AsyncSession, *, dry_run: bool = False) -> Dict[str, int]:
    """Check every account against its ledger; with ``dry_run`` drift is only reported."""

    checked = 0
    drifted = 0
    ledger = LoyaltyLedger(db)
    account_ids = (await db.execute(select(LoyaltyAccount.id))).scalars().all()
    try:
        for account_id in account_ids:
            check = (
                await ledger.check_cached_balance(account_id)
                if dry_run
                else await ledger.resync_cached_balance(account_id)
            )
            checked += 1
            if check.drifted:
                drifted += 1
        if dry_run:
            await db.rollback()
        else:
            await db.commit()
    except Exception:
        await db.rollback()
        raise

    summary = {"checked": checked, "drifted": drifted, "resynced": 0 if dry_run else drifted}
    logger.bind(summary=summary).info("Loyalty balance reconciliation completed")
    return summary


class LoyaltyBalanceReconciliationWorker:
    """Recomputes every account balance from the ledger and repairs drifted caches."""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        interval_seconds: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.interval_seconds = interval_seconds or settings.loyalty_balance_interval_seconds
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.is_running: bool = False

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        self.is_running = True
        logger.info("Loyalty balance worker started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self.is_running = False
        logger.info("Loyalty balance worker stopped")

    async def run_once(self, *, dry_run: bool = False) -> Dict[str, int]:
        session = await self._ensure_session()
        async with session as managed_session:
            return await reconcile_loyalty_balances(managed_session, dry_run=dry_run)

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as exc:  # pragma: no cover
                logger.exception("Loyalty balance iteration failed", error=str(exc))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def _ensure_session(self) -> AsyncSession:
        maybe_session = self._session_factory()
        if isinstance(maybe_session, AsyncSession):
            return maybe_session
        return await maybe_session
