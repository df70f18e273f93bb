"""Backfill EARN expirations and resync cached loyalty balances."""

from __future__ import annotations

import argparse
import asyncio
from typing import Any, Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tripdesk_api.core.logging import configure_logging
from tripdesk_api.core.settings import settings
from tripdesk_api.db.session import async_session
from tripdesk_api.models.loyalty import LoyaltyTransaction, LoyaltyTransactionTypeEnum
from tripdesk_api.services.loyalty import calculate_expiration
from tripdesk_api.workers.loyalty_balance import LoyaltyBalanceReconciliationWorker

# meta: job: loyalty-backfill

SessionFactory = Callable[[], AsyncSession] | Callable[[], Awaitable[AsyncSession]]


async def backfill_earn_expirations(*, session_factory: SessionFactory, dry_run: bool = False) -> Dict[str, Any]:
    """Give every EARN row without ``expires_at`` one validity period from its creation."""

    maybe_session = session_factory()
    session = maybe_session if isinstance(maybe_session, AsyncSession) else await maybe_session

    async with session as managed_session:
        stmt = select(LoyaltyTransaction).where(
            LoyaltyTransaction.type == LoyaltyTransactionTypeEnum.EARN,
            LoyaltyTransaction.expires_at.is_(None),
        )
        entries = (await managed_session.execute(stmt)).scalars().all()
        for entry in entries:
            entry.expires_at = calculate_expiration(entry.created_at)
        if dry_run:
            await managed_session.rollback()
        else:
            await managed_session.commit()

    summary = {"backfilled": len(entries), "dry_run": dry_run}
    logger.bind(summary=summary).info("Loyalty expiration backfill completed")
    return summary


async def run_loyalty_backfill(*, session_factory: SessionFactory, dry_run: bool = False) -> Dict[str, Any]:
    expirations = await backfill_earn_expirations(session_factory=session_factory, dry_run=dry_run)
    balances = await LoyaltyBalanceReconciliationWorker(session_factory).run_once(dry_run=dry_run)
    return {"expirations": expirations, "balances": balances}


async def _async_main(args: argparse.Namespace) -> None:
    summary = await run_loyalty_backfill(session_factory=async_session, dry_run=args.dry_run)
    logger.info("Loyalty backfill finished", summary=summary)


def cli() -> None:
    parser = argparse.ArgumentParser(description="Backfill loyalty expirations and resync cached balances.")
    parser.add_argument("--dry-run", action="store_true", help="Report changes without committing them.")
    args = parser.parse_args()
    configure_logging(service_name="tripdesk-loyalty-backfill", environment=settings.environment, version="0.1.0")
    asyncio.run(_async_main(args))


if __name__ == "__main__":  # pragma: no cover
    cli()


__all__ = ["backfill_earn_expirations", "run_loyalty_backfill"]
