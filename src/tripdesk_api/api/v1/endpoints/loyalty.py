"""Loyalty balance inspection."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from tripdesk_api.api.dependencies.security import require_admin_api_key
from tripdesk_api.core.clock import utcnow
from tripdesk_api.db.session import get_session
from tripdesk_api.services.loyalty import LoyaltyLedger


router = APIRouter(
    prefix="/loyalty",
    tags=["loyalty"],
    dependencies=[Depends(require_admin_api_key)],
)


class LoyaltyBalanceResponse(BaseModel):
    account_id: UUID
    available_points: int = Field(..., description="Balance derived from the ledger")
    cached_balance: int = Field(..., description="Value of the cached balance column")
    drifted: bool
    as_of: datetime


@router.get("/accounts/{account_id}/balance", response_model=LoyaltyBalanceResponse)
async def get_account_balance(
    account_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> LoyaltyBalanceResponse:
    check = await LoyaltyLedger(db).check_cached_balance(account_id)
    return LoyaltyBalanceResponse(
        account_id=account_id,
        available_points=check.derived,
        cached_balance=check.cached,
        drifted=check.drifted,
        as_of=utcnow(),
    )
