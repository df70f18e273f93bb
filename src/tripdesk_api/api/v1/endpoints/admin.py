"""Operator endpoints for manual transfers and maintenance jobs."""

from __future__ import annotations

from typing import Dict
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from tripdesk_api.api.dependencies.security import require_admin_api_key
from tripdesk_api.api.dependencies.services import get_notification_service
from tripdesk_api.db.session import get_session
from tripdesk_api.observability.payments import get_payment_store
from tripdesk_api.services.notifications import NotificationService
from tripdesk_api.services.payments.manual_transfer import ManualTransferService
from tripdesk_api.services.reservations import ReservationSweeper
from tripdesk_api.workers.loyalty_balance import reconcile_loyalty_balances


router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin_api_key)],
)


class MarkPaidResponse(BaseModel):
    order_number: str
    payment_id: UUID
    already_paid: bool
    points_spent: int
    points_earned: int


class CancelOrderRequest(BaseModel):
    reason: str = "cancelled_by_operator"


class CancelOrderResponse(BaseModel):
    order_number: str
    already_cancelled: bool
    released_seats: int
    released_points: int
    refunded_points: int
    cancelled_payments: int


@router.post("/orders/{order_id}/mark-paid", response_model=MarkPaidResponse)
async def mark_order_paid(
    order_id: UUID,
    db: AsyncSession = Depends(get_session),
    notifications: NotificationService = Depends(get_notification_service),
) -> MarkPaidResponse:
    """Confirm a bank-transfer order once the money has arrived."""

    result = await ManualTransferService(db, notifications).mark_paid(order_id)
    return MarkPaidResponse(
        order_number=result.order_number,
        payment_id=result.payment_id,
        already_paid=result.already_paid,
        points_spent=result.points_spent,
        points_earned=result.points_earned,
    )


@router.post("/orders/{order_id}/cancel", response_model=CancelOrderResponse)
async def cancel_order(
    order_id: UUID,
    payload: CancelOrderRequest | None = None,
    db: AsyncSession = Depends(get_session),
) -> CancelOrderResponse:
    reason = payload.reason if payload else CancelOrderRequest().reason
    result = await ManualTransferService(db).cancel(order_id, reason=reason)
    return CancelOrderResponse(
        order_number=result.order_number,
        already_cancelled=result.already_cancelled,
        released_seats=result.summary.released_seats,
        released_points=result.summary.released_points,
        refunded_points=result.summary.refunded_points,
        cancelled_payments=result.summary.cancelled_payments,
    )


@router.post("/maintenance/sweep")
async def run_reservation_sweep(db: AsyncSession = Depends(get_session)) -> Dict[str, int]:
    summary = (await ReservationSweeper(db).sweep()).as_dict()
    get_payment_store().record_sweep(summary)
    return summary


@router.post("/loyalty/reconcile")
async def run_loyalty_reconciliation(
    dry_run: bool = Query(False, description="Report drift without repairing it"),
    db: AsyncSession = Depends(get_session),
) -> Dict[str, int]:
    return await reconcile_loyalty_balances(db, dry_run=dry_run)
