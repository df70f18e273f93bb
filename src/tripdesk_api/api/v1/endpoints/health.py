from __future__ import annotations

from typing import Dict, Literal

from fastapi import APIRouter, Depends, Request
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tripdesk_api.core.settings import settings
from tripdesk_api.db.session import get_session
from tripdesk_api.services.payments import build_gateway_client


router = APIRouter()


class ComponentStatus(BaseModel):
    status: Literal["ready", "starting", "disabled", "error"]
    detail: str | None = Field(default=None, description="Human readable status detail")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]


def _worker_component(worker: object | None, *, enabled: bool, name: str) -> ComponentStatus:
    if not enabled or worker is None:
        return ComponentStatus(status="disabled", detail=f"{name} disabled via settings")
    running = bool(getattr(worker, "is_running", False))
    return ComponentStatus(
        status="ready" if running else "starting",
        detail=None if running else f"{name} not running",
    )


@router.get("/health/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {}
    status: Literal["ready", "degraded", "error"] = "ready"

    try:
        await session.execute(text("SELECT 1"))
        components["database"] = ComponentStatus(status="ready")
    except SQLAlchemyError as exc:
        logger.warning("Readiness database check failed", error=str(exc))
        components["database"] = ComponentStatus(status="error", detail="Database unreachable")
        status = "error"

    if build_gateway_client() is None:
        components["payment_gateway"] = ComponentStatus(status="disabled", detail="Gateway credentials missing")
    else:
        components["payment_gateway"] = ComponentStatus(status="ready")

    components["reservation_sweeper"] = _worker_component(
        getattr(request.app.state, "reservation_sweeper_worker", None),
        enabled=settings.reservation_sweeper_enabled,
        name="Reservation sweeper",
    )
    components["loyalty_balance"] = _worker_component(
        getattr(request.app.state, "loyalty_balance_worker", None),
        enabled=settings.loyalty_balance_worker_enabled,
        name="Loyalty balance worker",
    )

    if status == "ready" and any(component.status == "starting" for component in components.values()):
        status = "degraded"
    return ReadinessPayload(status=status, components=components)
