from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from tripdesk_api.core.settings import settings
from tripdesk_api.db.session import async_session
from .api.routes import api_router
from .core.errors import register_exception_handlers
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .workers import LoyaltyBalanceReconciliationWorker, ReservationSweeperWorker


APP_VERSION = "0.1.0"


def _session_factory():
    return async_session()


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper_worker = ReservationSweeperWorker(
        session_factory=_session_factory,
        interval_seconds=settings.reservation_sweep_interval_seconds,
        reservation_ttl_minutes=settings.gateway_reservation_ttl_minutes,
    )
    balance_worker = LoyaltyBalanceReconciliationWorker(
        session_factory=_session_factory,
        interval_seconds=settings.loyalty_balance_interval_seconds,
    )
    app.state.reservation_sweeper_worker = sweeper_worker
    app.state.loyalty_balance_worker = balance_worker

    sweeper_enabled = settings.reservation_sweeper_enabled
    if sweeper_enabled:
        sweeper_worker.start()
    else:
        logger.info(
            "Reservation sweeper worker disabled",
            reason="reservation_sweeper_enabled is false",
        )

    balance_enabled = settings.loyalty_balance_worker_enabled
    if balance_enabled:
        balance_worker.start()
    else:
        logger.info(
            "Loyalty balance worker disabled",
            reason="loyalty_balance_worker_enabled is false",
        )

    try:
        yield
    finally:
        if sweeper_enabled and sweeper_worker.is_running:
            await sweeper_worker.stop()
        if balance_enabled and balance_worker.is_running:
            await balance_worker.stop()


def create_app() -> FastAPI:
    """Application factory for the trip booking payments service."""
    configure_logging(
        service_name="tripdesk-api",
        environment=settings.environment,
        version=APP_VERSION,
    )

    app = FastAPI(
        title="Tripdesk API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        settings,
        service_name="tripdesk-api",
        service_version=APP_VERSION,
    )
    register_exception_handlers(app)

    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
