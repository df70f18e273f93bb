"""Worker wiring for the periodic reservation expiry sweep."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from tripdesk_api.core.settings import settings
from tripdesk_api.observability.payments import get_payment_store
from tripdesk_api.services.reservations import ReservationSweeper

SessionFactory = Callable[[], Awaitable[AsyncSession]] | Callable[[], AsyncSession]


class ReservationSweeperWorker:
    """Runs ``ReservationSweeper`` on a fixed interval."""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        interval_seconds: int | None = None,
        reservation_ttl_minutes: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.interval_seconds = interval_seconds or settings.reservation_sweep_interval_seconds
        self._ttl = timedelta(minutes=reservation_ttl_minutes or settings.gateway_reservation_ttl_minutes)
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.is_running: bool = False

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        self.is_running = True
        logger.info(
            "Reservation sweeper worker started",
            interval_seconds=self.interval_seconds,
            reservation_ttl_minutes=int(self._ttl.total_seconds() // 60),
        )

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self.is_running = False
        logger.info("Reservation sweeper worker stopped")

    async def run_once(self) -> Dict[str, int]:
        session = await self._ensure_session()
        async with session as managed_session:
            sweeper = ReservationSweeper(managed_session, reservation_ttl=self._ttl)
            summary = (await sweeper.sweep()).as_dict()
        get_payment_store().record_sweep(summary)
        return summary

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as exc:  # pragma: no cover
                logger.exception("Reservation sweep iteration failed", error=str(exc))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def _ensure_session(self) -> AsyncSession:
        maybe_session = self._session_factory()
        if isinstance(maybe_session, AsyncSession):
            return maybe_session
        return await maybe_session
