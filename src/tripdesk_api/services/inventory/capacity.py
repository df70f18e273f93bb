"""Seat capacity bookkeeping for trips."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tripdesk_api.core.errors import ConflictError, NotFoundError, ValidationError
from tripdesk_api.models.order import OrderItem
from tripdesk_api.models.trip import Trip, TripAvailabilityEnum


@dataclass(frozen=True)
class TripCapacity:
    trip_id: UUID
    capacity: int
    seats_left: int


class CapacityStore:
    """Reserve and release seats under a row lock in the caller's transaction."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def _lock_trip(self, trip_id: UUID) -> Trip:
        stmt = select(Trip).where(Trip.id == trip_id).with_for_update()
        result = await self._db.execute(stmt)
        trip = result.scalar_one_or_none()
        if trip is None:
            raise NotFoundError("Trip", details={"trip_id": str(trip_id)})
        return trip

    async def get_capacity(self, trip_id: UUID) -> TripCapacity:
        trip = await self._db.get(Trip, trip_id)
        if trip is None:
            raise NotFoundError("Trip", details={"trip_id": str(trip_id)})
        return TripCapacity(trip_id=trip.id, capacity=trip.capacity, seats_left=trip.seats_left)

    async def reserve_seats(self, trip_id: UUID, qty: int) -> TripCapacity:
        if qty <= 0:
            raise ValidationError("Seat quantity must be positive", details={"qty": qty})

        trip = await self._lock_trip(trip_id)
        if trip.seats_left < qty:
            raise ConflictError(
                "Not enough seats left",
                details={"trip_id": str(trip_id), "requested": qty, "seats_left": trip.seats_left},
            )
        trip.seats_left -= qty
        if trip.seats_left == 0:
            trip.availability = TripAvailabilityEnum.CLOSED
        await self._db.flush()
        return TripCapacity(trip_id=trip.id, capacity=trip.capacity, seats_left=trip.seats_left)

    async def release_seats(self, trip_id: UUID, qty: int) -> int:
        """Return ``qty`` seats to the trip, capped at capacity.

        Returns the number of seats actually released. A trip closed for lack
        of seats reopens once seats come back.
        """

        if qty <= 0:
            return 0

        trip = await self._lock_trip(trip_id)
        seats_left = min(trip.capacity, trip.seats_left + qty)
        released = seats_left - trip.seats_left
        if released < qty:
            logger.warning(
                "Seat release capped at trip capacity",
                trip_id=str(trip_id),
                requested=qty,
                released=released,
            )
        trip.seats_left = seats_left
        if seats_left == 0:
            trip.availability = TripAvailabilityEnum.CLOSED
        elif trip.availability == TripAvailabilityEnum.CLOSED:
            trip.availability = TripAvailabilityEnum.OPEN
        await self._db.flush()
        return released

    async def release_order_items(self, items: Iterable[OrderItem]) -> int:
        released = 0
        for item in items:
            try:
                released += await self.release_seats(item.trip_id, item.qty)
            except NotFoundError:
                logger.warning("Skipping seat release for missing trip", trip_id=str(item.trip_id))
        return released
