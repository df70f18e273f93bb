from uuid import uuid4

import pytest

from tripdesk_api.core.errors import ConflictError, NotFoundError, ValidationError
from tripdesk_api.models.order import OrderItem
from tripdesk_api.models.trip import Trip, TripAvailabilityEnum
from tripdesk_api.services.inventory import CapacityStore


async def _trip(session, *, capacity: int = 4, seats_left: int = 4) -> Trip:
    trip = Trip(slug=f"trip-{uuid4().hex[:8]}", title="Dolomites", capacity=capacity, seats_left=seats_left)
    session.add(trip)
    await session.flush()
    return trip


@pytest.mark.asyncio
async def test_reserving_last_seats_closes_trip(session_factory) -> None:
    async with session_factory() as session:
        trip = await _trip(session, capacity=4, seats_left=4)
        store = CapacityStore(session)

        first = await store.reserve_seats(trip.id, 3)
        last = await store.reserve_seats(trip.id, 1)

        assert first.seats_left == 1
        assert last.seats_left == 0
        assert trip.availability == TripAvailabilityEnum.CLOSED


@pytest.mark.asyncio
async def test_reserving_more_than_left_conflicts(session_factory) -> None:
    async with session_factory() as session:
        trip = await _trip(session, capacity=4, seats_left=2)
        store = CapacityStore(session)

        with pytest.raises(ConflictError) as exc_info:
            await store.reserve_seats(trip.id, 3)

        assert exc_info.value.details["seats_left"] == 2
        assert (await store.get_capacity(trip.id)).seats_left == 2


@pytest.mark.asyncio
async def test_reserve_rejects_non_positive_quantity(session_factory) -> None:
    async with session_factory() as session:
        trip = await _trip(session)

        with pytest.raises(ValidationError):
            await CapacityStore(session).reserve_seats(trip.id, 0)


@pytest.mark.asyncio
async def test_release_is_capped_and_reopens_trip(session_factory) -> None:
    async with session_factory() as session:
        trip = await _trip(session, capacity=4, seats_left=0)
        trip.availability = TripAvailabilityEnum.CLOSED
        store = CapacityStore(session)

        released = await store.release_seats(trip.id, 2)
        capped = await store.release_seats(trip.id, 5)

        assert (released, capped) == (2, 2)
        assert trip.seats_left == 4
        assert trip.availability == TripAvailabilityEnum.OPEN


@pytest.mark.asyncio
async def test_unknown_trip_is_not_found(session_factory) -> None:
    async with session_factory() as session:
        store = CapacityStore(session)

        with pytest.raises(NotFoundError):
            await store.get_capacity(uuid4())
        with pytest.raises(NotFoundError):
            await store.reserve_seats(uuid4(), 1)


@pytest.mark.asyncio
async def test_release_order_items_skips_missing_trips(session_factory) -> None:
    async with session_factory() as session:
        trip = await _trip(session, capacity=6, seats_left=1)
        items = [
            OrderItem(trip_id=trip.id, qty=3, unit_price_cents=1000),
            OrderItem(trip_id=uuid4(), qty=2, unit_price_cents=1000),
        ]

        released = await CapacityStore(session).release_order_items(items)

        assert released == 3
        assert trip.seats_left == 4
