from enum import Enum
from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, DateTime, Enum as SqlEnum, Integer, String, func
from sqlalchemy.dialects.postgresql import UUID

from tripdesk_api.core.clock import utcnow
from tripdesk_api.db.base import Base


class TripAvailabilityEnum(str, Enum):
    OPEN = "open"
    WAITLIST = "waitlist"
    CLOSED = "closed"


class Trip(Base):
    """Bookable trip; ``seats_left`` is the capacity counter held by pending and confirmed orders."""

    __tablename__ = "trips"
    __table_args__ = (
        CheckConstraint("seats_left >= 0", name="ck_trips_seats_left_non_negative"),
        CheckConstraint("seats_left <= capacity", name="ck_trips_seats_left_within_capacity"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    slug = Column(String, nullable=False, unique=True)
    title = Column(String, nullable=False)
    capacity = Column(Integer, nullable=False)
    seats_left = Column(Integer, nullable=False)
    availability = Column(
        SqlEnum(TripAvailabilityEnum, name="trip_availability_enum"),
        nullable=False,
        default=TripAvailabilityEnum.OPEN,
        server_default=TripAvailabilityEnum.OPEN.name,
    )
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )
