from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, ForeignKey, Integer, JSON, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from tripdesk_api.core.clock import utcnow
from tripdesk_api.db.base import Base


class CheckoutSessionStatusEnum(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class CheckoutSession(Base):
    """Pre-order cart snapshot holding a tentative points reservation.

    ``points_reserved`` is never posted to the ledger while the session is
    pending; it becomes a SPEND only when the linked order is confirmed.
    """

    __tablename__ = "checkout_sessions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    status = Column(
        SqlEnum(CheckoutSessionStatusEnum, name="checkout_session_status_enum"),
        nullable=False,
        default=CheckoutSessionStatusEnum.PENDING,
        server_default=CheckoutSessionStatusEnum.PENDING.name,
    )
    customer_email = Column(String, nullable=False)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    cart_data = Column(JSON, nullable=False, default=dict)
    points_reserved = Column(Integer, nullable=False, default=0, server_default="0")
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    order = relationship("Order", back_populates="checkout_session", uselist=False)
