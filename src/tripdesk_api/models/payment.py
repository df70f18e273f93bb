from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, ForeignKey, Integer, JSON, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from tripdesk_api.core.clock import utcnow
from tripdesk_api.db.base import Base


class PaymentStatusEnum(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentProviderEnum(str, Enum):
    EXTERNAL_GATEWAY = "external_gateway"
    MANUAL_TRANSFER = "manual_transfer"


class Payment(Base):
    """One payment attempt for an order.

    ``raw`` is the provider audit trail. It is merged on every update and never
    replaced, see ``tripdesk_api.services.payments.audit.merge_raw``.
    """

    __tablename__ = "payments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    order_id = Column(
        UUID(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    provider = Column(
        SqlEnum(PaymentProviderEnum, name="payment_provider_enum"),
        nullable=False,
        default=PaymentProviderEnum.EXTERNAL_GATEWAY,
    )
    status = Column(
        SqlEnum(PaymentStatusEnum, name="payment_status_enum"),
        nullable=False,
        default=PaymentStatusEnum.PENDING,
        server_default=PaymentStatusEnum.PENDING.name,
    )
    amount_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="PLN", server_default="PLN")
    external_id = Column(String, nullable=True)
    raw = Column(JSON, nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    # Relationships
    order = relationship("Order", back_populates="payments")
