"""Loyalty account and points ledger models."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from tripdesk_api.core.clock import utcnow
from tripdesk_api.db.base import Base


class LoyaltyTransactionTypeEnum(str, Enum):
    """Ledger entry kinds; EARN rows expire, SPEND and ADJUST never do."""

    EARN = "earn"
    SPEND = "spend"
    ADJUST = "adjust"


class LoyaltyAccount(Base):
    """Loyalty account tied to a user.

    ``points_balance`` is a write-through cache of the ledger. Anything that
    needs the real figure must call ``LoyaltyLedger.get_available_points``.
    """

    __tablename__ = "loyalty_accounts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    points_balance = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    user = relationship("User", back_populates="loyalty_account")
    transactions = relationship(
        "LoyaltyTransaction", back_populates="account", cascade="all, delete-orphan"
    )


_ORDER_SCOPED_TYPES = text("type IN ('EARN', 'SPEND')")


class LoyaltyTransaction(Base):
    """Immutable ledger entry with a signed point delta."""

    __tablename__ = "loyalty_transactions"
    __table_args__ = (
        Index(
            "uq_loyalty_transactions_account_order_type",
            "account_id",
            "order_id",
            "type",
            unique=True,
            postgresql_where=_ORDER_SCOPED_TYPES,
            sqlite_where=_ORDER_SCOPED_TYPES,
        ),
        Index("ix_loyalty_transactions_account_type", "account_id", "type"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    account_id = Column(
        UUID(as_uuid=True), ForeignKey("loyalty_accounts.id", ondelete="CASCADE"), nullable=False
    )
    type = Column(SqlEnum(LoyaltyTransactionTypeEnum, name="loyalty_transaction_type_enum"), nullable=False)
    points = Column(Integer, nullable=False)
    note = Column(String, nullable=True)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="SET NULL"), nullable=True, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    account = relationship("LoyaltyAccount", back_populates="transactions")
