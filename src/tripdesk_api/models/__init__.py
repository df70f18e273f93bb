"""SQLAlchemy models package."""

from .checkout_session import CheckoutSession, CheckoutSessionStatusEnum  # noqa: F401
from .loyalty import LoyaltyAccount, LoyaltyTransaction, LoyaltyTransactionTypeEnum  # noqa: F401
from .order import Order, OrderItem, OrderStatusEnum  # noqa: F401
from .payment import Payment, PaymentProviderEnum, PaymentStatusEnum  # noqa: F401
from .trip import Trip, TripAvailabilityEnum  # noqa: F401
from .user import User  # noqa: F401
