"""Background workers started from the application lifespan."""

from .loyalty_balance import LoyaltyBalanceReconciliationWorker
from .reservation_sweeper import ReservationSweeperWorker

__all__ = [
    "LoyaltyBalanceReconciliationWorker",
    "ReservationSweeperWorker",
]
