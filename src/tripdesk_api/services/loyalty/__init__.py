"""Loyalty service exports."""

from .ledger import (  # noqa: F401
    BalanceCheck,
    LoyaltyLedger,
    calculate_expiration,
    derive_available_points,
)
