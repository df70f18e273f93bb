"""Reservation expiry and order cancellation services."""

from .cancellation import CancellationSummary, cancel_order  # noqa: F401
from .sweeper import ReservationSweeper, SweepSummary  # noqa: F401
