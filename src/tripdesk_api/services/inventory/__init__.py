"""Trip inventory services."""

from .capacity import CapacityStore, TripCapacity  # noqa: F401
