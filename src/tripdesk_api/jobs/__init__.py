"""One-off and recurring maintenance job entrypoints."""

__all__ = ["loyalty_backfill"]
