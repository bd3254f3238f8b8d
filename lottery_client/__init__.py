"""Client-side state reconciliation for pooled-prize lotteries hosted on an EVM contract."""

__version__ = "0.1.0"
