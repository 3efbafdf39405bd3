"""persistream: live text streaming with a durable ledger."""

__version__ = "0.1.0"
