"""Safe Ledger - Multi-chain Safe transfer sync and annotation."""

__version__ = "0.1.0"
