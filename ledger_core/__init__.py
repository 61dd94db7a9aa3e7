"""
Account Ledger Core

A single-process account ledger with write-through persistence,
minimum-balance enforcement, Decimal money math and balance alerting.
"""

__version__ = "1.0.0"
