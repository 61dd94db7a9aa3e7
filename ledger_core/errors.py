"""
Error Taxonomy Module

Every rejection raised by the ledger derives from LedgerError. Business-rule
rejections are never retried automatically; StorageError means the backing
store failed and the triggering operation was aborted.
"""


class LedgerError(Exception):
    """Base exception for all ledger errors."""


class ValidationError(LedgerError, ValueError):
    """Raised when an identifier, name or contact field is malformed."""


class DuplicateAccount(LedgerError):
    """Raised when an account identifier is already taken (active or closed)."""


class AccountNotFound(LedgerError):
    """Raised when an account does not exist or is closed."""


class InvalidAmount(LedgerError, ValueError):
    """Raised when a money amount is not positive or not a valid decimal."""


class InsufficientFunds(LedgerError):
    """Raised when a debit exceeds the balance or breaches the minimum balance floor."""


class SameAccountTransfer(LedgerError):
    """Raised when a transfer names the same account on both sides."""


class StorageError(LedgerError):
    """Raised when the backing store fails."""


class NotificationError(LedgerError):
    """Raised by a notifier that could not deliver an alert."""
