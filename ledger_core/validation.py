"""
Input Validation Module

Pure functions that normalize and check identifiers, holder names, contact
fields and amounts before they reach the account store or the ledger engine.
Sanitizers never fail; validators return the normalized value or raise.
"""

import re
from decimal import Decimal

from .currency import (
    AmountLike, MAX_AMOUNT, ZERO, format_amount, has_cent_precision, to_decimal, within_limit
)
from .errors import InvalidAmount, ValidationError


ACCOUNT_ID_PATTERN = re.compile(r"^[A-Z]{3}[0-9]{3,6}$")
NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z\s]{2,49}$")
EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9+_.-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")
PHONE_PATTERN = re.compile(r"^[6-9][0-9]{9}$")

ACCOUNT_ID_ERROR = "Invalid Account ID! Format: 3 letters followed by 3-6 digits (e.g., ACC001, ABC123456)"
NAME_ERROR = "Invalid Name! Must be 3-50 characters, letters and spaces only, start with a letter"
EMAIL_ERROR = "Invalid Email! Format: user@domain.com"
PHONE_ERROR = "Invalid Phone! Must be 10 digits starting with 6-9"
INITIAL_BALANCE_ERROR = "Invalid Initial Balance! Must be non-negative with maximum 2 decimal places"
AMOUNT_ERROR = "Invalid Amount! Must be positive with maximum 2 decimal places"


# Sanitizers

def sanitize_account_id(account_id: str) -> str:
    """Trim and uppercase"""
    if account_id is None:
        return ""
    return account_id.strip().upper()


def sanitize_name(name: str) -> str:
    """Trim, collapse inner whitespace and capitalize each word"""
    if name is None:
        return ""
    words = name.split()
    return " ".join(word[0].upper() + word[1:].lower() for word in words)


def sanitize_email(email: str) -> str:
    """Trim and lowercase"""
    if email is None:
        return ""
    return email.strip().lower()


def sanitize_phone(phone: str) -> str:
    """Remove spaces and dashes"""
    if phone is None:
        return ""
    return re.sub(r"[\s-]", "", phone.strip())


# Predicates (expect sanitized input)

def is_valid_account_id(account_id: str) -> bool:
    return bool(account_id) and ACCOUNT_ID_PATTERN.match(account_id) is not None


def is_valid_name(name: str) -> bool:
    return bool(name) and NAME_PATTERN.match(name) is not None


def is_valid_email(email: str) -> bool:
    return bool(email) and EMAIL_PATTERN.match(email) is not None


def is_valid_phone(phone: str) -> bool:
    return bool(phone) and PHONE_PATTERN.match(phone) is not None


# Validators

def validate_account_id(account_id: str) -> str:
    """Normalize an account identifier, raising ValidationError if malformed"""
    normalized = sanitize_account_id(account_id)
    if not is_valid_account_id(normalized):
        raise ValidationError(ACCOUNT_ID_ERROR)
    return normalized


def validate_name(name: str) -> str:
    normalized = sanitize_name(name)
    if not is_valid_name(normalized):
        raise ValidationError(NAME_ERROR)
    return normalized


def validate_email(email: str) -> str:
    normalized = sanitize_email(email)
    if not is_valid_email(normalized):
        raise ValidationError(EMAIL_ERROR)
    return normalized


def validate_phone(phone: str) -> str:
    normalized = sanitize_phone(phone)
    if not is_valid_phone(normalized):
        raise ValidationError(PHONE_ERROR)
    return normalized


def validate_initial_balance(balance: AmountLike) -> Decimal:
    """Opening balances may be zero but never negative"""
    try:
        value = to_decimal(balance)
    except ValueError:
        raise ValidationError(INITIAL_BALANCE_ERROR)

    if value < ZERO or not within_limit(value) or not has_cent_precision(value):
        raise ValidationError(INITIAL_BALANCE_ERROR)
    return value


def validate_amount(amount: AmountLike, label: str = "Amount") -> Decimal:
    """
    Validate a money-movement amount.

    Args:
        amount: Amount as Decimal, int, float or decimal string
        label: Operation name used in the error message, e.g. "Deposit amount"

    Returns:
        The amount as a Decimal

    Raises:
        InvalidAmount: If the amount is unparsable, not positive, above MAX_AMOUNT
            or finer than cents
    """
    try:
        value = to_decimal(amount)
    except ValueError:
        raise InvalidAmount(AMOUNT_ERROR)

    if value <= ZERO:
        raise InvalidAmount(f"{label} must be greater than zero")

    if not within_limit(value):
        raise InvalidAmount(f"{label} exceeds the maximum of {format_amount(MAX_AMOUNT)}")

    if not has_cent_precision(value):
        raise InvalidAmount(AMOUNT_ERROR)

    return value
