"""
Account Management Module

Owns the authoritative in-memory map of active accounts and mirrors every
committed change to the backing store. Durable writes always happen first;
the in-memory map only ever shows state the store has accepted.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, TypeVar, Union
from enum import Enum
import threading

from .currency import AmountLike, format_amount, quantize
from .errors import AccountNotFound, DuplicateAccount, StorageError, ValidationError
from .logging_config import get_logger, log_action
from .storage import StorageInterface
from .validation import (
    validate_account_id, validate_name, validate_email, validate_phone,
    validate_initial_balance, sanitize_account_id
)


T = TypeVar("T")


class AccountCategory(Enum):
    """Kinds of accounts (display only, no behavioural difference)"""
    SAVINGS = "Savings Account"
    CURRENT = "Current Account"
    FIXED_DEPOSIT = "Fixed Deposit Account"
    SALARY = "Salary Account"

    @property
    def display_name(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: Union['AccountCategory', str]) -> 'AccountCategory':
        """Accept a member or its name in any case"""
        if isinstance(value, cls):
            return value
        try:
            return cls[str(value).strip().upper()]
        except KeyError:
            options = ", ".join(member.name for member in cls)
            raise ValidationError(f"Invalid Account Type! Must be one of: {options}")


class AccountStatus(Enum):
    """Account lifecycle states"""
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"


@dataclass(frozen=True)
class Account:
    """
    Immutable snapshot of an account.

    Balance changes replace the snapshot held by the store, so an Account
    obtained from get() or list() never changes underneath its holder.
    """
    account_id: str
    holder_name: str
    balance: Decimal
    category: AccountCategory
    email: str
    phone: str
    created_at: datetime
    status: AccountStatus = AccountStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE

    def __str__(self) -> str:
        return (f"Account[ID={self.account_id}, Holder={self.holder_name}, "
                f"Balance={format_amount(self.balance)}, Type={self.category.name}, "
                f"Status={self.status.value}]")


class AccountStore:
    """
    Manages account lifecycle and the write-through balance cache.

    Only the ledger engine may call apply_balance/apply_balances.
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.logger = get_logger("ledger.accounts")
        self._accounts: Dict[str, Account] = {}
        self._lock = threading.RLock()
        self._load_active_accounts()

    def _load_active_accounts(self) -> None:
        """Populate the cache from the store; a failed scan leaves it empty"""
        try:
            rows = self.storage.load_active_accounts()
            loaded = {}
            for row in rows:
                account = self._account_from_row(row)
                loaded[account.account_id] = account
        except (StorageError, KeyError, ValueError, ArithmeticError) as e:
            self.logger.error(f"Error loading accounts from storage: {e}")
            return

        with self._lock:
            self._accounts = loaded
        self.logger.info(f"Loaded {len(loaded)} accounts from storage")

    def create(
        self,
        account_id: str,
        holder_name: str,
        initial_balance: AmountLike,
        category: Union[AccountCategory, str],
        email: str,
        phone: str
    ) -> Account:
        """
        Create a new account

        Args:
            account_id: Identifier, 3 letters + 3-6 digits (normalized to uppercase)
            holder_name: Account holder name (normalized to title case)
            initial_balance: Opening balance, zero or more
            category: AccountCategory or its name
            email: Contact email (normalized to lowercase)
            phone: Contact phone, 10 digits (spaces and dashes removed)

        Returns:
            Created Account

        Raises:
            ValidationError: If any field is malformed
            DuplicateAccount: If the identifier was ever used
            StorageError: If the durable write fails
        """
        account_id = validate_account_id(account_id)
        holder_name = validate_name(holder_name)
        balance = quantize(validate_initial_balance(initial_balance))
        category = AccountCategory.parse(category)
        email = validate_email(email)
        phone = validate_phone(phone)

        with self._lock:
            if account_id in self._accounts or self.storage.account_exists(account_id):
                raise DuplicateAccount(f"Account with ID {account_id} already exists")

            account = Account(
                account_id=account_id,
                holder_name=holder_name,
                balance=balance,
                category=category,
                email=email,
                phone=phone,
                created_at=datetime.now(timezone.utc)
            )

            # Persist before exposing
            self.storage.insert_account(self._account_to_row(account))
            self._accounts[account_id] = account

        log_action(
            self.logger, "info", f"Account created: {account_id}",
            action="create_account", resource=f"account:{account_id}",
            extra={"category": category.name, "initial_balance": str(balance)}
        )
        return account

    def get(self, account_id: str) -> Account:
        """Get an active account by ID"""
        normalized = sanitize_account_id(account_id)
        account = self._accounts.get(normalized)
        if account is None:
            raise AccountNotFound(f"Account not found: {normalized}")
        return account

    def exists(self, account_id: str) -> bool:
        """Check if an active account exists"""
        return sanitize_account_id(account_id) in self._accounts

    def list(self) -> List[Account]:
        """Snapshot of all active accounts in insertion order"""
        with self._lock:
            return list(self._accounts.values())

    def count(self) -> int:
        """Number of active accounts"""
        return len(self._accounts)

    def apply_balance(self, account_id: str, new_balance: Decimal) -> Account:
        """Write a single balance through to storage, then to the cache"""
        self.apply_balances({account_id: new_balance}, lambda: None)
        return self._accounts[account_id]

    def apply_balances(self, updates: Dict[str, Decimal], journal: Callable[[], T]) -> T:
        """
        Commit balance changes together with the records describing them.

        Runs journal() and every balance write inside one storage atomic block.
        New balances reach the cache only after the block commits; on any
        failure the cache keeps its pre-call values and the store rolls back.

        Args:
            updates: Account id to new balance
            journal: Callable writing the transaction records; its result is returned

        Raises:
            AccountNotFound: If an account left the cache
            StorageError: If any durable write or the commit fails
        """
        with self._lock:
            for account_id in updates:
                if account_id not in self._accounts:
                    raise AccountNotFound(f"Account not found: {account_id}")

            try:
                with self.storage.atomic():
                    result = journal()
                    for account_id, new_balance in updates.items():
                        self.storage.update_account_balance(account_id, str(new_balance))
            except StorageError:
                self.logger.error(
                    f"Balance update rolled back for {', '.join(updates)}", exc_info=True
                )
                raise

            for account_id, new_balance in updates.items():
                self._accounts[account_id] = replace(self._accounts[account_id], balance=new_balance)

        return result

    def close(self, account_id: str) -> Account:
        """Logically close an account; its id stays retired"""
        normalized = sanitize_account_id(account_id)
        with self._lock:
            account = self._accounts.get(normalized)
            if account is None:
                raise AccountNotFound(f"Account not found: {normalized}")

            if not self.storage.mark_account_closed(normalized):
                raise AccountNotFound(f"Account not found: {normalized}")

            del self._accounts[normalized]

        log_action(
            self.logger, "info", f"Account closed: {normalized}",
            action="close_account", resource=f"account:{normalized}"
        )
        return replace(account, status=AccountStatus.CLOSED)

    def _account_to_row(self, account: Account) -> Dict:
        """Convert Account to a storage row"""
        return {
            "account_id": account.account_id,
            "holder_name": account.holder_name,
            "balance": str(account.balance),
            "category": account.category.name,
            "email": account.email,
            "phone": account.phone,
            "status": account.status.value,
            "created_at": account.created_at.isoformat()
        }

    def _account_from_row(self, row: Dict) -> Account:
        """Convert a storage row to Account"""
        return Account(
            account_id=row["account_id"],
            holder_name=row["holder_name"],
            balance=Decimal(row["balance"]),
            category=AccountCategory[row["category"]],
            email=row["email"],
            phone=row["phone"],
            created_at=datetime.fromisoformat(row["created_at"]),
            status=AccountStatus(row["status"])
        )
