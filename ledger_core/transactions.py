"""
Transaction Processing Module

The ledger engine: the only component allowed to change balances. Handles
deposits, withdrawals and transfers under the minimum-balance floor. Every
accepted operation commits its balance writes and its transaction records in
one storage transaction; a rejected operation changes nothing and records
nothing.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple
from enum import Enum
from contextlib import ExitStack, contextmanager
import threading

from .accounts import Account, AccountStore
from .currency import AmountLike, DEFAULT_SYMBOL, format_amount
from .errors import AccountNotFound, InsufficientFunds, LedgerError, SameAccountTransfer
from .logging_config import get_logger, log_action
from .storage import StorageInterface
from .validation import sanitize_account_id, validate_amount


class TransactionType(Enum):
    """Types of ledger transactions"""
    DEPOSIT = "Deposit"
    WITHDRAWAL = "Withdrawal"
    TRANSFER_OUT = "Transfer Out"
    TRANSFER_IN = "Transfer In"

    @property
    def display_name(self) -> str:
        return self.value

    @property
    def is_debit(self) -> bool:
        return self in (TransactionType.WITHDRAWAL, TransactionType.TRANSFER_OUT)


class TransactionStatus(Enum):
    """States of a transaction record"""
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"      # Reserved; no operation produces it
    REVERSED = "REVERSED"  # Reserved; no operation produces it


@dataclass(frozen=True)
class Transaction:
    """
    Immutable transaction record.

    balance_after is the account balance right after this transaction and is
    never recomputed.
    """
    transaction_id: int
    account_id: str
    transaction_type: TransactionType
    amount: Decimal
    balance_after: Decimal
    description: str
    created_at: datetime
    counterparty_account_id: Optional[str] = None
    status: TransactionStatus = TransactionStatus.SUCCESS

    @property
    def signed_amount(self) -> Decimal:
        """Effect of this transaction on the account balance"""
        return -self.amount if self.transaction_type.is_debit else self.amount

    @property
    def is_transfer(self) -> bool:
        return self.counterparty_account_id is not None


class LedgerEngine:
    """
    Applies money movements to the account store.

    Each operation runs VALIDATE -> LOAD -> CHECK -> COMMIT -> ALERT while
    holding the locks of the accounts it touches. Transfers take both locks
    in identifier order so opposite transfers over one pair cannot deadlock.
    """

    def __init__(
        self,
        storage: StorageInterface,
        account_store: AccountStore,
        minimum_balance: Decimal = Decimal("500.00"),
        alert_evaluator=None,
        currency_symbol: str = DEFAULT_SYMBOL
    ):
        if minimum_balance < 0:
            raise ValueError("Minimum balance must be non-negative")

        self.storage = storage
        self.account_store = account_store
        self.alert_evaluator = alert_evaluator
        self.currency_symbol = currency_symbol
        self.logger = get_logger("ledger.transactions")
        self._minimum_balance = minimum_balance
        self._account_locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def minimum_balance(self) -> Decimal:
        return self._minimum_balance

    def _account_lock(self, account_id: str) -> threading.Lock:
        """Lock of an account; only accounts known to the store get one"""
        with self._locks_guard:
            lock = self._account_locks.get(account_id)
            if lock is None:
                if not self.account_store.exists(account_id):
                    raise AccountNotFound(f"Account not found: {account_id}")
                lock = self._account_locks[account_id] = threading.Lock()
            return lock

    @contextmanager
    def _locked(self, *account_ids: str):
        """Hold the locks of the given accounts, acquired in sorted order"""
        with ExitStack() as stack:
            for account_id in sorted(set(account_ids)):
                stack.enter_context(self._account_lock(account_id))
            yield

    def _format(self, amount: Decimal) -> str:
        return format_amount(amount, self.currency_symbol)

    def deposit(self, account_id: str, amount: AmountLike,
                description: Optional[str] = None) -> Transaction:
        """
        Deposit money into an account

        Args:
            account_id: Account to credit
            amount: Positive amount with at most 2 decimal places
            description: Optional description, defaults to "Deposit"

        Returns:
            The committed DEPOSIT transaction

        Raises:
            InvalidAmount: If amount is not positive
            AccountNotFound: If the account is missing or closed
            StorageError: If the backing store fails
        """
        account_id = sanitize_account_id(account_id)
        try:
            value = validate_amount(amount, "Deposit amount")

            with self._locked(account_id):
                account = self.account_store.get(account_id)
                new_balance = account.balance + value
                row = self._transaction_row(
                    account_id, TransactionType.DEPOSIT, value, new_balance,
                    description or "Deposit", datetime.now(timezone.utc)
                )
                transaction = self.account_store.apply_balances(
                    {account_id: new_balance}, lambda: self._record(row)
                )
        except LedgerError as e:
            self._log_rejection("deposit", account_id, amount, e)
            raise

        self._log_transaction(transaction)
        return transaction

    def withdraw(self, account_id: str, amount: AmountLike,
                 description: Optional[str] = None) -> Transaction:
        """
        Withdraw money from an account

        The withdrawal must not exceed the balance and must leave at least
        the minimum balance in the account.

        Returns:
            The committed WITHDRAWAL transaction

        Raises:
            InvalidAmount: If amount is not positive
            AccountNotFound: If the account is missing or closed
            InsufficientFunds: If the balance is too low or the floor would be breached
            StorageError: If the backing store fails
        """
        account_id = sanitize_account_id(account_id)
        try:
            value = validate_amount(amount, "Withdrawal amount")

            with self._locked(account_id):
                account = self.account_store.get(account_id)
                new_balance = self._check_debit(account, value, "Withdrawal", "")
                row = self._transaction_row(
                    account_id, TransactionType.WITHDRAWAL, value, new_balance,
                    description or "Withdrawal", datetime.now(timezone.utc)
                )
                transaction = self.account_store.apply_balances(
                    {account_id: new_balance}, lambda: self._record(row)
                )
        except LedgerError as e:
            self._log_rejection("withdraw", account_id, amount, e)
            raise

        self._log_transaction(transaction)
        self._raise_alert(replace(account, balance=new_balance))
        return transaction

    def transfer(self, from_account_id: str, to_account_id: str, amount: AmountLike,
                 description: Optional[str] = None) -> Tuple[Transaction, Transaction]:
        """
        Move money between two accounts

        Both legs, both transaction records and both balance writes commit
        together or not at all. The floor applies to the source account only.

        Args:
            from_account_id: Account to debit
            to_account_id: Account to credit
            amount: Positive amount with at most 2 decimal places
            description: Optional description, defaults to "Transfer"

        Returns:
            (TRANSFER_OUT transaction, TRANSFER_IN transaction)

        Raises:
            InvalidAmount: If amount is not positive
            SameAccountTransfer: If both sides name the same account
            AccountNotFound: If either account is missing or closed
            InsufficientFunds: If the source balance is too low or the floor would be breached
            StorageError: If the backing store fails
        """
        from_account_id = sanitize_account_id(from_account_id)
        to_account_id = sanitize_account_id(to_account_id)
        try:
            value = validate_amount(amount, "Transfer amount")

            if from_account_id == to_account_id:
                raise SameAccountTransfer("Cannot transfer to the same account")

            with self._locked(from_account_id, to_account_id):
                source = self.account_store.get(from_account_id)
                destination = self.account_store.get(to_account_id)

                new_source_balance = self._check_debit(source, value, "Transfer", " in source account")
                new_destination_balance = destination.balance + value

                desc = description or "Transfer"
                now = datetime.now(timezone.utc)
                debit_row = self._transaction_row(
                    from_account_id, TransactionType.TRANSFER_OUT, value, new_source_balance,
                    f"{desc} to {to_account_id}", now, counterparty=to_account_id
                )
                credit_row = self._transaction_row(
                    to_account_id, TransactionType.TRANSFER_IN, value, new_destination_balance,
                    f"{desc} from {from_account_id}", now, counterparty=from_account_id
                )

                debit, credit = self.account_store.apply_balances(
                    {from_account_id: new_source_balance, to_account_id: new_destination_balance},
                    lambda: (self._record(debit_row), self._record(credit_row))
                )
        except LedgerError as e:
            self._log_rejection("transfer", f"{from_account_id}->{to_account_id}", amount, e)
            raise

        log_action(
            self.logger, "info",
            f"Transfer successful: {self._format(value)} from {from_account_id} to {to_account_id}",
            action="transfer", resource=f"account:{from_account_id}",
            extra={
                "debit_transaction_id": debit.transaction_id,
                "credit_transaction_id": credit.transaction_id,
                "amount": str(value)
            }
        )
        self._raise_alert(replace(source, balance=new_source_balance))
        return debit, credit

    def get_transaction_history(self, account_id: str) -> List[Transaction]:
        """Transactions of an account, newest first (closed accounts included)"""
        rows = self.storage.query_transactions(sanitize_account_id(account_id), newest_first=True)
        return [self._transaction_from_row(row) for row in rows]

    def get_all_transactions(self, limit: int = 100) -> List[Transaction]:
        """Most recent transactions across all accounts, newest first"""
        if limit <= 0:
            return []
        rows = self.storage.query_all_transactions(limit)
        return [self._transaction_from_row(row) for row in rows]

    def get_transaction_count(self, account_id: str) -> int:
        """Number of transactions recorded for an account"""
        return self.storage.count_transactions(sanitize_account_id(account_id))

    def _check_debit(self, account: Account, amount: Decimal, operation: str, where: str) -> Decimal:
        """Return the post-debit balance or raise InsufficientFunds"""
        if amount > account.balance:
            raise InsufficientFunds(
                f"Insufficient funds{where}! Available: {self._format(account.balance)}"
            )

        new_balance = account.balance - amount
        if new_balance < self._minimum_balance:
            raise InsufficientFunds(
                f"{operation} would violate minimum balance requirement of "
                f"{self._format(self._minimum_balance)}"
            )
        return new_balance

    def _raise_alert(self, account: Account) -> None:
        """Classify the debited account; notification is best-effort"""
        if self.alert_evaluator is None:
            return
        try:
            self.alert_evaluator.evaluate(account)
        except Exception:
            self.logger.exception(f"Balance alert failed for {account.account_id}")

    def _record(self, row: Dict) -> Transaction:
        """Insert a transaction row; the store assigns the identifier"""
        transaction_id = self.storage.insert_transaction(row)
        return self._transaction_from_row(dict(row, transaction_id=transaction_id))

    def _transaction_row(
        self,
        account_id: str,
        transaction_type: TransactionType,
        amount: Decimal,
        balance_after: Decimal,
        description: str,
        created_at: datetime,
        counterparty: Optional[str] = None
    ) -> Dict:
        return {
            "account_id": account_id,
            "transaction_type": transaction_type.name,
            "amount": str(amount),
            "balance_after": str(balance_after),
            "description": description,
            "counterparty_account_id": counterparty,
            "status": TransactionStatus.SUCCESS.value,
            "created_at": created_at.isoformat()
        }

    def _transaction_from_row(self, row: Dict) -> Transaction:
        return Transaction(
            transaction_id=int(row["transaction_id"]),
            account_id=row["account_id"],
            transaction_type=TransactionType[row["transaction_type"]],
            amount=Decimal(row["amount"]),
            balance_after=Decimal(row["balance_after"]),
            description=row["description"],
            created_at=datetime.fromisoformat(row["created_at"]),
            counterparty_account_id=row.get("counterparty_account_id"),
            status=TransactionStatus(row["status"])
        )

    def _log_transaction(self, transaction: Transaction) -> None:
        log_action(
            self.logger, "info",
            f"{transaction.transaction_type.display_name} successful: {self._format(transaction.amount)}",
            action=transaction.transaction_type.name.lower(),
            resource=f"account:{transaction.account_id}",
            extra={
                "transaction_id": transaction.transaction_id,
                "amount": str(transaction.amount),
                "balance_after": str(transaction.balance_after)
            }
        )

    def _log_rejection(self, operation: str, target: str, amount, error: LedgerError) -> None:
        log_action(
            self.logger, "warning", f"{operation} rejected: {error}",
            action=operation, resource=f"account:{target}",
            extra={"amount": str(amount), "error": type(error).__name__}
        )
