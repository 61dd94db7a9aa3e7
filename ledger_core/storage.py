"""
Storage Backend Module

Provides the backing store contract used by the account store and the ledger
engine, with an in-memory implementation (testing) and a SQLite
implementation (persistence). All monetary values stored as Decimal strings,
all timestamps as ISO-8601 strings.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Any, Union
from datetime import datetime, timezone
import sqlite3
import json
import threading
from pathlib import Path
from contextlib import contextmanager

from .errors import StorageError


ACCOUNT_COLUMNS = (
    "account_id", "holder_name", "balance", "category",
    "email", "phone", "status", "created_at"
)

TRANSACTION_COLUMNS = (
    "account_id", "transaction_type", "amount", "balance_after",
    "description", "counterparty_account_id", "status", "created_at"
)


class StorageInterface(ABC):
    """
    Abstract interface for storage backends.

    Every call is synchronous and every failure surfaces as StorageError.
    Writes made inside an atomic() block become durable together when the
    outermost block exits, or are discarded together if it raises.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._in_transaction = False
        self._atomic_depth = 0

    # Accounts

    @abstractmethod
    def load_active_accounts(self) -> List[Dict[str, Any]]:
        """Load every ACTIVE account row in insertion order"""
        pass

    @abstractmethod
    def insert_account(self, row: Dict[str, Any]) -> None:
        """Insert a new account row"""
        pass

    @abstractmethod
    def account_exists(self, account_id: str) -> bool:
        """Check whether an id was ever used, including closed accounts"""
        pass

    @abstractmethod
    def update_account_balance(self, account_id: str, balance: str) -> None:
        """Overwrite the stored balance of an account"""
        pass

    @abstractmethod
    def mark_account_closed(self, account_id: str) -> bool:
        """Mark an active account CLOSED. Returns False if no active row matched"""
        pass

    # Transactions

    @abstractmethod
    def insert_transaction(self, row: Dict[str, Any]) -> int:
        """Insert a transaction row and return its assigned identifier"""
        pass

    @abstractmethod
    def query_transactions(self, account_id: str, newest_first: bool = True) -> List[Dict[str, Any]]:
        """Transaction rows of one account"""
        pass

    @abstractmethod
    def query_all_transactions(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Most recent transaction rows across all accounts, newest first"""
        pass

    @abstractmethod
    def count_transactions(self, account_id: str) -> int:
        """Number of transaction rows for an account"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def begin_transaction(self) -> None:
        """Start a database transaction (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    @contextmanager
    def atomic(self):
        """
        Context manager for atomic operations.

        Holds the storage lock for the whole block so concurrent units of work
        never interleave their writes. Nested blocks join the outermost one.
        """
        with self._lock:
            outermost = self._atomic_depth == 0
            if outermost:
                self.begin_transaction()
            self._atomic_depth += 1
            try:
                yield
            except BaseException:
                self._atomic_depth -= 1
                if outermost:
                    self.rollback()
                raise
            self._atomic_depth -= 1
            if outermost:
                self.commit()


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        super().__init__()
        self._accounts: Dict[str, Dict[str, Any]] = {}
        self._transactions: List[Dict[str, Any]] = []
        self._next_transaction_id = 1
        # Undo state of the open transaction: pre-change account rows and
        # the transaction log length and id counter at begin
        self._touched_accounts: Dict[str, Any] = {}
        self._transaction_mark = (0, 1)

    @staticmethod
    def _copy(data):
        # Deep copy to prevent external mutation
        return json.loads(json.dumps(data, default=str))

    def load_active_accounts(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [self._copy(row) for row in self._accounts.values()
                    if row["status"] == "ACTIVE"]

    def insert_account(self, row: Dict[str, Any]) -> None:
        with self._lock:
            account_id = row["account_id"]
            if account_id in self._accounts:
                raise StorageError(f"Account row {account_id} already exists")
            self._track(account_id)
            record = {column: row.get(column) for column in ACCOUNT_COLUMNS}
            record["updated_at"] = record["created_at"]
            self._accounts[account_id] = self._copy(record)

    def account_exists(self, account_id: str) -> bool:
        with self._lock:
            return account_id in self._accounts

    def update_account_balance(self, account_id: str, balance: str) -> None:
        with self._lock:
            record = self._accounts.get(account_id)
            if record is None:
                raise StorageError(f"Account row {account_id} not found")
            self._track(account_id)
            record["balance"] = str(balance)
            record["updated_at"] = datetime.now(timezone.utc).isoformat()

    def mark_account_closed(self, account_id: str) -> bool:
        with self._lock:
            record = self._accounts.get(account_id)
            if record is None or record["status"] != "ACTIVE":
                return False
            self._track(account_id)
            record["status"] = "CLOSED"
            record["updated_at"] = datetime.now(timezone.utc).isoformat()
            return True

    def insert_transaction(self, row: Dict[str, Any]) -> int:
        with self._lock:
            if row["account_id"] not in self._accounts:
                raise StorageError(f"Account row {row['account_id']} not found")
            transaction_id = self._next_transaction_id
            record = {column: row.get(column) for column in TRANSACTION_COLUMNS}
            record["transaction_id"] = transaction_id
            self._transactions.append(self._copy(record))
            self._next_transaction_id += 1
            return transaction_id

    def query_transactions(self, account_id: str, newest_first: bool = True) -> List[Dict[str, Any]]:
        with self._lock:
            rows = [self._copy(row) for row in self._transactions
                    if row["account_id"] == account_id]
            if newest_first:
                rows.reverse()
            return rows

    def query_all_transactions(self, limit: int = 100) -> List[Dict[str, Any]]:
        with self._lock:
            newest = list(reversed(self._transactions))[:limit]
            return [self._copy(row) for row in newest]

    def count_transactions(self, account_id: str) -> int:
        with self._lock:
            return sum(1 for row in self._transactions if row["account_id"] == account_id)

    def _track(self, account_id: str) -> None:
        """Remember an account row as it was before its first change in a transaction"""
        if self._in_transaction and account_id not in self._touched_accounts:
            record = self._accounts.get(account_id)
            self._touched_accounts[account_id] = None if record is None else dict(record)

    def begin_transaction(self) -> None:
        """Mark the transaction log; account rows are saved as they are touched"""
        with self._lock:
            if not self._in_transaction:
                self._touched_accounts = {}
                self._transaction_mark = (len(self._transactions), self._next_transaction_id)
                self._in_transaction = True

    def commit(self) -> None:
        with self._lock:
            self._touched_accounts = {}
            self._in_transaction = False

    def rollback(self) -> None:
        with self._lock:
            if self._in_transaction:
                for account_id, record in self._touched_accounts.items():
                    if record is None:
                        self._accounts.pop(account_id, None)
                    else:
                        self._accounts[account_id] = record
                # The log is append-only, so cutting it back undoes every insert
                length, next_transaction_id = self._transaction_mark
                del self._transactions[length:]
                self._next_transaction_id = next_transaction_id
            self._touched_accounts = {}
            self._in_transaction = False

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        super().__init__()
        self.db_path = str(db_path)
        try:
            # isolation_level='DEFERRED' enables manual transaction control
            self._connection = sqlite3.connect(
                self.db_path, check_same_thread=False, isolation_level='DEFERRED'
            )
            self._connection.row_factory = sqlite3.Row

            with self._lock:
                # Enable WAL mode for better concurrent access
                if self.db_path != ":memory:":
                    self._connection.execute("PRAGMA journal_mode = WAL")
                    self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.execute("PRAGMA foreign_keys = ON")
                self._create_schema()
                self._connection.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open database {self.db_path}: {e}") from e

    def _create_schema(self) -> None:
        """Create tables and indexes if missing"""
        self._connection.execute("""
            CREATE TABLE IF NOT EXISTS accounts (
                account_id TEXT PRIMARY KEY,
                holder_name TEXT NOT NULL,
                balance TEXT NOT NULL,
                category TEXT NOT NULL,
                email TEXT NOT NULL,
                phone TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'ACTIVE',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._connection.execute("""
            CREATE TABLE IF NOT EXISTS transactions (
                transaction_id INTEGER PRIMARY KEY AUTOINCREMENT,
                account_id TEXT NOT NULL REFERENCES accounts(account_id),
                transaction_type TEXT NOT NULL,
                amount TEXT NOT NULL,
                balance_after TEXT NOT NULL,
                description TEXT,
                counterparty_account_id TEXT,
                status TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        """)
        self._connection.execute("""
            CREATE INDEX IF NOT EXISTS idx_transactions_account
            ON transactions(account_id, transaction_id)
        """)

    @contextmanager
    def _operation(self, description: str):
        """Serialize access and translate driver errors into StorageError"""
        with self._lock:
            if self._connection is None:
                raise StorageError("Storage is closed")
            try:
                yield self._connection
                # Only commit if not in transaction
                if not self._in_transaction:
                    self._connection.commit()
            except sqlite3.Error as e:
                if not self._in_transaction:
                    self._connection.rollback()
                raise StorageError(f"{description} failed: {e}") from e

    def load_active_accounts(self) -> List[Dict[str, Any]]:
        with self._operation("Loading accounts") as conn:
            cursor = conn.execute("""
                SELECT * FROM accounts WHERE status = 'ACTIVE' ORDER BY rowid
            """)
            return [dict(row) for row in cursor.fetchall()]

    def insert_account(self, row: Dict[str, Any]) -> None:
        with self._operation(f"Inserting account {row['account_id']}") as conn:
            values = [row.get(column) for column in ACCOUNT_COLUMNS]
            conn.execute(f"""
                INSERT INTO accounts ({', '.join(ACCOUNT_COLUMNS)}, updated_at)
                VALUES ({', '.join('?' for _ in ACCOUNT_COLUMNS)}, ?)
            """, values + [row.get("created_at")])

    def account_exists(self, account_id: str) -> bool:
        with self._operation(f"Looking up account {account_id}") as conn:
            cursor = conn.execute("""
                SELECT 1 FROM accounts WHERE account_id = ? LIMIT 1
            """, (account_id,))
            return cursor.fetchone() is not None

    def update_account_balance(self, account_id: str, balance: str) -> None:
        with self._operation(f"Updating balance of {account_id}") as conn:
            cursor = conn.execute("""
                UPDATE accounts SET balance = ?, updated_at = ? WHERE account_id = ?
            """, (str(balance), datetime.now(timezone.utc).isoformat(), account_id))
            if cursor.rowcount != 1:
                raise StorageError(f"Account row {account_id} not found")

    def mark_account_closed(self, account_id: str) -> bool:
        with self._operation(f"Closing account {account_id}") as conn:
            cursor = conn.execute("""
                UPDATE accounts SET status = 'CLOSED', updated_at = ?
                WHERE account_id = ? AND status = 'ACTIVE'
            """, (datetime.now(timezone.utc).isoformat(), account_id))
            return cursor.rowcount > 0

    def insert_transaction(self, row: Dict[str, Any]) -> int:
        with self._operation(f"Recording transaction for {row['account_id']}") as conn:
            cursor = conn.execute(f"""
                INSERT INTO transactions ({', '.join(TRANSACTION_COLUMNS)})
                VALUES ({', '.join('?' for _ in TRANSACTION_COLUMNS)})
            """, [row.get(column) for column in TRANSACTION_COLUMNS])
            return cursor.lastrowid

    def query_transactions(self, account_id: str, newest_first: bool = True) -> List[Dict[str, Any]]:
        order = "DESC" if newest_first else "ASC"
        with self._operation(f"Querying transactions of {account_id}") as conn:
            cursor = conn.execute(f"""
                SELECT * FROM transactions WHERE account_id = ?
                ORDER BY transaction_id {order}
            """, (account_id,))
            return [dict(row) for row in cursor.fetchall()]

    def query_all_transactions(self, limit: int = 100) -> List[Dict[str, Any]]:
        with self._operation("Querying transactions") as conn:
            cursor = conn.execute("""
                SELECT * FROM transactions ORDER BY transaction_id DESC LIMIT ?
            """, (limit,))
            return [dict(row) for row in cursor.fetchall()]

    def count_transactions(self, account_id: str) -> int:
        with self._operation(f"Counting transactions of {account_id}") as conn:
            cursor = conn.execute("""
                SELECT COUNT(*) AS count FROM transactions WHERE account_id = ?
            """, (account_id,))
            return cursor.fetchone()['count']

    def begin_transaction(self) -> None:
        """Start a database transaction"""
        with self._lock:
            if not self._in_transaction:
                # SQLite with isolation_level='DEFERRED' automatically starts transactions
                # We just need to track the state
                self._in_transaction = True

    def commit(self) -> None:
        """Commit current transaction"""
        with self._lock:
            if self._in_transaction:
                self._in_transaction = False
                try:
                    self._connection.commit()
                except sqlite3.Error as e:
                    self._connection.rollback()
                    raise StorageError(f"Commit failed: {e}") from e

    def rollback(self) -> None:
        """Rollback current transaction"""
        with self._lock:
            if self._in_transaction:
                self._in_transaction = False
                if self._connection is not None:
                    self._connection.rollback()

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str) -> StorageInterface:
    """
    Build a storage backend from a URL.

    Supported forms: ``memory://``, ``sqlite:///:memory:``, ``sqlite:///path/to/file.db``
    """
    if database_url == "memory://":
        return InMemoryStorage()
    if database_url.startswith("sqlite:///"):
        return SQLiteStorage(database_url[len("sqlite:///"):] or ":memory:")
    raise ValueError(f"Unsupported database URL: {database_url}")
