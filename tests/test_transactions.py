"""
Test suite for transactions module

Tests deposits, withdrawals and transfers under the minimum-balance floor,
atomicity of transfers, transaction history and post-debit balance alerts.
"""

import pytest
from decimal import Decimal
from unittest.mock import MagicMock, patch

from ledger_core.storage import InMemoryStorage, SQLiteStorage
from ledger_core.accounts import AccountStore
from ledger_core.alerts import AlertLevel, BalanceAlertEvaluator
from ledger_core.errors import (
    AccountNotFound, InsufficientFunds, InvalidAmount, LedgerError,
    SameAccountTransfer, StorageError
)
from ledger_core.transactions import (
    LedgerEngine, Transaction, TransactionStatus, TransactionType
)


def create_account(store, account_id, balance):
    return store.create(account_id, "John Doe", balance, "SAVINGS", "john@example.com", "9876543210")


class TestLedgerEngine:
    """Test ledger engine functionality"""

    def setup_method(self):
        """Set up test fixtures"""
        self.storage = InMemoryStorage()
        self.store = AccountStore(self.storage)
        self.notifier = MagicMock()
        self.evaluator = BalanceAlertEvaluator(
            Decimal("1000.00"), Decimal("500.00"), notifier=self.notifier
        )
        self.engine = LedgerEngine(
            self.storage, self.store,
            minimum_balance=Decimal("500.00"),
            alert_evaluator=self.evaluator
        )

        create_account(self.store, "ABC001", "1000")
        create_account(self.store, "ABC002", "200")

    def balance(self, account_id):
        return self.store.get(account_id).balance

    def state(self):
        """Everything an operation could change"""
        return (
            [(account.account_id, account.balance) for account in self.store.list()],
            self.storage.load_active_accounts(),
            self.storage.query_all_transactions(limit=1000)
        )

    def test_negative_floor_rejected(self):
        with pytest.raises(ValueError):
            LedgerEngine(self.storage, self.store, minimum_balance=Decimal("-1"))

    def test_minimum_balance_property(self):
        assert self.engine.minimum_balance == Decimal("500.00")

    # Deposits

    def test_deposit(self):
        """Test deposit credits the account and records the new balance"""
        transaction = self.engine.deposit("abc001", "250.50")

        assert isinstance(transaction, Transaction)
        assert transaction.transaction_type == TransactionType.DEPOSIT
        assert transaction.account_id == "ABC001"
        assert transaction.amount == Decimal("250.50")
        assert transaction.balance_after == Decimal("1250.50")
        assert transaction.description == "Deposit"
        assert transaction.status == TransactionStatus.SUCCESS
        assert transaction.counterparty_account_id is None
        assert not transaction.is_transfer
        assert self.balance("ABC001") == Decimal("1250.50")
        assert self.storage.load_active_accounts()[0]["balance"] == "1250.50"

    def test_deposit_custom_description(self):
        transaction = self.engine.deposit("ABC001", 100, "Salary credit")
        assert transaction.description == "Salary credit"

    def test_deposit_below_floor_account_allowed(self):
        transaction = self.engine.deposit("ABC002", 50)
        assert transaction.balance_after == Decimal("250")

    def test_deposit_does_not_alert(self):
        self.engine.deposit("ABC002", 10)
        self.notifier.notify.assert_not_called()

    @pytest.mark.parametrize("amount", [0, "-50", "abc", "10.001"])
    def test_deposit_invalid_amount(self, amount):
        before = self.state()
        with pytest.raises(InvalidAmount):
            self.engine.deposit("ABC001", amount)
        assert self.state() == before

    def test_deposit_negative_amount_message(self):
        with pytest.raises(InvalidAmount, match="Deposit amount must be greater than zero"):
            self.engine.deposit("ABC001", -50)

    def test_deposit_unknown_account(self):
        before = self.state()
        with pytest.raises(AccountNotFound):
            self.engine.deposit("ZZZ999", 100)
        assert self.state() == before

    def test_oversized_amounts_rejected(self):
        """Amounts beyond the limit fail as InvalidAmount on every operation"""
        before = self.state()
        with pytest.raises(InvalidAmount, match="Deposit amount exceeds the maximum"):
            self.engine.deposit("ABC001", "1e30")
        with pytest.raises(InvalidAmount, match="Withdrawal amount exceeds the maximum"):
            self.engine.withdraw("ABC001", "1e30")
        with pytest.raises(InvalidAmount, match="Transfer amount exceeds the maximum"):
            self.engine.transfer("ABC001", "ABC002", "1e30")
        assert self.state() == before

    def test_unknown_accounts_do_not_get_locks(self):
        """Rejected lookups leave the lock registry as it was"""
        for i in range(1000):
            with pytest.raises(AccountNotFound):
                self.engine.deposit(f"ZZZ{i:06d}", 10)
        with pytest.raises(AccountNotFound):
            self.engine.withdraw("not an id", 10)
        with pytest.raises(AccountNotFound):
            self.engine.transfer("ABC001", "ZZZ999", 10)
        assert set(self.engine._account_locks) <= {"ABC001"}

        self.engine.deposit("ABC002", 10)
        assert "ABC002" in self.engine._account_locks

    # Withdrawals

    def test_withdraw_respects_floor(self):
        """A withdrawal may reach the floor but never cross it"""
        first = self.engine.withdraw("ABC001", 400)
        assert first.transaction_type == TransactionType.WITHDRAWAL
        assert first.balance_after == Decimal("600.00")
        assert first.description == "Withdrawal"

        with pytest.raises(InsufficientFunds) as exc_info:
            self.engine.withdraw("ABC001", 200)
        assert str(exc_info.value) == "Withdrawal would violate minimum balance requirement of ₹500.00"
        assert self.balance("ABC001") == Decimal("600.00")

        exact = self.engine.withdraw("ABC001", 100)
        assert exact.balance_after == Decimal("500.00")

    def test_withdraw_more_than_balance(self):
        with pytest.raises(InsufficientFunds) as exc_info:
            self.engine.withdraw("ABC001", 1500)
        assert str(exc_info.value) == "Insufficient funds! Available: ₹1,000.00"

    def test_rejected_withdrawal_changes_nothing(self):
        before = self.state()
        for amount in [1500, 600, 0, "-1"]:
            with pytest.raises(LedgerError):
                self.engine.withdraw("ABC001", amount)
        assert self.state() == before
        assert self.engine.get_transaction_count("ABC001") == 0

    def test_account_below_floor_cannot_withdraw(self):
        with pytest.raises(InsufficientFunds, match="minimum balance"):
            self.engine.withdraw("ABC002", 50)

    def test_withdraw_unknown_account(self):
        with pytest.raises(AccountNotFound):
            self.engine.withdraw("ZZZ999", 10)

    # Transfers

    def test_transfer(self):
        """Test transfer produces a matched debit/credit pair"""
        debit, credit = self.engine.transfer("abc001", "abc002", 300)

        assert debit.transaction_type == TransactionType.TRANSFER_OUT
        assert credit.transaction_type == TransactionType.TRANSFER_IN
        assert debit.amount == credit.amount == Decimal("300")
        assert debit.account_id == "ABC001"
        assert credit.account_id == "ABC002"
        assert debit.counterparty_account_id == "ABC002"
        assert credit.counterparty_account_id == "ABC001"
        assert debit.is_transfer and credit.is_transfer
        assert debit.created_at == credit.created_at
        assert debit.transaction_id < credit.transaction_id
        assert debit.description == "Transfer to ABC002"
        assert credit.description == "Transfer from ABC001"
        assert debit.balance_after == Decimal("700.00")
        assert credit.balance_after == Decimal("500.00")

        assert self.balance("ABC001") == Decimal("700.00")
        assert self.balance("ABC002") == Decimal("500.00")

    def test_transfer_custom_description(self):
        debit, credit = self.engine.transfer("ABC001", "ABC002", 100, "Rent")
        assert debit.description == "Rent to ABC002"
        assert credit.description == "Rent from ABC001"

    def test_transfer_preserves_total(self):
        total = self.balance("ABC001") + self.balance("ABC002")
        self.engine.transfer("ABC001", "ABC002", "123.45")
        assert self.balance("ABC001") + self.balance("ABC002") == total

    def test_transfer_respects_floor_of_source_only(self):
        """ABC001 at 600 cannot send 300; ABC002 below floor may still receive"""
        self.engine.withdraw("ABC001", 400)
        before = self.state()

        with pytest.raises(InsufficientFunds) as exc_info:
            self.engine.transfer("ABC001", "ABC002", 300)
        assert str(exc_info.value) == "Transfer would violate minimum balance requirement of ₹500.00"
        assert self.state() == before

    def test_transfer_more_than_balance(self):
        with pytest.raises(InsufficientFunds) as exc_info:
            self.engine.transfer("ABC001", "ABC002", 2000)
        assert str(exc_info.value) == "Insufficient funds in source account! Available: ₹1,000.00"

    def test_transfer_to_same_account(self):
        before = self.state()
        with pytest.raises(SameAccountTransfer, match="Cannot transfer to the same account"):
            self.engine.transfer("ABC001", "abc001", 100)
        assert self.state() == before

    def test_transfer_amount_checked_before_accounts(self):
        with pytest.raises(InvalidAmount, match="Transfer amount must be greater than zero"):
            self.engine.transfer("ABC001", "ABC001", -5)

    def test_transfer_unknown_account(self):
        before = self.state()
        with pytest.raises(AccountNotFound):
            self.engine.transfer("ABC001", "ZZZ999", 100)
        with pytest.raises(AccountNotFound):
            self.engine.transfer("ZZZ999", "ABC001", 100)
        assert self.state() == before

    def test_transfer_to_closed_account(self):
        self.store.close("ABC002")
        with pytest.raises(AccountNotFound):
            self.engine.transfer("ABC001", "ABC002", 100)
        assert self.balance("ABC001") == Decimal("1000.00")

    def test_storage_failure_mid_transfer_rolls_back_both_legs(self):
        """A failing second balance write undoes the debit and both records"""
        before = self.state()
        original_update = self.storage.update_account_balance
        calls = []

        def fail_on_second(account_id, balance):
            calls.append(account_id)
            if len(calls) == 2:
                raise StorageError("write failed")
            original_update(account_id, balance)

        with patch.object(self.storage, "update_account_balance", side_effect=fail_on_second):
            with pytest.raises(StorageError):
                self.engine.transfer("ABC001", "ABC002", 100)

        assert self.state() == before
        assert self.engine.get_transaction_count("ABC001") == 0
        assert self.engine.get_transaction_count("ABC002") == 0
        self.notifier.notify.assert_not_called()

        # Ledger keeps working after the failure
        debit, _ = self.engine.transfer("ABC001", "ABC002", 100)
        assert debit.transaction_id == 1

    def test_storage_failure_recording_transaction(self):
        before = self.state()
        with patch.object(self.storage, "insert_transaction", side_effect=StorageError("write failed")):
            with pytest.raises(StorageError):
                self.engine.deposit("ABC001", 100)
        assert self.state() == before

    # History

    def test_history_newest_first(self):
        deposit = self.engine.deposit("ABC001", 100)
        withdrawal = self.engine.withdraw("ABC001", 50)
        debit, credit = self.engine.transfer("ABC001", "ABC002", 25)

        history = self.engine.get_transaction_history("abc001")
        assert [txn.transaction_id for txn in history] == [
            debit.transaction_id, withdrawal.transaction_id, deposit.transaction_id
        ]
        assert history[0] == debit
        assert self.engine.get_transaction_history("ABC002") == [credit]
        assert self.engine.get_transaction_count("ABC001") == 3
        assert self.engine.get_transaction_count("ABC002") == 1

    def test_balance_after_matches_current_balance(self):
        self.engine.deposit("ABC001", 100)
        self.engine.withdraw("ABC001", "30.25")
        self.engine.transfer("ABC001", "ABC002", 70)

        for account_id in ("ABC001", "ABC002"):
            latest = self.engine.get_transaction_history(account_id)[0]
            assert latest.balance_after == self.balance(account_id)

    def test_history_replays_to_balance(self):
        """Opening balance plus signed amounts equals the current balance"""
        self.engine.deposit("ABC001", 300)
        self.engine.withdraw("ABC001", 120)
        self.engine.transfer("ABC001", "ABC002", 80)

        history = self.engine.get_transaction_history("ABC001")
        assert Decimal("1000.00") + sum(txn.signed_amount for txn in history) == self.balance("ABC001")

    def test_history_of_closed_account_still_available(self):
        self.engine.deposit("ABC002", 10)
        self.store.close("ABC002")
        assert len(self.engine.get_transaction_history("ABC002")) == 1

    def test_history_of_unknown_account_is_empty(self):
        assert self.engine.get_transaction_history("ZZZ999") == []
        assert self.engine.get_transaction_count("ZZZ999") == 0

    def test_all_transactions(self):
        self.engine.deposit("ABC001", 1)
        self.engine.deposit("ABC002", 2)
        last = self.engine.deposit("ABC001", 3)

        recent = self.engine.get_all_transactions(limit=2)
        assert len(recent) == 2
        assert recent[0] == last
        assert len(self.engine.get_all_transactions()) == 3
        assert self.engine.get_all_transactions(limit=0) == []

    # Alerts

    def test_withdrawal_raises_low_balance_alert(self):
        self.engine.withdraw("ABC001", 400)

        self.notifier.notify.assert_called_once()
        account, level, threshold = self.notifier.notify.call_args[0]
        assert account.account_id == "ABC001"
        assert account.balance == Decimal("600.00")
        assert level == AlertLevel.LOW
        assert threshold == Decimal("1000.00")

    def test_healthy_withdrawal_does_not_alert(self):
        self.engine.deposit("ABC001", 1000)
        self.engine.withdraw("ABC001", 500)
        self.notifier.notify.assert_not_called()

    def test_transfer_alerts_source_account(self):
        self.engine.transfer("ABC001", "ABC002", 100)

        account, level, _ = self.notifier.notify.call_args[0]
        assert account.account_id == "ABC001"
        assert level == AlertLevel.LOW

    def test_critical_alert_with_lower_floor(self):
        engine = LedgerEngine(
            self.storage, self.store, minimum_balance=Decimal("0"), alert_evaluator=self.evaluator
        )
        engine.withdraw("ABC001", 700)

        _, level, threshold = self.notifier.notify.call_args[0]
        assert level == AlertLevel.CRITICAL
        assert threshold == Decimal("500.00")

    def test_notifier_failure_does_not_undo_withdrawal(self):
        self.notifier.notify.side_effect = RuntimeError("smtp down")

        transaction = self.engine.withdraw("ABC001", 400)

        assert transaction.balance_after == Decimal("600.00")
        assert self.balance("ABC001") == Decimal("600.00")

    def test_evaluator_failure_does_not_undo_withdrawal(self):
        evaluator = MagicMock()
        evaluator.evaluate.side_effect = RuntimeError("boom")
        engine = LedgerEngine(self.storage, self.store, alert_evaluator=evaluator)

        engine.withdraw("ABC001", 100)

        assert self.balance("ABC001") == Decimal("900.00")

    def test_engine_without_evaluator(self):
        engine = LedgerEngine(self.storage, self.store)
        assert engine.withdraw("ABC001", 100).balance_after == Decimal("900.00")

    # Logging

    def test_rejection_is_logged_as_warning(self):
        self.engine.logger = MagicMock()

        with pytest.raises(InsufficientFunds):
            self.engine.withdraw("ABC001", 5000)

        level, message = self.engine.logger.log.call_args[0]
        assert message.startswith("withdraw rejected")
        assert self.engine.logger.log.call_args[1]["extra"]["action"] == "withdraw"


class TestLedgerEngineSQLite:
    """The same guarantees on the persistent backend"""

    def setup_method(self):
        self.storage = SQLiteStorage()
        self.store = AccountStore(self.storage)
        self.engine = LedgerEngine(self.storage, self.store)
        create_account(self.store, "ABC001", "1000")
        create_account(self.store, "ABC002", "200")

    def teardown_method(self):
        self.storage.close()

    def test_operations_survive_reload(self):
        self.engine.deposit("ABC001", 100)
        self.engine.transfer("ABC001", "ABC002", 300)

        reloaded = AccountStore(self.storage)
        assert reloaded.get("ABC001").balance == Decimal("800.00")
        assert reloaded.get("ABC002").balance == Decimal("500.00")
        assert self.engine.get_transaction_count("ABC001") == 2

    def test_failed_transfer_rolls_back(self):
        original_update = self.storage.update_account_balance
        calls = []

        def fail_on_second(account_id, balance):
            calls.append(account_id)
            if len(calls) == 2:
                raise StorageError("write failed")
            original_update(account_id, balance)

        with patch.object(self.storage, "update_account_balance", side_effect=fail_on_second):
            with pytest.raises(StorageError):
                self.engine.transfer("ABC001", "ABC002", 100)

        balances = {row["account_id"]: row["balance"] for row in self.storage.load_active_accounts()}
        assert balances == {"ABC001": "1000.00", "ABC002": "200.00"}
        assert self.storage.query_all_transactions() == []
        assert self.store.get("ABC001").balance == Decimal("1000.00")
