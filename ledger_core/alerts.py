"""
Balance Alert Module

Classifies account balances against a low and a critical threshold and
reports non-healthy accounts to a notifier. Notification is fire-and-forget:
a failing notifier is logged and never affects the ledger.

BalanceMonitor runs the bulk scan periodically on its own thread.
"""

from decimal import Decimal
from dataclasses import dataclass, field
from typing import Iterable, List, Optional
from enum import Enum
import threading

from .accounts import Account, AccountStore
from .logging_config import get_logger, log_action


class AlertLevel(Enum):
    """Balance health classification"""
    HEALTHY = "HEALTHY"
    LOW = "LOW_BALANCE"
    CRITICAL = "CRITICAL_BALANCE"


@dataclass
class AlertScanResult:
    """Outcome of a bulk balance scan"""
    scanned: int = 0
    low: List[Account] = field(default_factory=list)
    critical: List[Account] = field(default_factory=list)

    @property
    def low_count(self) -> int:
        return len(self.low)

    @property
    def critical_count(self) -> int:
        return len(self.critical)


class BalanceAlertEvaluator:
    """
    Stateless threshold policy.

    The critical threshold is checked first, so a balance below both
    thresholds is CRITICAL.
    """

    def __init__(self, low_threshold: Decimal, critical_threshold: Decimal, notifier=None):
        if critical_threshold >= low_threshold:
            raise ValueError("Critical threshold must be lower than low threshold")

        self.low_threshold = low_threshold
        self.critical_threshold = critical_threshold
        self.notifier = notifier
        self.logger = get_logger("ledger.alerts")

    def classify(self, balance: Decimal) -> AlertLevel:
        if balance < self.critical_threshold:
            return AlertLevel.CRITICAL
        if balance < self.low_threshold:
            return AlertLevel.LOW
        return AlertLevel.HEALTHY

    def threshold_for(self, level: AlertLevel) -> Optional[Decimal]:
        """Threshold that was crossed for a level, None when healthy"""
        if level == AlertLevel.CRITICAL:
            return self.critical_threshold
        if level == AlertLevel.LOW:
            return self.low_threshold
        return None

    def evaluate(self, account: Account) -> AlertLevel:
        """Classify an account and notify when it is not healthy"""
        level = self.classify(account.balance)
        if level != AlertLevel.HEALTHY:
            self._notify(account, level)
        return level

    def scan(self, accounts: Iterable[Account]) -> AlertScanResult:
        """Evaluate every account, notifying for each non-healthy one"""
        result = AlertScanResult()
        for account in accounts:
            result.scanned += 1
            level = self.evaluate(account)
            if level == AlertLevel.CRITICAL:
                result.critical.append(account)
            elif level == AlertLevel.LOW:
                result.low.append(account)

        log_action(
            self.logger, "info", f"Balance scan complete: {result.scanned} accounts",
            action="balance_scan",
            extra={"low_balance_alerts": result.low_count,
                   "critical_balance_alerts": result.critical_count}
        )
        return result

    def low_balance_accounts(self, accounts: Iterable[Account]) -> List[Account]:
        """Accounts below the low threshold (critical ones included)"""
        return [account for account in accounts if account.balance < self.low_threshold]

    def critical_balance_accounts(self, accounts: Iterable[Account]) -> List[Account]:
        return [account for account in accounts if account.balance < self.critical_threshold]

    def _notify(self, account: Account, level: AlertLevel) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify(account, level, self.threshold_for(level))
        except Exception:
            # Alerts never block or undo the financial operation
            self.logger.exception(f"Notification failed for {account.account_id} ({level.value})")


class BalanceMonitor:
    """Periodic balance scan over all active accounts"""

    def __init__(self, account_store: AccountStore, evaluator: BalanceAlertEvaluator,
                 interval_seconds: float = 3600.0):
        if interval_seconds <= 0:
            raise ValueError("Monitoring interval must be positive")

        self.account_store = account_store
        self.evaluator = evaluator
        self.interval_seconds = interval_seconds
        self.logger = get_logger("ledger.alerts")
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._state_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        """Start scanning; returns False if already running"""
        with self._state_lock:
            if self.is_running:
                self.logger.warning("Balance monitoring is already running")
                return False

            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run, name="BalanceMonitor", daemon=True
            )
            self._thread.start()

        self.logger.info(f"Balance monitoring started (every {self.interval_seconds:g} seconds)")
        return True

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop scanning and wait for the worker thread to exit"""
        with self._state_lock:
            thread = self._thread
            if thread is None:
                return
            self._stop_event.set()
            thread.join(timeout)
            if thread.is_alive():
                # Keep the reference so start() cannot run a second worker
                self.logger.warning("Balance monitoring thread did not stop within timeout")
                return
            self._thread = None

        self.logger.info("Balance monitoring stopped")

    def check_all(self) -> AlertScanResult:
        """Scan every active account now"""
        return self.evaluator.scan(self.account_store.list())

    def check_account(self, account_id: str) -> AlertLevel:
        """Evaluate one account now"""
        return self.evaluator.evaluate(self.account_store.get(account_id))

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.check_all()
            except Exception:
                self.logger.exception("Error in balance monitoring")
            self._stop_event.wait(self.interval_seconds)
