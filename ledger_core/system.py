"""
Ledger System Wiring

Builds every ledger component once, from configuration, and hands out
references. Nothing in the package keeps module-level ledger state; callers
own the LedgerSystem they construct.
"""

from typing import Optional

from .accounts import AccountStore
from .alerts import BalanceAlertEvaluator, BalanceMonitor
from .config import LedgerConfig, get_config
from .logging_config import get_logger
from .notifications import Notifier, build_notifier
from .storage import StorageInterface, create_storage
from .transactions import LedgerEngine


class LedgerSystem:
    """Account ledger with all components initialized"""

    def __init__(
        self,
        config: Optional[LedgerConfig] = None,
        storage: Optional[StorageInterface] = None,
        notifier: Optional[Notifier] = None
    ):
        self.config = config or get_config()
        self.logger = get_logger("ledger")

        # Initialize storage
        self.storage = storage or create_storage(self.config.database_url)

        self.notifier = notifier or build_notifier(
            webhook_url=self.config.webhook_url,
            webhook_timeout=self.config.webhook_timeout,
            symbol=self.config.currency_symbol
        )

        # Initialize core components
        self.account_store = AccountStore(self.storage)
        self.alert_evaluator = BalanceAlertEvaluator(
            low_threshold=self.config.low_balance_threshold,
            critical_threshold=self.config.critical_balance_threshold,
            notifier=self.notifier
        )
        self.ledger = LedgerEngine(
            self.storage,
            self.account_store,
            minimum_balance=self.config.minimum_balance,
            alert_evaluator=self.alert_evaluator,
            currency_symbol=self.config.currency_symbol
        )
        self.monitor = BalanceMonitor(
            self.account_store,
            self.alert_evaluator,
            interval_seconds=self.config.monitoring_interval_seconds
        )

    def start(self) -> None:
        """Start background work enabled by configuration"""
        if self.config.monitoring_enabled:
            self.monitor.start()

    def shutdown(self) -> None:
        """Stop background work and release the backing store"""
        self.monitor.stop()
        self.storage.close()
        self.logger.info("Ledger system shut down")
