"""
Notification Module

Delivery side of balance alerts. A notifier receives the account, the alert
level and the threshold that was crossed. Callers treat every notifier as
fire-and-forget: exceptions are logged by the caller, never propagated into
a ledger operation.
"""

from decimal import Decimal
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from abc import ABC, abstractmethod
import requests

from .accounts import Account
from .alerts import AlertLevel
from .currency import DEFAULT_SYMBOL, format_amount
from .errors import NotificationError
from .logging_config import get_logger, log_action


def build_alert_message(account: Account, level: AlertLevel, threshold: Decimal,
                        symbol: str = DEFAULT_SYMBOL) -> Tuple[str, str]:
    """Render subject and body of a balance alert"""
    label = "Critical Balance Alert" if level == AlertLevel.CRITICAL else "Low Balance Alert"
    subject = f"{label} - {account.account_id}"
    body = (
        f"Dear {account.holder_name},\n\n"
        f"This is to inform you that your account balance has fallen below the minimum threshold.\n\n"
        f"Account ID: {account.account_id}\n"
        f"Account Type: {account.category.display_name}\n"
        f"Current Balance: {format_amount(account.balance, symbol)}\n"
        f"Minimum Threshold: {format_amount(threshold, symbol)}\n\n"
        f"Please deposit funds to avoid any inconvenience."
    )
    return subject, body


class Notifier(ABC):
    """Abstract base class for alert notifiers"""

    @abstractmethod
    def notify(self, account: Account, level: AlertLevel, threshold: Decimal) -> None:
        """Deliver an alert. Raises NotificationError on failure."""
        pass


class LogNotifier(Notifier):
    """Writes alerts to the structured log instead of sending them"""

    def __init__(self, logger=None, symbol: str = DEFAULT_SYMBOL):
        self.logger = logger or get_logger("ledger.notifications")
        self.symbol = symbol

    def notify(self, account: Account, level: AlertLevel, threshold: Decimal) -> None:
        subject, _ = build_alert_message(account, level, threshold, self.symbol)
        log_action(
            self.logger, "warning", subject,
            action=level.value.lower(), resource=f"account:{account.account_id}",
            extra={
                "balance": str(account.balance),
                "threshold": str(threshold),
                "recipient": account.email
            }
        )


class WebhookNotifier(Notifier):
    """Posts alerts as JSON to an external endpoint"""

    def __init__(self, url: str, timeout: float = 5.0, symbol: str = DEFAULT_SYMBOL):
        self.url = url
        self.timeout = timeout
        self.symbol = symbol

    def build_payload(self, account: Account, level: AlertLevel, threshold: Decimal) -> Dict[str, Any]:
        subject, body = build_alert_message(account, level, threshold, self.symbol)
        return {
            "type": level.value,
            "account_id": account.account_id,
            "holder_name": account.holder_name,
            "recipient": account.email,
            "balance": str(account.balance),
            "threshold": str(threshold),
            "subject": subject,
            "body": body,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    def notify(self, account: Account, level: AlertLevel, threshold: Decimal) -> None:
        payload = self.build_payload(account, level, threshold)
        try:
            response = requests.post(
                self.url,
                json=payload,
                timeout=self.timeout,
                headers={"Content-Type": "application/json"}
            )
        except requests.RequestException as e:
            raise NotificationError(f"Webhook delivery to {self.url} failed: {e}") from e

        if not response.ok:
            raise NotificationError(
                f"Webhook {self.url} returned {response.status_code}: {response.text[:200]}"
            )


class CompositeNotifier(Notifier):
    """Fans an alert out to several notifiers; one failure does not stop the rest"""

    def __init__(self, notifiers: List[Notifier], logger=None):
        self.notifiers = list(notifiers)
        self.logger = logger or get_logger("ledger.notifications")

    def notify(self, account: Account, level: AlertLevel, threshold: Decimal) -> None:
        for notifier in self.notifiers:
            try:
                notifier.notify(account, level, threshold)
            except Exception as e:
                self.logger.error(
                    f"{type(notifier).__name__} failed for {account.account_id}: {e}"
                )


def build_notifier(webhook_url: Optional[str] = None, webhook_timeout: float = 5.0,
                   symbol: str = DEFAULT_SYMBOL) -> Notifier:
    """Log every alert, and post it to a webhook when one is configured"""
    notifiers: List[Notifier] = [LogNotifier(symbol=symbol)]
    if webhook_url:
        notifiers.append(WebhookNotifier(webhook_url, timeout=webhook_timeout, symbol=symbol))
    return CompositeNotifier(notifiers)
