"""ledger-sync - Shared group expenses with live-synced balances."""

__version__ = "0.1.0"

from .balances import calculate_balances, calculate_global_balances
from .config import Settings, load_settings
from .coordinator import SyncCoordinator
from .models import (
    Balance,
    Expense,
    ExpenseDraft,
    Group,
    Settlement,
    SettlementDraft,
    User,
)
from .service import LedgerService
from .subscriptions import SubscriptionManager

__all__ = [
    "Settings",
    "load_settings",
    "Balance",
    "Expense",
    "ExpenseDraft",
    "Group",
    "Settlement",
    "SettlementDraft",
    "User",
    "calculate_balances",
    "calculate_global_balances",
    "SyncCoordinator",
    "SubscriptionManager",
    "LedgerService",
]
