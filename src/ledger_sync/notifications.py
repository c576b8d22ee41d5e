"""Notification policy for fresh transactions and the notifiers that show them."""

import logging
from collections.abc import Iterable
from typing import Protocol

from pydantic import BaseModel
from rich.console import Console
from rich.panel import Panel

from .coordinator import FreshTransaction
from .models import Expense, Group, LedgerState, Settlement, Transaction, User

logger = logging.getLogger(__name__)


class Notification(BaseModel):
    """A system notification. Activating it opens ``target``."""

    title: str
    body: str
    group_id: str
    transaction_id: str

    @property
    def target(self) -> str:
        """Route of the group the notification belongs to."""
        return f"/group/{self.group_id}"


def _display_name(user_id: str, users: Iterable[User]) -> str:
    for user in users:
        if user.id == user_id:
            return user.name
    return "Someone"


def decide_notification(
    transaction: Transaction,
    group: Group,
    current_user: User,
    users: Iterable[User],
    currency_symbol: str = "₹",
) -> Notification | None:
    """
    Decide whether a fresh transaction should be announced to the user.

    Rules:
    - Expense the user did not pay but participates in: notify if either
      "added to transaction" or "group expense added" is enabled.
    - Settlement paid to the user by someone else: notify if "on settlement"
      is enabled.
    - Anything else: no notification.

    Args:
        transaction: The fresh transaction
        group: The group it belongs to
        current_user: The signed-in user
        users: The user directory, for naming the payer
        currency_symbol: Prefix for amounts in the body

    Returns:
        The notification to show, or None
    """
    preferences = current_user.preferences

    if isinstance(transaction, Expense):
        if transaction.paid_by_id == current_user.id:
            return None
        if current_user.id not in transaction.split_between:
            return None
        if not (
            preferences.on_added_to_transaction or preferences.on_group_expense_added
        ):
            return None

        payer = _display_name(transaction.paid_by_id, users)
        return Notification(
            title=f"New expense in {group.name}",
            body=f"{payer} added '{transaction.description}'",
            group_id=group.id,
            transaction_id=transaction.id,
        )

    if isinstance(transaction, Settlement):
        if transaction.to_id != current_user.id or transaction.from_id == current_user.id:
            return None
        if not preferences.on_settlement:
            return None

        payer = _display_name(transaction.from_id, users)
        return Notification(
            title=f"Payment received in {group.name}",
            body=f"{payer} paid you {currency_symbol}{transaction.amount:.2f}",
            group_id=group.id,
            transaction_id=transaction.id,
        )

    return None


# ============================================================================
# Notifiers
# ============================================================================


class Notifier(Protocol):
    """Side-effecting collaborator that shows a notification."""

    def notify(self, notification: Notification) -> None: ...


class ConsoleNotifier:
    """Prints notifications to the terminal."""

    def __init__(self, console: Console | None = None):
        """Initialize the notifier."""
        self.console = console or Console()

    def notify(self, notification: Notification) -> None:
        """Print the notification as a panel."""
        self.console.print(
            Panel(
                f"{notification.body}\n[dim]open: {notification.target}[/dim]",
                title=f"[bold]{notification.title}[/bold]",
                border_style="cyan",
            )
        )


class NotificationDispatcher:
    """Runs fresh transactions through the policy and forwards the result."""

    def __init__(self, notifier: Notifier, currency_symbol: str = "₹"):
        """Initialize the dispatcher."""
        self.notifier = notifier
        self.currency_symbol = currency_symbol

    def __call__(self, event: FreshTransaction, state: LedgerState) -> None:
        """Evaluate one fresh transaction against the current state."""
        if state.current_user is None:
            logger.debug(f"No current user yet, not evaluating {event.transaction.id}")
            return

        group = state.get_group(event.group_id)
        if group is None:
            logger.debug(f"Group {event.group_id} gone, not evaluating notification")
            return

        notification = decide_notification(
            event.transaction,
            group,
            state.current_user,
            state.users,
            self.currency_symbol,
        )
        if notification is None:
            return

        logger.info(f"Notifying: {notification.title}")
        self.notifier.notify(notification)
