"""Tests for the notification policy and dispatcher."""

from unittest.mock import MagicMock

import pytest
from rich.console import Console

from factories import make_expense, make_group, make_settlement, make_user
from ledger_sync.coordinator import FreshTransaction
from ledger_sync.models import LedgerState, NotificationPreferences
from ledger_sync.notifications import (
    ConsoleNotifier,
    Notification,
    NotificationDispatcher,
    decide_notification,
)

ALICE = make_user("alice")
BOB = make_user("bob")
CAROL = make_user("carol")
USERS = [ALICE, BOB, CAROL]
GROUP = make_group("g1", USERS, name="Goa Trip")


def with_preferences(**overrides):
    return make_user("alice", preferences=NotificationPreferences(**overrides))


class TestExpensePolicy:
    """Tests for expense notifications."""

    def test_participant_is_notified(self):
        """Someone else paid and the user is in the split."""
        expense = make_expense("t1", 40.0, "bob", ["alice", "bob"], description="Dinner")

        notification = decide_notification(expense, GROUP, ALICE, USERS)

        assert notification == Notification(
            title="New expense in Goa Trip",
            body="Bob added 'Dinner'",
            group_id="g1",
            transaction_id="t1",
        )
        assert notification.target == "/group/g1"

    def test_payer_is_not_notified(self):
        """The user's own expenses are never announced."""
        expense = make_expense("t1", 40.0, "alice", ["alice", "bob"])

        assert decide_notification(expense, GROUP, ALICE, USERS) is None

    def test_non_participant_is_not_notified(self):
        """An expense the user is not part of is ignored."""
        expense = make_expense("t1", 40.0, "bob", ["bob", "carol"])

        assert decide_notification(expense, GROUP, ALICE, USERS) is None

    @pytest.mark.parametrize(
        "added,group_added,expected",
        [
            (True, True, True),
            (True, False, True),
            (False, True, True),
            (False, False, False),
        ],
    )
    def test_either_preference_enables(self, added, group_added, expected):
        """Either expense preference is enough; both off silences expenses."""
        user = with_preferences(
            on_added_to_transaction=added, on_group_expense_added=group_added
        )
        expense = make_expense("t1", 40.0, "bob", ["alice"])

        result = decide_notification(expense, GROUP, user, USERS)

        assert (result is not None) == expected

    def test_unknown_payer_is_someone(self):
        """A payer missing from the directory is named 'Someone'."""
        expense = make_expense("t1", 40.0, "ghost", ["alice"], description="Cab")

        notification = decide_notification(expense, GROUP, ALICE, USERS)

        assert notification.body == "Someone added 'Cab'"


class TestSettlementPolicy:
    """Tests for settlement notifications."""

    def test_receiver_is_notified(self):
        """A payment to the user is announced with the amount."""
        settlement = make_settlement("s1", 250.0, from_id="bob", to_id="alice")

        notification = decide_notification(settlement, GROUP, ALICE, USERS)

        assert notification.title == "Payment received in Goa Trip"
        assert notification.body == "Bob paid you ₹250.00"

    def test_currency_symbol_is_configurable(self):
        """The amount prefix follows the configured symbol."""
        settlement = make_settlement("s1", 3.5, from_id="bob", to_id="alice")

        notification = decide_notification(settlement, GROUP, ALICE, USERS, "$")

        assert notification.body == "Bob paid you $3.50"

    def test_sender_is_not_notified(self):
        """Paying someone else is not announced to the payer."""
        settlement = make_settlement("s1", 10.0, from_id="alice", to_id="bob")

        assert decide_notification(settlement, GROUP, ALICE, USERS) is None

    def test_unrelated_settlement_is_ignored(self):
        """Settlements between other members are ignored."""
        settlement = make_settlement("s1", 10.0, from_id="bob", to_id="carol")

        assert decide_notification(settlement, GROUP, ALICE, USERS) is None

    def test_preference_off_silences(self):
        """Turning off settlement notifications silences them."""
        user = with_preferences(on_settlement=False)
        settlement = make_settlement("s1", 10.0, from_id="bob", to_id="alice")

        assert decide_notification(settlement, GROUP, user, USERS) is None

    def test_settlement_preference_does_not_affect_expenses(self):
        """Expense and settlement preferences are independent."""
        user = with_preferences(on_settlement=False)
        expense = make_expense("t1", 40.0, "bob", ["alice"])

        assert decide_notification(expense, GROUP, user, USERS) is not None


class TestDispatcher:
    """Tests for NotificationDispatcher."""

    def state(self, current_user=ALICE, groups=(GROUP,)) -> LedgerState:
        return LedgerState(current_user=current_user, users=USERS, groups=list(groups))

    def test_forwards_notification(self):
        """A qualifying fresh transaction reaches the notifier."""
        notifier = MagicMock()
        dispatcher = NotificationDispatcher(notifier)
        event = FreshTransaction(
            transaction=make_expense("t1", 40.0, "bob", ["alice"]), group_id="g1"
        )

        dispatcher(event, self.state())

        notifier.notify.assert_called_once()
        assert notifier.notify.call_args.args[0].transaction_id == "t1"

    def test_skips_non_qualifying(self):
        """Transactions the policy rejects do not reach the notifier."""
        notifier = MagicMock()
        event = FreshTransaction(
            transaction=make_expense("t1", 40.0, "alice", ["bob"]), group_id="g1"
        )

        NotificationDispatcher(notifier)(event, self.state())

        notifier.notify.assert_not_called()

    def test_skips_without_current_user(self):
        """Nothing is evaluated before the directory knows the user."""
        notifier = MagicMock()
        event = FreshTransaction(
            transaction=make_expense("t1", 40.0, "bob", ["alice"]), group_id="g1"
        )

        NotificationDispatcher(notifier)(event, self.state(current_user=None))

        notifier.notify.assert_not_called()

    def test_skips_unknown_group(self):
        """An event for a group no longer in the model is dropped."""
        notifier = MagicMock()
        event = FreshTransaction(
            transaction=make_expense("t1", 40.0, "bob", ["alice"]), group_id="gone"
        )

        NotificationDispatcher(notifier)(event, self.state())

        notifier.notify.assert_not_called()


class TestConsoleNotifier:
    """Tests for ConsoleNotifier."""

    def test_prints_title_body_and_target(self):
        """The panel shows the title, body and the group route."""
        console = Console(record=True, width=80)
        notification = Notification(
            title="Payment received in Flat",
            body="Bob paid you ₹10.00",
            group_id="g9",
            transaction_id="s1",
        )

        ConsoleNotifier(console).notify(notification)

        output = console.export_text()
        assert "Payment received in Flat" in output
        assert "Bob paid you ₹10.00" in output
        assert "/group/g9" in output
