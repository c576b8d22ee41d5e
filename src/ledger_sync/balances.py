"""Balance computation: folds transaction lists into signed balances.

Sign convention: positive means "is owed", negative means "owes".
"""

import logging
from collections import defaultdict
from collections.abc import Iterable

from .models import Balance, Expense, Group, Settlement, SplitMethod, Transaction, User

logger = logging.getLogger(__name__)

# Net amounts at or below this are treated as fully settled.
SETTLED_EPSILON = 0.01


def compute_expense_shares(expense: Expense) -> dict[str, float]:
    """
    Compute how much of an expense each participant owes.

    Equal split divides the amount evenly. Shares split weights each
    participant by ``split_shares`` (missing ids weigh zero).

    Degenerate inputs produce an empty mapping rather than an error:
    an empty participant set, or a shares split whose weights total zero.

    Args:
        expense: The expense to split

    Returns:
        Mapping of participant id to owed amount
    """
    participants = expense.split_between
    if not participants:
        return {}

    if expense.split_method == SplitMethod.SHARES:
        weights = {pid: expense.split_shares.get(pid, 0.0) for pid in participants}
        total_weight = sum(weights.values())
        if total_weight == 0:
            logger.debug(f"Expense {expense.id} has zero total weight, no debits")
            return {}
        return {
            pid: expense.amount * weight / total_weight
            for pid, weight in weights.items()
        }

    share = expense.amount / len(participants)
    shares: dict[str, float] = {}
    for pid in participants:
        shares[pid] = shares.get(pid, 0.0) + share
    return shares


def fold_transactions(transactions: Iterable[Transaction]) -> dict[str, float]:
    """
    Fold transactions into per-user accumulators.

    The fold only ever adds to accumulators, so the result does not depend
    on transaction order.

    Args:
        transactions: Expenses and settlements of one group

    Returns:
        Mapping of user id to signed balance
    """
    totals: dict[str, float] = defaultdict(float)

    for transaction in transactions:
        if isinstance(transaction, Expense):
            totals[transaction.paid_by_id] += transaction.amount
            for participant_id, owed in compute_expense_shares(transaction).items():
                totals[participant_id] -= owed
        elif isinstance(transaction, Settlement):
            # The payer's debt shrinks, the receiver's credit shrinks
            totals[transaction.from_id] += transaction.amount
            totals[transaction.to_id] -= transaction.amount

    return dict(totals)


def calculate_balances(group: Group) -> list[Balance]:
    """
    Calculate one balance per member of a group.

    Args:
        group: Group with resolved members and its full transaction list

    Returns:
        Balances in member order (zero for members with no activity)
    """
    totals = fold_transactions(group.transactions)
    return [
        Balance(user=member, amount=totals.get(member.id, 0.0))
        for member in group.members
    ]


def calculate_global_balances(
    groups: Iterable[Group], users: Iterable[User], current_user_id: str
) -> list[Balance]:
    """
    Net the current user's balance with every counterparty across groups.

    Only transactions involving the current user contribute. Counterparties
    whose net is within ``SETTLED_EPSILON`` of zero, or who are missing from
    the user directory, are left out.

    Args:
        groups: Every group the current user belongs to
        users: The full user directory
        current_user_id: The signed-in user

    Returns:
        Balances sorted descending (largest amount owed to the user first)
    """
    net: dict[str, float] = defaultdict(float)

    for group in groups:
        for transaction in group.transactions:
            if not transaction.involves(current_user_id):
                continue

            if isinstance(transaction, Expense):
                shares = compute_expense_shares(transaction)
                if transaction.paid_by_id == current_user_id:
                    for participant_id, owed in shares.items():
                        if participant_id != current_user_id:
                            net[participant_id] += owed
                else:
                    net[transaction.paid_by_id] -= shares.get(current_user_id, 0.0)
            elif isinstance(transaction, Settlement):
                if transaction.from_id == current_user_id:
                    net[transaction.to_id] += transaction.amount
                elif transaction.to_id == current_user_id:
                    net[transaction.from_id] -= transaction.amount

    directory = {user.id: user for user in users}
    balances = []
    for counterparty_id, amount in net.items():
        if counterparty_id == current_user_id or abs(amount) <= SETTLED_EPSILON:
            continue
        user = directory.get(counterparty_id)
        if user is None:
            logger.debug(f"Skipping counterparty {counterparty_id}: not in directory")
            continue
        balances.append(Balance(user=user, amount=amount))

    return sorted(balances, key=lambda balance: balance.amount, reverse=True)
