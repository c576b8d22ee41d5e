"""Spending analytics and transaction history helpers."""

from collections import defaultdict
from collections.abc import Iterable
from datetime import date

from pydantic import BaseModel

from .balances import compute_expense_shares
from .models import Category, Expense, Group, Settlement, Transaction, User


class MonthlySummary(BaseModel):
    """A user's share of expenses in one month against their limit."""

    month: date
    spent: float
    limit: float | None = None

    @property
    def remaining(self) -> float | None:
        """Budget left this month, or None without a limit."""
        if self.limit is None:
            return None
        return self.limit - self.spent

    @property
    def over_limit(self) -> bool:
        """True when a limit is set and spending exceeds it."""
        return self.limit is not None and self.spent > self.limit


def _own_shares(groups: Iterable[Group], user_id: str) -> Iterable[tuple[Expense, float]]:
    for group in groups:
        for transaction in group.transactions:
            if isinstance(transaction, Expense) and user_id in transaction.split_between:
                share = compute_expense_shares(transaction).get(user_id, 0.0)
                yield transaction, share


def spending_by_category(groups: Iterable[Group], user_id: str) -> dict[Category, float]:
    """
    Sum the user's own share of every expense, per category.

    Uses the same equal/shares split as the balance engine. Categories with
    no spending are left out.
    """
    totals: dict[Category, float] = defaultdict(float)
    for expense, share in _own_shares(groups, user_id):
        totals[expense.category] += share
    return {category: total for category, total in totals.items() if total > 0}


def monthly_summary(user: User, groups: Iterable[Group], month: date) -> MonthlySummary:
    """
    Compare the user's spending in ``month`` with their monthly limit.

    A limit of 0 or None means no limit.
    """
    spent = sum(
        share
        for expense, share in _own_shares(groups, user.id)
        if (expense.date.year, expense.date.month) == (month.year, month.month)
    )
    limit = user.monthly_limit if user.monthly_limit else None
    return MonthlySummary(month=month.replace(day=1), spent=spent, limit=limit)


def sorted_transactions(group: Group) -> list[Transaction]:
    """A group's transactions, newest first."""
    return sorted(group.transactions, key=lambda tx: tx.date, reverse=True)


def search_transactions(group: Group, term: str) -> list[Transaction]:
    """
    Filter a group's history, newest first.

    Expenses match on description; settlements match on
    "<payer name> paid <receiver name>". Matching ignores case.
    """
    needle = term.strip().lower()
    transactions = sorted_transactions(group)
    if not needle:
        return transactions

    names = {member.id: member.name for member in group.members}
    matches = []
    for transaction in transactions:
        if isinstance(transaction, Expense):
            text = transaction.description
        elif isinstance(transaction, Settlement):
            text = (
                f"{names.get(transaction.from_id, '')} paid "
                f"{names.get(transaction.to_id, '')}"
            )
        else:
            continue
        if needle in text.lower():
            matches.append(transaction)
    return matches
