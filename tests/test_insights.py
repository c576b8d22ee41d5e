"""Tests for spending analytics and history helpers."""

from datetime import UTC, date, datetime

import pytest

from factories import make_expense, make_group, make_settlement, make_user
from ledger_sync.insights import (
    monthly_summary,
    search_transactions,
    sorted_transactions,
    spending_by_category,
)
from ledger_sync.models import Category

ALICE = make_user("alice")
BOB = make_user("bob")


def day(month: int, dom: int) -> datetime:
    return datetime(2025, month, dom, 9, 0, tzinfo=UTC)


@pytest.fixture
def group():
    """A group with expenses over two months and one settlement."""
    rent = make_expense(
        "rent",
        1000.0,
        "bob",
        ["alice", "bob"],
        description="March rent",
        category=Category.RENT,
        date=day(3, 1),
    )
    pizza = make_expense(
        "pizza",
        30.0,
        "alice",
        ["alice", "bob"],
        shares={"alice": 2, "bob": 1},
        description="Pizza night",
        category=Category.FOOD,
        date=day(3, 20),
    )
    beer = make_expense(
        "beer", 20.0, "bob", ["bob"], description="Beer", category=Category.BOOZE, date=day(3, 21)
    )
    settlement = make_settlement("s1", 480.0, from_id="alice", to_id="bob", date=day(3, 25))
    april = make_expense(
        "april",
        60.0,
        "alice",
        ["alice", "bob"],
        description="Groceries",
        category=Category.FOOD,
        date=day(4, 2),
    )
    return make_group("g1", [ALICE, BOB], [rent, pizza, beer, settlement, april], name="Flat")


class TestSpending:
    """Tests for per-category and monthly spending."""

    def test_spending_by_category_uses_own_share(self, group):
        """Only the user's share counts, and only where they participate."""
        totals = spending_by_category([group], "alice")

        assert totals == pytest.approx(
            {Category.RENT: 500.0, Category.FOOD: 20.0 + 30.0}
        )
        assert Category.BOOZE not in totals

    def test_monthly_summary_with_limit(self, group):
        """Spending is compared against the monthly limit."""
        user = make_user("alice", monthly_limit=400.0)

        summary = monthly_summary(user, [group], date(2025, 3, 17))

        assert summary.month == date(2025, 3, 1)
        assert summary.spent == pytest.approx(520.0)
        assert summary.over_limit
        assert summary.remaining == pytest.approx(-120.0)

    def test_zero_limit_means_no_limit(self, group):
        """A limit of zero is treated as unset."""
        user = make_user("alice", monthly_limit=0)

        summary = monthly_summary(user, [group], date(2025, 4, 1))

        assert summary.spent == pytest.approx(30.0)
        assert summary.limit is None
        assert summary.remaining is None
        assert not summary.over_limit


class TestHistory:
    """Tests for ordering and searching a group's history."""

    def test_sorted_newest_first(self, group):
        """History is ordered by date, newest first."""
        ids = [tx.id for tx in sorted_transactions(group)]

        assert ids == ["april", "s1", "beer", "pizza", "rent"]

    def test_search_matches_description(self, group):
        """Search ignores case."""
        assert [tx.id for tx in search_transactions(group, "PIZZA")] == ["pizza"]

    def test_search_matches_settlement_names(self, group):
        """Settlements match on '<payer> paid <receiver>'."""
        assert [tx.id for tx in search_transactions(group, "alice paid")] == ["s1"]

    def test_blank_search_returns_everything(self, group):
        """An empty term returns the full history."""
        assert len(search_transactions(group, "  ")) == 5
