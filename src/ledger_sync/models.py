"""Pydantic domain models for ledger-sync."""

from datetime import datetime
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class LedgerModel(BaseModel):
    """Base model: snake_case attributes, camelCase document fields."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Enums
# ============================================================================


class Category(StrEnum):
    """Analytics tag for an expense. Carries no financial meaning."""

    SELF = "Self"
    RENT = "Rent"
    TRAVEL = "Travel"
    FOOD = "Food"
    BOOZE = "Booze"
    SHOPPING = "Shopping"
    QUICK_DELIVERY = "Quick Delivery"
    OTHER = "Other"


class SplitMethod(StrEnum):
    """Rule for dividing an expense among its participants."""

    EQUAL = "equal"
    SHARES = "shares"


# ============================================================================
# Users
# ============================================================================


class NotificationPreferences(LedgerModel):
    """Which fresh transactions the user wants to hear about."""

    on_added_to_transaction: bool = True
    on_group_expense_added: bool = True
    on_settlement: bool = True


class User(LedgerModel):
    """A member of the user directory."""

    id: str
    name: str
    avatar_url: str = ""
    email: str = ""
    monthly_limit: float | None = None
    notification_preferences: NotificationPreferences | None = None

    @property
    def preferences(self) -> NotificationPreferences:
        """Stored preferences, or the all-enabled default when absent."""
        return self.notification_preferences or NotificationPreferences()


# ============================================================================
# Transactions
# ============================================================================


class Expense(LedgerModel):
    """A payment by one member on behalf of a set of participants."""

    kind: Literal["expense"] = "expense"
    id: str
    group_id: str
    description: str = ""
    amount: float
    paid_by_id: str
    split_method: SplitMethod = SplitMethod.EQUAL
    split_between: list[str] = Field(default_factory=list)
    split_shares: dict[str, float] = Field(default_factory=dict)
    category: Category = Category.OTHER
    date: datetime

    def involves(self, user_id: str) -> bool:
        """True if the user paid or is one of the participants."""
        return self.paid_by_id == user_id or user_id in self.split_between


class Settlement(LedgerModel):
    """A direct repayment from ``from_id`` to ``to_id``."""

    kind: Literal["settlement"] = "settlement"
    id: str
    group_id: str
    from_id: str
    to_id: str
    amount: float
    date: datetime

    def involves(self, user_id: str) -> bool:
        """True if the user is either party."""
        return user_id in (self.from_id, self.to_id)


Transaction = Annotated[Expense | Settlement, Field(discriminator="kind")]


class ExpenseDraft(LedgerModel):
    """Caller input for a new expense (no id or date yet)."""

    group_id: str
    description: str
    amount: float
    paid_by_id: str
    split_method: SplitMethod = SplitMethod.EQUAL
    split_between: list[str]
    split_shares: dict[str, float] = Field(default_factory=dict)
    category: Category = Category.OTHER


class SettlementDraft(LedgerModel):
    """Caller input for a new settlement (no id or date yet)."""

    group_id: str
    from_id: str
    to_id: str
    amount: float


# ============================================================================
# Groups and derived records
# ============================================================================


class Group(LedgerModel):
    """A group with its authoritative member ids and derived fields.

    ``members`` and ``transactions`` are derived by the coordinator from the
    user directory and the group's transaction subscription respectively.
    """

    id: str
    name: str
    member_ids: list[str] = Field(default_factory=list)
    members: list[User] = Field(default_factory=list)
    transactions: list[Transaction] = Field(default_factory=list)
    created_at: datetime | None = None


class Balance(LedgerModel):
    """Signed amount for a user. Positive: is owed. Negative: owes."""

    user: User
    amount: float


class LedgerState(BaseModel):
    """Merged in-memory model republished after every snapshot."""

    model_config = ConfigDict(frozen=True)

    current_user: User | None = None
    users: list[User] = Field(default_factory=list)
    groups: list[Group] = Field(default_factory=list)

    def get_group(self, group_id: str) -> Group | None:
        """Look up a group by id."""
        for group in self.groups:
            if group.id == group_id:
                return group
        return None

    def get_user(self, user_id: str) -> User | None:
        """Look up a user in the directory by id."""
        for user in self.users:
            if user.id == user_id:
                return user
        return None
