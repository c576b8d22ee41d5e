"""Service layer exposed to the presentation layer.

Read accessors serve the coordinator's merged model. Mutators validate their
input synchronously (raising ``ValidationError`` at call time) and
return an awaitable that resolves once the store acknowledges the write. They
never touch the local model: the change shows up with the next snapshot.
"""

import asyncio
import logging
import math
from collections.abc import Awaitable, Iterable
from datetime import UTC, datetime
from typing import Any

from .balances import calculate_balances, calculate_global_balances
from .clients.base import (
    GROUPS,
    USERS,
    DocumentStore,
    document_path,
    transactions_path,
)
from .coordinator import SyncCoordinator, parse_user
from .exceptions import (
    GroupNotFoundError,
    NoCurrentUserError,
    TransactionValidationError,
    ValidationError,
)
from .models import (
    Balance,
    Expense,
    ExpenseDraft,
    Group,
    LedgerState,
    NotificationPreferences,
    Settlement,
    SettlementDraft,
    SplitMethod,
    Transaction,
    User,
)
from .notifications import NotificationDispatcher, Notifier

logger = logging.getLogger(__name__)


# ============================================================================
# Validation
# ============================================================================


def _validate_amount(amount: float, label: str = "Amount") -> None:
    if not math.isfinite(amount) or amount <= 0:
        raise TransactionValidationError(f"{label} must be a positive number, got {amount}")


def validate_expense(expense: ExpenseDraft | Expense) -> None:
    """
    Check an expense before it is written.

    Raises:
        TransactionValidationError: If the description is blank, the amount
            is not positive, nobody is selected, or a shares split has
            negative, foreign or all-zero weights
    """
    if not expense.description.strip():
        raise TransactionValidationError("Expense description is required")
    _validate_amount(expense.amount)
    if not expense.paid_by_id:
        raise TransactionValidationError("Expense needs a payer")
    if not expense.split_between:
        raise TransactionValidationError("Select at least one person to split with")

    if expense.split_method == SplitMethod.SHARES:
        foreign = set(expense.split_shares) - set(expense.split_between)
        if foreign:
            raise TransactionValidationError(
                f"Shares given for people outside the split: {sorted(foreign)}"
            )
        weights = [expense.split_shares.get(pid, 0.0) for pid in expense.split_between]
        if any(not math.isfinite(w) or w < 0 for w in weights):
            raise TransactionValidationError("Shares must be non-negative numbers")
        if sum(weights) == 0:
            raise TransactionValidationError(
                "Total shares cannot be zero. Assign shares to at least one person."
            )


def validate_settlement(settlement: SettlementDraft | Settlement) -> None:
    """
    Check a settlement before it is written.

    Raises:
        TransactionValidationError: If the amount is not positive or the two
            parties are missing or identical
    """
    _validate_amount(settlement.amount)
    if not settlement.from_id or not settlement.to_id:
        raise TransactionValidationError("Settlement needs a payer and a receiver")
    if settlement.from_id == settlement.to_id:
        raise TransactionValidationError("Select two different people to settle up")


def normalize_email(email: str) -> str:
    """Trim and lower-case an email address."""
    return email.strip().lower()


def _now() -> str:
    return datetime.now(UTC).isoformat()


# ============================================================================
# Service
# ============================================================================


class LedgerService:
    """Session-scoped facade over the coordinator and the document store."""

    def __init__(
        self,
        store: DocumentStore,
        notifier: Notifier | None = None,
        currency_symbol: str = "₹",
    ):
        """Initialize the service. No subscription is opened until a session starts."""
        self.store = store
        self.coordinator = SyncCoordinator(store)
        if notifier is not None:
            self.coordinator.add_fresh_listener(
                NotificationDispatcher(notifier, currency_symbol)
            )

    # ========================================================================
    # Session
    # ========================================================================

    def start_session(self, user_id: str) -> None:
        """Start syncing the model for ``user_id``."""
        self.coordinator.start(user_id)

    def end_session(self) -> None:
        """Close every subscription of the current session."""
        self.coordinator.stop()

    async def wait_until_synced(self, timeout: float = 30.0, interval: float = 0.05):
        """
        Wait until every open stream has delivered its first snapshot.

        Raises:
            TimeoutError: If the model is not synced within ``timeout`` seconds
            StoreError: If a subscription failed while waiting
        """
        async with asyncio.timeout(timeout):
            while not self.coordinator.is_synced:
                if self.coordinator.errors:
                    _source, error = self.coordinator.errors[0]
                    raise error
                await asyncio.sleep(interval)

    # ========================================================================
    # Reads
    # ========================================================================

    @property
    def state(self) -> LedgerState:
        """The latest merged model."""
        return self.coordinator.state

    @property
    def current_user(self) -> User | None:
        """The signed-in user, once the directory has delivered it."""
        return self.state.current_user

    @property
    def users(self) -> list[User]:
        """The full user directory."""
        return self.state.users

    @property
    def groups(self) -> list[Group]:
        """Groups of the current user with resolved members and transactions."""
        return self.state.groups

    def get_group(self, group_id: str) -> Group:
        """Look up one group of the current user."""
        group = self.state.get_group(group_id)
        if group is None:
            raise GroupNotFoundError(group_id)
        return group

    def group_balances(self, group_id: str) -> list[Balance]:
        """Per-member balances of one group."""
        return calculate_balances(self.get_group(group_id))

    def global_balances(self) -> list[Balance]:
        """Net balance with every counterparty across all groups."""
        user_id = self._require_user_id()
        return calculate_global_balances(self.groups, self.users, user_id)

    def _require_user_id(self) -> str:
        user_id = self.coordinator.current_user_id
        if user_id is None:
            raise NoCurrentUserError()
        return user_id

    # ========================================================================
    # Writes
    # ========================================================================

    def add_group(self, name: str, member_ids: Iterable[str]) -> Awaitable[str]:
        """
        Create a group. The current user always becomes a member.

        Args:
            name: Group name
            member_ids: Other members to add

        Returns:
            Awaitable resolving to the new group id
        """
        user_id = self._require_user_id()
        if not name.strip():
            raise ValidationError("Group name is required")

        members = list(dict.fromkeys([user_id, *member_ids]))
        logger.info(f"Creating group '{name}' with {len(members)} members")
        return self.store.create_document(
            GROUPS,
            {"name": name.strip(), "memberIds": members, "createdAt": _now()},
        )

    def add_expense(self, draft: ExpenseDraft) -> Awaitable[str]:
        """Record a new expense. Resolves to the transaction id."""
        validate_expense(draft)
        fields = self._expense_fields(draft)
        fields["date"] = _now()
        logger.info(f"Adding expense '{draft.description}' to group {draft.group_id}")
        return self.store.create_document(transactions_path(draft.group_id), fields)

    def settle_up(self, draft: SettlementDraft) -> Awaitable[str]:
        """Record a settlement. Resolves to the transaction id."""
        validate_settlement(draft)
        fields: dict[str, Any] = {
            "kind": "settlement",
            **draft.model_dump(mode="json", by_alias=True),
            "date": _now(),
        }
        logger.info(
            f"Settling {draft.amount:.2f} from {draft.from_id} to {draft.to_id} "
            f"in group {draft.group_id}"
        )
        return self.store.create_document(transactions_path(draft.group_id), fields)

    def edit_transaction(self, transaction: Transaction) -> Awaitable[None]:
        """Overwrite an existing transaction with new values."""
        if isinstance(transaction, Expense):
            validate_expense(transaction)
            fields = self._expense_fields(transaction)
            fields["date"] = transaction.date.isoformat()
        else:
            validate_settlement(transaction)
            fields = transaction.model_dump(mode="json", by_alias=True, exclude={"id"})

        path = document_path(transactions_path(transaction.group_id), transaction.id)
        logger.info(f"Editing {transaction.kind} {path}")
        return self.store.update_document(path, fields)

    def delete_transaction(self, group_id: str, transaction_id: str) -> Awaitable[None]:
        """Delete one transaction."""
        path = document_path(transactions_path(group_id), transaction_id)
        logger.info(f"Deleting transaction {path}")
        return self.store.delete_document(path)

    def delete_group(self, group_id: str) -> Awaitable[None]:
        """Delete a group and all of its transactions in one batch."""
        return self._delete_group(group_id)

    async def _delete_group(self, group_id: str) -> None:
        tx_collection = transactions_path(group_id)
        documents = await self.store.list_documents(tx_collection)
        paths = [document_path(tx_collection, doc.id) for doc in documents]
        paths.append(document_path(GROUPS, group_id))
        logger.info(f"Deleting group {group_id} with {len(documents)} transactions")
        await self.store.batch_delete(paths)

    def update_user_limit(self, user_id: str, limit: float) -> Awaitable[None]:
        """Set a user's monthly spending limit."""
        if not math.isfinite(limit) or limit < 0:
            raise ValidationError(
                f"Monthly limit must be a non-negative number, got {limit}"
            )
        logger.info(f"Setting monthly limit of {user_id} to {limit:.2f}")
        return self.store.update_document(
            document_path(USERS, user_id), {"monthlyLimit": limit}
        )

    def update_notification_preferences(
        self, user_id: str, preferences: NotificationPreferences
    ) -> Awaitable[None]:
        """Replace a user's notification preferences."""
        logger.info(f"Updating notification preferences of {user_id}")
        return self.store.update_document(
            document_path(USERS, user_id),
            {"notificationPreferences": preferences.model_dump(by_alias=True)},
        )

    def find_user_by_email(self, email: str) -> Awaitable[User | None]:
        """Look up a user by email. Resolves to None when nobody matches."""
        normalized = normalize_email(email)
        if "@" not in normalized:
            raise ValidationError(f"Not a valid email address: {email!r}")
        return self._find_user_by_email(normalized)

    async def _find_user_by_email(self, email: str) -> User | None:
        document = await self.store.query_once(USERS, "email", email)
        if document is None:
            logger.debug(f"No user with email {email}")
            return None
        return parse_user(document)

    def ensure_user_profile(
        self, user_id: str, name: str, email: str, avatar_url: str | None = None
    ) -> Awaitable[User]:
        """Create the user's directory entry on first sign-in."""
        if not user_id:
            raise ValidationError("User id is required")
        return self._ensure_user_profile(user_id, name, email, avatar_url)

    async def _ensure_user_profile(
        self, user_id: str, name: str, email: str, avatar_url: str | None
    ) -> User:
        path = document_path(USERS, user_id)
        existing = await self.store.get_document(path)
        if existing is not None:
            user = parse_user(existing)
            if user is not None:
                return user

        user = User(
            id=user_id,
            name=name or "Anonymous",
            email=normalize_email(email),
            avatar_url=avatar_url or f"https://i.pravatar.cc/150?u={user_id}",
            monthly_limit=0,
        )
        await self.store.set_document(
            path, user.model_dump(
                mode="json", by_alias=True, exclude={"id"}, exclude_none=True
            )
        )
        logger.info(f"Created profile for {user_id}")
        return user

    @staticmethod
    def _expense_fields(expense: ExpenseDraft | Expense) -> dict[str, Any]:
        fields = expense.model_dump(
            mode="json", by_alias=True, exclude={"id", "date", "kind"}
        )
        fields["kind"] = "expense"
        if expense.split_method != SplitMethod.SHARES:
            fields.pop("splitShares", None)
        return fields
