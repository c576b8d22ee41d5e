"""Synchronization coordinator: merges snapshots into the canonical model.

Each snapshot channel is consumed independently and only the latest snapshot
of each stream is kept. The merged ``LedgerState`` is always rebuilt from
those latest snapshots, so the result does not depend on how callbacks from
different subscriptions interleave.
"""

import logging
from collections.abc import Callable

from pydantic import BaseModel, TypeAdapter, ValidationError

from .clients.base import Document, DocumentStore, Snapshot
from .models import Group, LedgerState, Transaction, User
from .subscriptions import SubscriptionManager

logger = logging.getLogger(__name__)

_transaction_adapter: TypeAdapter[Transaction] = TypeAdapter(Transaction)


class FreshTransaction(BaseModel):
    """A transaction added after its group's initial load."""

    transaction: Transaction
    group_id: str


StateListener = Callable[[LedgerState], None]
FreshListener = Callable[[FreshTransaction, LedgerState], None]


# ============================================================================
# Document parsing
# ============================================================================


def parse_user(document: Document) -> User | None:
    """Parse a user document, or None if it is malformed."""
    try:
        return User.model_validate({**document.data, "id": document.id})
    except ValidationError as e:
        logger.warning(f"Skipping malformed user document {document.id}: {e}")
        return None


def parse_group(document: Document) -> Group | None:
    """Parse a group document (without derived fields), or None if malformed."""
    try:
        return Group.model_validate(
            {
                "id": document.id,
                "name": document.data.get("name"),
                "memberIds": document.data.get("memberIds", []),
                "createdAt": document.data.get("createdAt"),
            }
        )
    except ValidationError as e:
        logger.warning(f"Skipping malformed group document {document.id}: {e}")
        return None


def infer_kind(data: dict) -> str | None:
    """Guess the variant of a transaction document stored without ``kind``."""
    if "fromId" in data or "toId" in data:
        return "settlement"
    if "paidById" in data:
        return "expense"
    return None


def parse_transaction(document: Document, group_id: str) -> Transaction | None:
    """
    Parse a transaction document of a group, or None if malformed.

    Documents written before the ``kind`` field existed are accepted: their
    variant is inferred from the fields they carry.
    """
    data = {**document.data, "id": document.id, "groupId": group_id}
    if "kind" not in data:
        kind = infer_kind(data)
        if kind is not None:
            data["kind"] = kind
    try:
        return _transaction_adapter.validate_python(data)
    except ValidationError as e:
        logger.warning(
            f"Skipping malformed transaction {document.id} in group {group_id}: {e}"
        )
        return None


def resolve_members(member_ids: list[str], users: dict[str, User]) -> list[User]:
    """Map member ids through the directory, dropping ids with no known user."""
    members = []
    for member_id in member_ids:
        user = users.get(member_id)
        if user is None:
            logger.debug(f"Member {member_id} not in user directory yet")
            continue
        members.append(user)
    return members


# ============================================================================
# Coordinator
# ============================================================================


class SyncCoordinator:
    """
    Keeps the in-memory model consistent with the document store.

    Snapshots are authoritative replacements. Writes never touch this model;
    their effect arrives with the next snapshot.

    Per group, a transaction is "historical" if it was part of the first
    snapshot after subscribing, and "fresh" if it appeared in a later one.
    Only fresh transactions are forwarded to fresh listeners. Releasing a
    group's subscription forgets that it was ever loaded.
    """

    def __init__(self, store: DocumentStore):
        """Initialize the coordinator and its subscription manager."""
        self.subscriptions = SubscriptionManager(store, self)
        self.errors: list[tuple[str, Exception]] = []
        self._state_listeners: list[StateListener] = []
        self._fresh_listeners: list[FreshListener] = []
        self._reset()

    def _reset(self) -> None:
        self._users: dict[str, User] = {}
        self._groups: dict[str, Group] = {}
        self._transactions: dict[str, list[Transaction]] = {}
        self._loaded_groups: set[str] = set()
        self._users_received = False
        self._groups_received = False
        self.state = LedgerState()

    # ========================================================================
    # Session lifecycle
    # ========================================================================

    @property
    def current_user_id(self) -> str | None:
        """The user whose session is open."""
        return self.subscriptions.user_id

    def start(self, user_id: str) -> None:
        """Open a session, discarding any model left from a previous one."""
        self.subscriptions.end_session()
        self._reset()
        self.errors.clear()
        self.subscriptions.start_session(user_id)

    def stop(self) -> None:
        """Close every subscription and clear the model."""
        self.subscriptions.end_session()
        self._reset()
        self._publish()

    @property
    def is_synced(self) -> bool:
        """True once every open stream has delivered its first snapshot."""
        return (
            self._users_received
            and self._groups_received
            and self.subscriptions.subscribed_group_ids <= self._loaded_groups
        )

    def is_group_loaded(self, group_id: str) -> bool:
        """Whether the group's initial transaction snapshot has been processed."""
        return group_id in self._loaded_groups

    # ========================================================================
    # Listeners
    # ========================================================================

    def add_state_listener(self, listener: StateListener) -> None:
        """Call ``listener`` with the merged state after every change."""
        self._state_listeners.append(listener)

    def add_fresh_listener(self, listener: FreshListener) -> None:
        """Call ``listener`` for every fresh transaction."""
        self._fresh_listeners.append(listener)

    def _publish(self) -> None:
        self.state = self._build_state()
        for listener in self._state_listeners:
            listener(self.state)

    def _build_state(self) -> LedgerState:
        groups = [
            group.model_copy(
                update={
                    "members": resolve_members(group.member_ids, self._users),
                    "transactions": list(self._transactions.get(group.id, [])),
                }
            )
            for group in self._groups.values()
        ]
        current_user = (
            self._users.get(self.current_user_id) if self.current_user_id else None
        )
        return LedgerState(
            current_user=current_user,
            users=list(self._users.values()),
            groups=groups,
        )

    # ========================================================================
    # Snapshot handlers
    # ========================================================================

    def on_users_snapshot(self, snapshot: Snapshot) -> None:
        """Replace the user directory and re-resolve group members."""
        users = (parse_user(doc) for doc in snapshot.documents)
        self._users = {user.id: user for user in users if user is not None}
        self._users_received = True
        logger.debug(f"User directory now has {len(self._users)} users")
        self._publish()

    def on_groups_snapshot(self, snapshot: Snapshot) -> None:
        """Replace group membership and reconcile transaction subscriptions."""
        groups = (parse_group(doc) for doc in snapshot.documents)
        self._groups = {group.id: group for group in groups if group is not None}
        self._groups_received = True
        logger.debug(f"Current user belongs to {len(self._groups)} groups")

        self.subscriptions.reconcile(self._groups)
        self._publish()

    def on_transactions_snapshot(self, group_id: str, snapshot: Snapshot) -> None:
        """Replace a group's transactions and classify new arrivals."""
        transactions = [
            tx
            for tx in (parse_transaction(doc, group_id) for doc in snapshot.documents)
            if tx is not None
        ]

        fresh: list[Transaction] = []
        if group_id in self._loaded_groups:
            known = {tx.id for tx in self._transactions.get(group_id, [])}
            fresh = [tx for tx in transactions if tx.id not in known]
        else:
            self._loaded_groups.add(group_id)
            logger.debug(
                f"Initial load of group {group_id}: {len(transactions)} transactions"
            )

        self._transactions[group_id] = transactions
        self._publish()

        for transaction in fresh:
            logger.info(f"Fresh {transaction.kind} {transaction.id} in group {group_id}")
            event = FreshTransaction(transaction=transaction, group_id=group_id)
            for listener in self._fresh_listeners:
                listener(event, self.state)

    def on_group_released(self, group_id: str) -> None:
        """Forget a group's transactions and its initial-load flag."""
        self._transactions.pop(group_id, None)
        self._loaded_groups.discard(group_id)

    def on_subscription_error(self, source: str, error: Exception) -> None:
        """Record a failed subscription for the presentation layer."""
        logger.error(f"Subscription to {source} failed: {error}")
        self.errors.append((source, error))
