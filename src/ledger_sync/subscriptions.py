"""Ownership of the live subscriptions for one signed-in session."""

import logging
from collections.abc import Iterable
from functools import partial
from typing import Protocol

from .clients.base import (
    GROUPS,
    TRANSACTIONS,
    USERS,
    DocumentStore,
    FieldFilter,
    Snapshot,
    Subscription,
    transactions_path,
)

logger = logging.getLogger(__name__)


class SnapshotListener(Protocol):
    """Consumer of the snapshot channels opened by ``SubscriptionManager``."""

    def on_users_snapshot(self, snapshot: Snapshot) -> None: ...

    def on_groups_snapshot(self, snapshot: Snapshot) -> None: ...

    def on_transactions_snapshot(self, group_id: str, snapshot: Snapshot) -> None: ...

    def on_group_released(self, group_id: str) -> None: ...

    def on_subscription_error(self, source: str, error: Exception) -> None: ...


class SubscriptionManager:
    """
    Owns every subscription handle of a session.

    Three kinds of subscription are held: the user directory, the groups the
    current user belongs to, and one transaction history per relevant group.
    The per-group handles form a pool keyed by group id that only the
    reconciliation pass and session teardown modify.
    """

    def __init__(self, store: DocumentStore, listener: SnapshotListener):
        """Initialize the manager with no open subscriptions."""
        self.store = store
        self.listener = listener
        self.user_id: str | None = None
        self._users: Subscription | None = None
        self._groups: Subscription | None = None
        self._group_transactions: dict[str, Subscription] = {}

    @property
    def is_active(self) -> bool:
        """Whether a session is currently open."""
        return self.user_id is not None

    @property
    def subscribed_group_ids(self) -> frozenset[str]:
        """Group ids with an open transaction subscription."""
        return frozenset(self._group_transactions)

    def start_session(self, user_id: str) -> None:
        """
        Open the user directory and group membership subscriptions.

        Any previous session is torn down first, so no callback of the old
        session can write into the new one.

        Args:
            user_id: The signed-in user
        """
        if self.is_active:
            logger.info(f"Ending session of {self.user_id} before starting a new one")
            self.end_session()

        self.user_id = user_id
        logger.info(f"Starting session for user {user_id}")

        self._users = self.store.subscribe_collection(
            USERS,
            self.listener.on_users_snapshot,
            on_error=partial(self.listener.on_subscription_error, USERS),
        )
        self._groups = self.store.subscribe_collection(
            GROUPS,
            self.listener.on_groups_snapshot,
            where=FieldFilter(field="memberIds", op="array-contains", value=user_id),
            on_error=partial(self.listener.on_subscription_error, GROUPS),
        )

    def reconcile(self, group_ids: Iterable[str]) -> None:
        """
        Make the per-group pool match the set of relevant group ids.

        Opens a subscription for every new id and releases every id no longer
        relevant. Running it twice with the same ids changes nothing.

        Args:
            group_ids: Ids of every group the current user belongs to
        """
        if not self.is_active:
            logger.debug("Ignoring reconcile outside of a session")
            return

        wanted = set(group_ids)
        current = set(self._group_transactions)

        for group_id in sorted(current - wanted):
            self.release(group_id)
        for group_id in sorted(wanted - current):
            self.acquire(group_id)

    def acquire(self, group_id: str) -> None:
        """Open the transaction subscription of a group if not already open."""
        if group_id in self._group_transactions:
            return

        logger.debug(f"Subscribing to transactions of group {group_id}")
        subscription = self.store.subscribe_subcollection(
            group_id,
            TRANSACTIONS,
            partial(self.listener.on_transactions_snapshot, group_id),
            on_error=partial(
                self.listener.on_subscription_error, transactions_path(group_id)
            ),
        )
        self._group_transactions[group_id] = subscription

    def release(self, group_id: str) -> None:
        """Close the transaction subscription of a group. No-op if not open."""
        subscription = self._group_transactions.pop(group_id, None)
        if subscription is None:
            return

        logger.debug(f"Releasing transactions of group {group_id}")
        subscription.close()
        self.listener.on_group_released(group_id)

    def end_session(self) -> None:
        """Close every open subscription. Safe to call more than once."""
        for group_id in list(self._group_transactions):
            self.release(group_id)

        for subscription in (self._groups, self._users):
            if subscription is not None:
                subscription.close()
        self._groups = None
        self._users = None

        if self.user_id is not None:
            logger.info(f"Ended session for user {self.user_id}")
        self.user_id = None
