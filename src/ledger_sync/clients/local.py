"""Local document store backed by SQLite.

Snapshots are pushed synchronously: on subscribe (initial snapshot) and after
every write that touches the subscribed collection.
"""

import logging
import uuid
from collections.abc import Iterable
from typing import Any

from ..db import Database
from ..exceptions import DocumentNotFoundError
from .base import (
    Document,
    ErrorCallback,
    FieldFilter,
    Snapshot,
    SnapshotCallback,
    Subscription,
    split_path,
)

logger = logging.getLogger(__name__)


class LocalSubscription(Subscription):
    """Subscription registered with a ``LocalDocumentStore``."""

    def __init__(self, store: "LocalDocumentStore", *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._store = store

    def _release(self) -> None:
        self._store._unregister(self)


class LocalDocumentStore:
    """Document store over a local SQLite database."""

    def __init__(self, database: Database):
        """Initialize the store."""
        self.db = database
        self._subscriptions: list[LocalSubscription] = []

    @property
    def open_subscriptions(self) -> int:
        """Number of subscriptions not yet closed."""
        return len(self._subscriptions)

    # ========================================================================
    # Subscriptions
    # ========================================================================

    def subscribe_collection(
        self,
        path: str,
        on_snapshot: SnapshotCallback,
        where: FieldFilter | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        """Subscribe to a collection, delivering the current snapshot at once."""
        subscription = LocalSubscription(self, path, on_snapshot, on_error, where)
        self._subscriptions.append(subscription)
        logger.debug(f"Subscribed to {path} ({len(self._subscriptions)} open)")
        subscription.deliver(self._snapshot(path, where))
        return subscription

    def subscribe_subcollection(
        self,
        group_id: str,
        name: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        """Subscribe to a group's subcollection."""
        path = f"groups/{group_id}/{name}"
        return self.subscribe_collection(path, on_snapshot, on_error=on_error)

    def _unregister(self, subscription: LocalSubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
            logger.debug(f"Unsubscribed from {subscription.path}")

    def _snapshot(self, path: str, where: FieldFilter | None) -> Snapshot:
        documents = tuple(
            Document(id=doc_id, data=data)
            for doc_id, data in self.db.list_documents(path)
            if where is None or where.matches(data)
        )
        return Snapshot(path=path, documents=documents)

    def _publish(self, collections: Iterable[str]) -> None:
        """Push fresh snapshots to every subscriber of the touched collections."""
        touched = set(collections)
        for subscription in list(self._subscriptions):
            if subscription.path in touched:
                subscription.deliver(
                    self._snapshot(subscription.path, subscription.where)
                )

    # ========================================================================
    # Reads
    # ========================================================================

    async def get_document(self, path: str) -> Document | None:
        """Read one document."""
        collection, doc_id = split_path(path)
        data = self.db.get_document(collection, doc_id)
        return Document(id=doc_id, data=data) if data is not None else None

    async def list_documents(self, path: str) -> list[Document]:
        """Read every document of a collection once."""
        return list(self._snapshot(path, None).documents)

    async def query_once(
        self, collection: str, field: str, value: Any
    ) -> Document | None:
        """Return the first document whose field equals value."""
        where = FieldFilter(field=field, op="==", value=value)
        documents = self._snapshot(collection, where).documents
        return documents[0] if documents else None

    # ========================================================================
    # Writes
    # ========================================================================

    async def create_document(self, path: str, fields: dict[str, Any]) -> str:
        """Add a document with a generated id."""
        doc_id = uuid.uuid4().hex[:20]
        self.db.put_document(path, doc_id, fields)
        logger.debug(f"Created {path}/{doc_id}")
        self._publish([path])
        return doc_id

    async def set_document(self, path: str, fields: dict[str, Any]) -> None:
        """Create or replace a document at a known path."""
        collection, doc_id = split_path(path)
        self.db.put_document(collection, doc_id, fields)
        self._publish([collection])

    async def update_document(self, path: str, fields: dict[str, Any]) -> None:
        """Merge fields into an existing document."""
        collection, doc_id = split_path(path)
        current = self.db.get_document(collection, doc_id)
        if current is None:
            raise DocumentNotFoundError(path)
        self.db.put_document(collection, doc_id, {**current, **fields})
        self._publish([collection])

    async def delete_document(self, path: str) -> None:
        """Delete one document. Deleting a missing document is a no-op."""
        await self.batch_delete([path])

    async def batch_delete(self, paths: Iterable[str]) -> None:
        """Delete several documents atomically."""
        keys = [split_path(path) for path in paths]
        deleted = self.db.delete_documents(keys)
        logger.debug(f"Batch deleted {deleted} of {len(keys)} documents")
        self._publish(collection for collection, _ in keys)

    async def aclose(self) -> None:
        """Close every subscription and the database."""
        for subscription in list(self._subscriptions):
            subscription.close()
        self.db.close()

