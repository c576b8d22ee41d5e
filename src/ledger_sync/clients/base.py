"""Contract between the core and a streaming document store."""

import logging
from collections.abc import Callable, Iterable
from typing import Any, Literal, Protocol

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

USERS = "users"
GROUPS = "groups"
TRANSACTIONS = "transactions"


def document_path(collection: str, doc_id: str) -> str:
    """Join a collection path and a document id."""
    return f"{collection}/{doc_id}"


def split_path(path: str) -> tuple[str, str]:
    """Split a document path into (collection path, document id)."""
    collection, _, doc_id = path.rpartition("/")
    if not collection or not doc_id:
        raise ValueError(f"Not a document path: {path!r}")
    return collection, doc_id


def transactions_path(group_id: str) -> str:
    """Collection path of a group's transaction history."""
    return f"{GROUPS}/{group_id}/{TRANSACTIONS}"


class Document(BaseModel):
    """A stored document: its id within the collection plus raw fields."""

    model_config = ConfigDict(frozen=True)

    id: str
    data: dict[str, Any]


class Snapshot(BaseModel):
    """Complete, authoritative state of a subscribed collection."""

    model_config = ConfigDict(frozen=True)

    path: str
    documents: tuple[Document, ...] = ()

    def ids(self) -> set[str]:
        """Ids of every document in the snapshot."""
        return {doc.id for doc in self.documents}


class FieldFilter(BaseModel):
    """A single-field query filter."""

    model_config = ConfigDict(frozen=True)

    field: str
    op: Literal["==", "array-contains"]
    value: Any

    def matches(self, data: dict[str, Any]) -> bool:
        """Evaluate the filter against a document's fields."""
        if self.field not in data:
            return False
        current = data[self.field]
        if self.op == "array-contains":
            return isinstance(current, list) and self.value in current
        return bool(current == self.value)


SnapshotCallback = Callable[[Snapshot], None]
ErrorCallback = Callable[[Exception], None]


class Subscription:
    """
    Handle for one live subscription.

    Closing is idempotent. A closed subscription never delivers again, so a
    late push from the store cannot reach a callback whose owner released it.
    """

    def __init__(
        self,
        path: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback | None = None,
        where: FieldFilter | None = None,
    ):
        """Initialize an open subscription."""
        self.path = path
        self.where = where
        self._on_snapshot = on_snapshot
        self._on_error = on_error
        self._closed = False

    @property
    def closed(self) -> bool:
        """Whether the subscription has been released."""
        return self._closed

    def deliver(self, snapshot: Snapshot) -> None:
        """Push a snapshot to the subscriber unless closed."""
        if self._closed:
            logger.debug(f"Dropping snapshot for closed subscription {self.path}")
            return
        self._on_snapshot(snapshot)

    def fail(self, error: Exception) -> None:
        """Report a subscription failure and stop delivering."""
        if self._closed:
            return
        logger.error(f"Subscription {self.path} failed: {error}")
        self.close()
        if self._on_error is not None:
            self._on_error(error)

    def close(self) -> None:
        """Release the subscription. Closing twice is a no-op."""
        if self._closed:
            return
        self._closed = True
        self._release()

    def _release(self) -> None:
        """Hook for stores to free resources backing the subscription."""
        pass


class DocumentStore(Protocol):
    """Streaming document store consumed by the core.

    Subscriptions push the full current snapshot whenever the collection
    changes. Writes resolve once the store acknowledges them; their effect is
    observed only through the next snapshot.
    """

    def subscribe_collection(
        self,
        path: str,
        on_snapshot: SnapshotCallback,
        where: FieldFilter | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Subscription: ...

    def subscribe_subcollection(
        self,
        group_id: str,
        name: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription: ...

    async def get_document(self, path: str) -> Document | None: ...

    async def list_documents(self, path: str) -> list[Document]: ...

    async def create_document(self, path: str, fields: dict[str, Any]) -> str: ...

    async def set_document(self, path: str, fields: dict[str, Any]) -> None: ...

    async def update_document(self, path: str, fields: dict[str, Any]) -> None: ...

    async def delete_document(self, path: str) -> None: ...

    async def batch_delete(self, paths: Iterable[str]) -> None: ...

    async def query_once(
        self, collection: str, field: str, value: Any
    ) -> Document | None: ...

    async def aclose(self) -> None: ...
