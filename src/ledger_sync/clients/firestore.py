"""Cloud Firestore client over the REST API.

Writes map one-to-one onto REST calls. Subscriptions are emulated by polling a
structured query and pushing a snapshot whenever the result set changes, so
they must be opened from inside a running event loop.
"""

import asyncio
import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Any

import httpx

from ..exceptions import DocumentNotFoundError, StoreAPIError, StoreError
from .base import (
    Document,
    ErrorCallback,
    FieldFilter,
    Snapshot,
    SnapshotCallback,
    Subscription,
)

logger = logging.getLogger(__name__)

_FILTER_OPS = {"==": "EQUAL", "array-contains": "ARRAY_CONTAINS"}


# ============================================================================
# Value encoding
# ============================================================================


def encode_value(value: Any) -> dict[str, Any]:
    """Encode a Python value as a Firestore typed value."""
    if value is None:
        return {"nullValue": None}
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, datetime):
        return {"timestampValue": value.isoformat()}
    if isinstance(value, list | tuple):
        return {"arrayValue": {"values": [encode_value(v) for v in value]}}
    if isinstance(value, dict):
        return {"mapValue": {"fields": encode_fields(value)}}
    raise TypeError(f"Cannot encode {type(value).__name__} for Firestore")


def encode_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """Encode a mapping of field name to value."""
    return {key: encode_value(value) for key, value in fields.items()}


def decode_value(value: dict[str, Any]) -> Any:
    """Decode a Firestore typed value into a plain Python value."""
    kind, inner = next(iter(value.items()))
    if kind == "nullValue":
        return None
    if kind == "integerValue":
        return int(inner)
    if kind == "doubleValue":
        return float(inner)
    if kind == "arrayValue":
        return [decode_value(v) for v in inner.get("values", [])]
    if kind == "mapValue":
        return decode_fields(inner.get("fields", {}))
    # booleanValue, stringValue, timestampValue (RFC 3339 string) and the
    # reference/bytes/geo kinds pass through unchanged
    return inner


def decode_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """Decode a Firestore ``fields`` mapping."""
    return {key: decode_value(value) for key, value in fields.items()}


def decode_document(payload: dict[str, Any]) -> Document:
    """Decode a REST document resource into a ``Document``."""
    doc_id = payload["name"].rsplit("/", 1)[-1]
    return Document(id=doc_id, data=decode_fields(payload.get("fields", {})))


# ============================================================================
# Subscriptions
# ============================================================================


class PollingSubscription(Subscription):
    """Subscription that re-runs a query on an interval."""

    def __init__(
        self,
        client: "FirestoreClient",
        path: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback | None,
        where: FieldFilter | None,
        interval: float,
    ):
        super().__init__(path, on_snapshot, on_error, where)
        self._task = asyncio.get_running_loop().create_task(
            self._poll(client, interval)
        )

    async def _poll(self, client: "FirestoreClient", interval: float) -> None:
        last: Snapshot | None = None
        while not self.closed:
            try:
                documents = await client.run_query(self.path, self.where)
            except StoreError as e:
                self.fail(e)
                return
            except Exception as e:
                logger.exception(f"Unexpected failure polling {self.path}")
                self.fail(e)
                return

            snapshot = Snapshot(path=self.path, documents=tuple(documents))
            if snapshot != last:
                last = snapshot
                self.deliver(snapshot)

            await asyncio.sleep(interval)

    def _release(self) -> None:
        self._task.cancel()


# ============================================================================
# Client
# ============================================================================


class FirestoreClient:
    """Client for the Cloud Firestore REST API v1."""

    BASE_URL = "https://firestore.googleapis.com/v1/"

    def __init__(
        self,
        project_id: str,
        access_token: str,
        database: str = "(default)",
        poll_interval: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the Firestore client."""
        self.root = f"projects/{project_id}/databases/{database}/documents"
        self.poll_interval = poll_interval
        self.client = httpx.AsyncClient(
            base_url=self.BASE_URL,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
            },
            timeout=30.0,
            transport=transport,
        )

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.aclose()

    async def _request(
        self, method: str, url: str, allow_404: bool = False, **kwargs: Any
    ) -> httpx.Response:
        """Send a request, translating transport and HTTP errors."""
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise StoreAPIError(f"Firestore request failed: {e}") from e

        if response.status_code == 404 and allow_404:
            return response
        if response.is_error:
            raise StoreAPIError(
                f"Firestore {method} {url} returned {response.status_code}: "
                f"{response.text}",
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        """Decode a response body, treating a non-JSON body as an API error."""
        try:
            return response.json()
        except ValueError as e:
            raise StoreAPIError(
                f"Firestore returned a non-JSON body ({response.status_code}): "
                f"{response.text[:200]}",
                status_code=response.status_code,
            ) from e

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
        """Start polling a collection. Requires a running event loop."""
        logger.debug(f"Polling {path} every {self.poll_interval}s")
        return PollingSubscription(
            self, path, on_snapshot, on_error, where, self.poll_interval
        )

    def subscribe_subcollection(
        self,
        group_id: str,
        name: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        """Start polling a group's subcollection."""
        return self.subscribe_collection(
            f"groups/{group_id}/{name}", on_snapshot, on_error=on_error
        )

    # ========================================================================
    # Reads
    # ========================================================================

    async def run_query(
        self, path: str, where: FieldFilter | None = None, limit: int | None = None
    ) -> list[Document]:
        """
        Run a structured query against a collection.

        Args:
            path: Collection path, e.g. ``groups`` or ``groups/<id>/transactions``
            where: Optional single-field filter
            limit: Optional maximum number of documents

        Returns:
            Matching documents
        """
        parent, _, collection_id = path.rpartition("/")
        url = f"{self.root}/{parent}:runQuery" if parent else f"{self.root}:runQuery"

        query: dict[str, Any] = {"from": [{"collectionId": collection_id}]}
        if where is not None:
            query["where"] = {
                "fieldFilter": {
                    "field": {"fieldPath": where.field},
                    "op": _FILTER_OPS[where.op],
                    "value": encode_value(where.value),
                }
            }
        if limit is not None:
            query["limit"] = limit

        response = await self._request("POST", url, json={"structuredQuery": query})
        try:
            return [
                decode_document(item["document"])
                for item in self._json(response)
                if "document" in item
            ]
        except (KeyError, TypeError, AttributeError) as e:
            raise StoreAPIError(f"Unexpected runQuery response for {path}: {e!r}") from e

    async def get_document(self, path: str) -> Document | None:
        """Read one document, or None if it does not exist."""
        response = await self._request("GET", f"{self.root}/{path}", allow_404=True)
        if response.status_code == 404:
            return None
        return decode_document(self._json(response))

    async def list_documents(self, path: str) -> list[Document]:
        """Read every document of a collection once."""
        return await self.run_query(path)

    async def query_once(
        self, collection: str, field: str, value: Any
    ) -> Document | None:
        """Return the first document whose field equals value."""
        where = FieldFilter(field=field, op="==", value=value)
        documents = await self.run_query(collection, where, limit=1)
        return documents[0] if documents else None

    # ========================================================================
    # Writes
    # ========================================================================

    async def create_document(self, path: str, fields: dict[str, Any]) -> str:
        """Add a document with a server-generated id."""
        response = await self._request(
            "POST", f"{self.root}/{path}", json={"fields": encode_fields(fields)}
        )
        doc_id: str = self._json(response)["name"].rsplit("/", 1)[-1]
        logger.debug(f"Created {path}/{doc_id}")
        return doc_id

    async def set_document(self, path: str, fields: dict[str, Any]) -> None:
        """Create or replace a document at a known path."""
        await self._request(
            "PATCH", f"{self.root}/{path}", json={"fields": encode_fields(fields)}
        )

    async def update_document(self, path: str, fields: dict[str, Any]) -> None:
        """Overwrite the given fields of an existing document."""
        params = [("updateMask.fieldPaths", key) for key in fields]
        params.append(("currentDocument.exists", "true"))
        response = await self._request(
            "PATCH",
            f"{self.root}/{path}",
            allow_404=True,
            params=params,
            json={"fields": encode_fields(fields)},
        )
        if response.status_code == 404:
            raise DocumentNotFoundError(path)

    async def delete_document(self, path: str) -> None:
        """Delete one document."""
        await self._request("DELETE", f"{self.root}/{path}")

    async def batch_delete(self, paths: Iterable[str]) -> None:
        """Delete several documents in one atomic commit."""
        writes = [{"delete": f"{self.root}/{path}"} for path in paths]
        if not writes:
            return
        await self._request("POST", f"{self.root}:commit", json={"writes": writes})
        logger.debug(f"Committed batch delete of {len(writes)} documents")
