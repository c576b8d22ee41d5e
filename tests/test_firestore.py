"""Tests for the Firestore REST client using httpx's mock transport."""

import asyncio
import json
from unittest.mock import patch

import httpx
import pytest

from ledger_sync.clients.base import FieldFilter
from ledger_sync.clients.firestore import (
    FirestoreClient,
    decode_document,
    decode_fields,
    encode_fields,
)
from ledger_sync.exceptions import DocumentNotFoundError, StoreAPIError

ROOT = "projects/demo/databases/(default)/documents"


def doc_resource(path: str, fields: dict) -> dict:
    return {"name": f"{ROOT}/{path}", "fields": encode_fields(fields)}


class Recorder:
    """Mock transport handler returning queued responses and recording requests."""

    def __init__(self, *responses: httpx.Response):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        template = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        return httpx.Response(
            template.status_code, headers=template.headers, content=template.content
        )

    @property
    def last_json(self) -> dict:
        return json.loads(self.requests[-1].content)


def make_client(handler, poll_interval: float = 0.01) -> FirestoreClient:
    return FirestoreClient(
        "demo",
        "token",
        poll_interval=poll_interval,
        transport=httpx.MockTransport(handler),
    )


def run(coro):
    return asyncio.run(coro)


class TestValueCodec:
    """Tests for typed value encoding."""

    def test_encodes_document_fields(self):
        """Nested maps, arrays and scalars map to Firestore value kinds."""
        encoded = encode_fields(
            {
                "amount": 12.5,
                "count": 3,
                "settled": False,
                "note": None,
                "splitBetween": ["a", "b"],
                "splitShares": {"a": 1.0},
            }
        )

        assert encoded["amount"] == {"doubleValue": 12.5}
        assert encoded["count"] == {"integerValue": "3"}
        assert encoded["settled"] == {"booleanValue": False}
        assert encoded["note"] == {"nullValue": None}
        assert encoded["splitBetween"] == {
            "arrayValue": {"values": [{"stringValue": "a"}, {"stringValue": "b"}]}
        }
        assert encoded["splitShares"] == {
            "mapValue": {"fields": {"a": {"doubleValue": 1.0}}}
        }

    def test_decodes_server_values(self):
        """Integers arrive as strings and empty arrays omit their values."""
        decoded = decode_fields(
            {
                "amount": {"integerValue": "40"},
                "memberIds": {"arrayValue": {}},
                "date": {"timestampValue": "2025-03-15T12:00:00Z"},
                "prefs": {"mapValue": {"fields": {"onSettlement": {"booleanValue": True}}}},
            }
        )

        assert decoded == {
            "amount": 40,
            "memberIds": [],
            "date": "2025-03-15T12:00:00Z",
            "prefs": {"onSettlement": True},
        }

    def test_decode_document_takes_id_from_name(self):
        """The document id is the last path segment."""
        document = decode_document(doc_resource("groups/g1", {"name": "Trip"}))

        assert document.id == "g1"
        assert document.data == {"name": "Trip"}


class TestRequests:
    """Tests for reads and writes."""

    def test_run_query_with_filter(self):
        """Group membership queries use ARRAY_CONTAINS at the root."""
        handler = Recorder(
            httpx.Response(
                200,
                json=[
                    {"document": doc_resource("groups/g1", {"memberIds": ["alice"]})},
                    {"readTime": "2025-03-15T12:00:00Z"},
                ],
            )
        )

        async def main():
            async with make_client(handler) as client:
                return await client.run_query(
                    "groups",
                    FieldFilter(field="memberIds", op="array-contains", value="alice"),
                )

        documents = run(main())

        assert [doc.id for doc in documents] == ["g1"]
        request = handler.requests[0]
        assert request.method == "POST"
        assert request.url.path.endswith("/documents:runQuery")
        assert request.headers["Authorization"] == "Bearer token"
        query = handler.last_json["structuredQuery"]
        assert query["from"] == [{"collectionId": "groups"}]
        assert query["where"]["fieldFilter"]["op"] == "ARRAY_CONTAINS"

    def test_subcollection_query_uses_parent(self):
        """Transaction queries run under the group document."""
        handler = Recorder(httpx.Response(200, json=[]))

        async def main():
            async with make_client(handler) as client:
                return await client.list_documents("groups/g1/transactions")

        assert run(main()) == []
        assert handler.requests[0].url.path.endswith("/documents/groups/g1:runQuery")
        assert handler.last_json["structuredQuery"]["from"] == [
            {"collectionId": "transactions"}
        ]

    def test_query_once_limits_to_one(self):
        """Email lookups ask for a single EQUAL match."""
        handler = Recorder(
            httpx.Response(
                200, json=[{"document": doc_resource("users/bob", {"email": "b@x.io"})}]
            )
        )

        async def main():
            async with make_client(handler) as client:
                return await client.query_once("users", "email", "b@x.io")

        document = run(main())

        assert document.id == "bob"
        query = handler.last_json["structuredQuery"]
        assert query["limit"] == 1
        assert query["where"]["fieldFilter"]["op"] == "EQUAL"

    def test_get_missing_document(self):
        """A 404 on read resolves to None."""
        handler = Recorder(httpx.Response(404, json={"error": {"code": 404}}))

        async def main():
            async with make_client(handler) as client:
                return await client.get_document("users/ghost")

        assert run(main()) is None

    def test_create_document_returns_generated_id(self):
        """The new id is read from the returned resource name."""
        handler = Recorder(
            httpx.Response(200, json=doc_resource("groups/g1/transactions/abc", {}))
        )

        async def main():
            async with make_client(handler) as client:
                return await client.create_document(
                    "groups/g1/transactions", {"kind": "expense", "amount": 10.0}
                )

        assert run(main()) == "abc"
        assert handler.last_json["fields"]["kind"] == {"stringValue": "expense"}

    def test_update_document_uses_mask(self):
        """Updates only touch the given fields and require the document."""
        handler = Recorder(httpx.Response(200, json=doc_resource("users/alice", {})))

        async def main():
            async with make_client(handler) as client:
                await client.update_document("users/alice", {"monthlyLimit": 500.0})

        run(main())

        params = handler.requests[0].url.params
        assert params.get_list("updateMask.fieldPaths") == ["monthlyLimit"]
        assert params["currentDocument.exists"] == "true"

    def test_update_missing_document(self):
        """Updating a document that does not exist raises DocumentNotFoundError."""
        handler = Recorder(httpx.Response(404, json={}))

        async def main():
            async with make_client(handler) as client:
                await client.update_document("users/ghost", {"monthlyLimit": 1.0})

        with pytest.raises(DocumentNotFoundError):
            run(main())

    def test_batch_delete_commits_once(self):
        """Group deletion is a single commit with one delete per document."""
        handler = Recorder(httpx.Response(200, json={}))

        async def main():
            async with make_client(handler) as client:
                await client.batch_delete(
                    ["groups/g1/transactions/t1", "groups/g1/transactions/t2", "groups/g1"]
                )

        run(main())

        assert len(handler.requests) == 1
        assert handler.requests[0].url.path.endswith("/documents:commit")
        assert handler.last_json["writes"][-1] == {"delete": f"{ROOT}/groups/g1"}

    def test_server_error(self):
        """Non-404 failures raise StoreAPIError with the status code."""
        handler = Recorder(httpx.Response(500, text="boom"))

        async def main():
            async with make_client(handler) as client:
                await client.set_document("users/alice", {"name": "Alice"})

        with pytest.raises(StoreAPIError) as exc_info:
            run(main())

        assert exc_info.value.status_code == 500

    def test_document_without_name_is_an_api_error(self):
        """A runQuery result missing the resource name raises StoreAPIError."""
        handler = Recorder(httpx.Response(200, json=[{"document": {"fields": {}}}]))

        async def main():
            async with make_client(handler) as client:
                return await client.list_documents("users")

        with pytest.raises(StoreAPIError):
            run(main())


class TestPolling:
    """Tests for polled subscriptions."""

    def test_delivers_only_on_change(self):
        """Identical query results are not delivered twice."""
        first = [{"document": doc_resource("users/alice", {"name": "Alice"})}]
        second = first + [{"document": doc_resource("users/bob", {"name": "Bob"})}]
        handler = Recorder(
            httpx.Response(200, json=first),
            httpx.Response(200, json=first),
            httpx.Response(200, json=second),
        )
        snapshots = []

        async def main():
            async with make_client(handler) as client:
                subscription = client.subscribe_collection("users", snapshots.append)
                await asyncio.sleep(0.1)
                subscription.close()

        run(main())

        assert [snapshot.ids() for snapshot in snapshots] == [{"alice"}, {"alice", "bob"}]

    def test_close_stops_polling(self):
        """No request is made after the subscription is closed."""
        handler = Recorder(httpx.Response(200, json=[]))

        async def main():
            async with make_client(handler) as client:
                subscription = client.subscribe_collection("users", lambda s: None)
                await asyncio.sleep(0.03)
                subscription.close()
                count = len(handler.requests)
                await asyncio.sleep(0.05)
                return count

        count = run(main())

        assert count >= 1
        assert len(handler.requests) == count

    def test_failure_reports_and_stops(self):
        """A failed poll closes the subscription and reports the error."""
        handler = Recorder(httpx.Response(403, text="denied"))
        errors = []

        async def main():
            async with make_client(handler) as client:
                subscription = client.subscribe_collection(
                    "users", lambda s: None, on_error=errors.append
                )
                await asyncio.sleep(0.05)
                return subscription

        subscription = run(main())

        assert subscription.closed
        assert len(errors) == 1
        assert isinstance(errors[0], StoreAPIError)
        assert errors[0].status_code == 403
        assert len(handler.requests) == 1


    def test_non_json_body_reports_and_stops(self):
        """A 200 with an HTML body fails the subscription instead of hanging."""
        handler = Recorder(httpx.Response(200, text="<html>proxy error</html>"))
        errors = []

        async def main():
            async with make_client(handler) as client:
                subscription = client.subscribe_collection(
                    "users", lambda s: None, on_error=errors.append
                )
                await asyncio.sleep(0.05)
                return subscription

        subscription = run(main())

        assert subscription.closed
        assert len(errors) == 1
        assert isinstance(errors[0], StoreAPIError)
        assert errors[0].status_code == 200

    def test_unexpected_failure_reports_and_stops(self):
        """Errors outside the store hierarchy still reach on_error."""
        errors = []

        async def main():
            async with make_client(Recorder(httpx.Response(200, json=[]))) as client:
                with patch.object(client, "run_query", side_effect=RuntimeError("bug")):
                    subscription = client.subscribe_collection(
                        "users", lambda s: None, on_error=errors.append
                    )
                    await asyncio.sleep(0.05)
                return subscription

        subscription = run(main())

        assert subscription.closed
        assert [str(e) for e in errors] == ["bug"]
