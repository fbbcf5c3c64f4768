"""
Unit tests for the request dispatcher.

Tests cover:
- Envelope parsing
- Insert validation and all-or-nothing batches
- Query, query-user and delete-user responses
"""

import json

import pytest

from dbaas.tsdb_server.api import Dispatcher, Envelope, RequestError, parse_envelope
from dbaas.tsdb_server.routing import CollectionPattern, CollectionRouter


def envelope(message_type, payload, request_id="req-1"):
    return Envelope(id=request_id, type=message_type, data=json.dumps(payload))


class TestParseEnvelope:
    """Tests for parse_envelope."""

    def test_valid(self):
        env = parse_envelope('{"id":"1","type":"insert","data":"[]"}')
        assert env.id == "1"
        assert env.type == "insert"
        assert env.data == "[]"

    def test_accepts_bytes(self):
        assert parse_envelope(b'{"id":"1","type":"api-key","data":"k"}').data == "k"

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            '{"id":"1","type":"insert"}',
            '{"id":1,"type":"insert","data":"[]"}',
            '{"id":"1","type":"insert","data":[]}',
            "[]",
        ],
    )
    def test_invalid(self, raw):
        with pytest.raises(RequestError, match="invalid envelope"):
            parse_envelope(raw)


class TestDispatcher:
    """Tests for Dispatcher."""

    @pytest.fixture
    def router(self, clock):
        patterns = [CollectionPattern.parse("public:60"), CollectionPattern.parse("events.*:60")]
        return CollectionRouter(patterns, clock=clock)

    @pytest.fixture
    def dispatcher(self, router):
        return Dispatcher(router)

    @pytest.mark.asyncio
    async def test_insert_then_query(self, dispatcher):
        response = await dispatcher.dispatch(
            envelope("insert", [{"ts": 1, "uid": "u", "data": "x", "collection": "public"}])
        )
        assert response == {"id": "req-1"}

        response = await dispatcher.dispatch(
            envelope("query", {"ts": 5, "collection": "public"}, request_id="req-2")
        )
        assert response == {"id": "req-2", "records": {"u": {"ts": 1, "data": "x"}}}

    @pytest.mark.asyncio
    async def test_insert_into_new_wildcard_collection(self, dispatcher, router):
        await dispatcher.dispatch(
            envelope("insert", [{"ts": 7, "uid": "u", "data": "x", "collection": "events.a"}])
        )
        assert router.get("events.a").get_latest_for_user("u", 7).data == "x"

    @pytest.mark.asyncio
    async def test_empty_batch(self, dispatcher):
        assert await dispatcher.dispatch(envelope("insert", [])) == {"id": "req-1"}

    @pytest.mark.asyncio
    async def test_insert_unregistered_collection(self, dispatcher, router):
        batch = [
            {"ts": 1, "uid": "u", "data": "x", "collection": "public"},
            {"ts": 2, "uid": "u", "data": "y", "collection": "other"},
        ]
        with pytest.raises(RequestError, match="collection other not found"):
            await dispatcher.dispatch(envelope("insert", batch))

        assert router.get("public") is None or "u" not in router.get("public")

    @pytest.mark.asyncio
    async def test_insert_batch_is_all_or_nothing(self, dispatcher, router):
        router.resolve("public")
        batch = [
            {"ts": 1, "uid": "good", "data": "x", "collection": "public"},
            {"ts": 2, "uid": "", "data": "y", "collection": "public"},
        ]
        with pytest.raises(RequestError):
            await dispatcher.dispatch(envelope("insert", batch))

        assert len(router.get("public")) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            {"ts": 1, "uid": "u", "data": "x", "collection": "public"},
            [{"ts": "1", "uid": "u", "data": "x", "collection": "public"}],
            [{"ts": 1.5, "uid": "u", "data": "x", "collection": "public"}],
            [{"ts": 1, "uid": "u", "data": 5, "collection": "public"}],
            [{"ts": 1, "uid": "u", "data": "x"}],
        ],
    )
    async def test_insert_malformed(self, dispatcher, payload):
        with pytest.raises(RequestError, match="invalid payload"):
            await dispatcher.dispatch(envelope("insert", payload))

    @pytest.mark.asyncio
    async def test_unknown_type(self, dispatcher):
        with pytest.raises(RequestError, match="invalid message type: frobnicate"):
            await dispatcher.dispatch(envelope("frobnicate", {}))

    @pytest.mark.asyncio
    async def test_query_single_user(self, dispatcher, router):
        router.resolve("public").insert("u", 3, "x")

        hit = await dispatcher.dispatch(envelope("query", {"ts": 5, "collection": "public", "uid": "u"}))
        miss = await dispatcher.dispatch(envelope("query", {"ts": 2, "collection": "public", "uid": "u"}))

        assert hit["records"] == {"u": {"ts": 3, "data": "x"}}
        assert miss["records"] == {"u": None}

    @pytest.mark.asyncio
    async def test_query_collection_without_store(self, dispatcher, router):
        response = await dispatcher.dispatch(envelope("query", {"ts": 5, "collection": "events.new"}))

        assert response == {"id": "req-1", "records": {}}
        assert router.stores() == []

    @pytest.mark.asyncio
    async def test_query_unregistered_collection(self, dispatcher):
        with pytest.raises(RequestError, match="not found"):
            await dispatcher.dispatch(envelope("query", {"ts": 5, "collection": "nope"}))

    @pytest.mark.asyncio
    async def test_query_user_range(self, dispatcher, router):
        store = router.resolve("public")
        for ts in range(1, 11):
            store.insert("u", ts, f"v{ts}")

        response = await dispatcher.dispatch(
            envelope("query-user", {"uid": "u", "from": 3, "to": 5, "collection": "public"})
        )

        assert response["records"] == [
            {"ts": 3, "data": "v3"},
            {"ts": 4, "data": "v4"},
            {"ts": 5, "data": "v5"},
        ]

    @pytest.mark.asyncio
    async def test_query_user_reversed_range(self, dispatcher, router):
        router.resolve("public").insert("u", 4, "x")
        response = await dispatcher.dispatch(
            envelope("query-user", {"uid": "u", "from": 5, "to": 3, "collection": "public"})
        )
        assert response["records"] == []

    @pytest.mark.asyncio
    async def test_delete_user_one_collection(self, dispatcher, router):
        router.resolve("public").insert("u", 1, "x")
        router.resolve("events.a").insert("u", 1, "y")

        await dispatcher.dispatch(envelope("delete-user", {"uid": "u", "collection": "public"}))

        assert "u" not in router.get("public")
        assert "u" in router.get("events.a")

    @pytest.mark.asyncio
    async def test_delete_user_everywhere(self, dispatcher, router):
        router.resolve("public").insert("u", 1, "x")
        router.resolve("events.a").insert("u", 1, "y")

        response = await dispatcher.dispatch(envelope("delete-user", {"uid": "u"}))

        assert response == {"id": "req-1"}
        assert all("u" not in store for store in router.stores())

    @pytest.mark.asyncio
    async def test_delete_user_unregistered_collection(self, dispatcher):
        with pytest.raises(RequestError):
            await dispatcher.dispatch(envelope("delete-user", {"uid": "u", "collection": "nope"}))

    @pytest.mark.asyncio
    async def test_insert_into_closed_store(self, dispatcher, router):
        router.resolve("public")
        router.close()
        with pytest.raises(RequestError, match="closed"):
            await dispatcher.dispatch(
                envelope("insert", [{"ts": 1, "uid": "u", "data": "x", "collection": "public"}])
            )
