"""
Unit tests for the gateway key/value store client.
"""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest

from service_gateway.app.caching import kv_store
from service_gateway.app.caching.kv_store import (
    CappedLinearBackoff,
    StoreConnection,
    StoreState,
    get_store_connection,
)


class TestStoreConnection:
    """Lazy, memoized connection lifecycle."""

    def test_unconfigured_connection_is_unavailable(self):
        connection = StoreConnection(None)

        assert connection.get_client() is None
        assert connection.state is StoreState.UNINITIALIZED
        assert connection.available is False

    def test_first_success_is_memoized(self, fake_redis):
        connection = StoreConnection("redis://localhost:6379/0")

        with patch.object(kv_store.redis, "from_url", return_value=fake_redis) as mock_from_url:
            first = connection.get_client()
            second = connection.get_client()

        assert first is fake_redis
        assert second is fake_redis
        assert connection.state is StoreState.READY
        mock_from_url.assert_called_once()

    def test_failed_init_is_never_retried(self):
        connection = StoreConnection("not-a-url")

        with patch.object(kv_store.redis, "from_url", side_effect=ValueError("bad scheme")) as mock_from_url:
            assert connection.get_client() is None
            assert connection.get_client() is None

        assert connection.state is StoreState.FAILED
        mock_from_url.assert_called_once()

    def test_transport_retry_uses_capped_linear_backoff(self):
        connection = StoreConnection("redis://localhost:6379/0")

        with patch.object(kv_store.redis, "from_url") as mock_from_url:
            connection.get_client()

        kwargs = mock_from_url.call_args.kwargs
        assert kwargs["decode_responses"] is True
        assert isinstance(kwargs["retry"], kv_store.Retry)

    def test_backoff_delays(self):
        backoff = CappedLinearBackoff()

        assert backoff.compute(1) == pytest.approx(0.2)
        assert backoff.compute(3) == pytest.approx(0.6)
        assert backoff.compute(10) == pytest.approx(2.0)
        assert backoff.compute(50) == pytest.approx(2.0)

    def test_accessor_shares_one_connection_per_url(self):
        first = get_store_connection("redis://localhost:6379/0")
        second = get_store_connection("redis://localhost:6379/0")
        other = get_store_connection("redis://localhost:6379/1")

        assert first is second
        assert first is not other

    @pytest.mark.asyncio
    async def test_last_release_closes_client(self, fake_redis):
        connection = StoreConnection("redis://localhost:6379/0")

        with patch.object(kv_store.redis, "from_url", return_value=fake_redis):
            connection.acquire()
            connection.acquire()

        with patch.object(fake_redis, "aclose", AsyncMock()) as mock_close:
            await connection.release()
            mock_close.assert_not_called()
            assert connection.ref_count == 1

            await connection.release()
            mock_close.assert_awaited_once()
        assert connection.get_client() is None


class TestKeyValueStore:
    """JSON-transparent operations that never raise."""

    @pytest.mark.asyncio
    async def test_set_and_get_json_value(self, connected_store, fake_redis):
        payload = {"quakes": [{"mag": 5.1}], "count": 1}

        assert await connected_store.set("quakes", payload, ttl_seconds=60) is True

        assert await fake_redis.get("quakes") == json.dumps(payload)
        assert 0 < await fake_redis.ttl("quakes") <= 60
        assert await connected_store.get("quakes") == payload

    @pytest.mark.asyncio
    async def test_string_values_are_stored_verbatim(self, connected_store, fake_redis):
        await connected_store.set("greeting", "hello world")

        assert await fake_redis.get("greeting") == "hello world"
        assert await fake_redis.ttl("greeting") == -1
        assert await connected_store.get("greeting") == "hello world"

    @pytest.mark.asyncio
    async def test_get_missing_key(self, connected_store):
        assert await connected_store.get("missing") is None

    @pytest.mark.asyncio
    async def test_transport_errors_are_absorbed(self, unreachable_store):
        assert await unreachable_store.get("k") is None
        assert await unreachable_store.set("k", {"a": 1}, ttl_seconds=10) is False
        assert await unreachable_store.delete("k") == 0
        assert await unreachable_store.list_keys("*") == []
        assert await unreachable_store.multi_get(["a", "b"]) == [None, None]

    @pytest.mark.asyncio
    async def test_unconfigured_store_sentinels(self, unconfigured_store):
        assert await unconfigured_store.get("k") is None
        assert await unconfigured_store.set("k", "v") is False
        assert await unconfigured_store.delete("k") == 0
        assert await unconfigured_store.list_keys("apicache:*") == []
        assert await unconfigured_store.multi_get(["a", "b", "c"]) == [None, None, None]
        assert await unconfigured_store.batch().set("a", 1).get("b").execute() == [None, None]

    @pytest.mark.asyncio
    async def test_delete_and_list_keys(self, connected_store):
        await connected_store.set("apicache:/api/a", "1")
        await connected_store.set("apicache:/api/b", "2")
        await connected_store.set("other", "3")

        keys = await connected_store.list_keys("apicache:*")
        assert sorted(keys) == ["apicache:/api/a", "apicache:/api/b"]

        assert await connected_store.delete("apicache:/api/a", "missing") == 1
        assert await connected_store.list_keys("apicache:*") == ["apicache:/api/b"]

    @pytest.mark.asyncio
    async def test_multi_get_preserves_order(self, connected_store):
        await connected_store.set("a", {"v": 1})
        await connected_store.set("c", "plain")

        assert await connected_store.multi_get(["c", "b", "a"]) == ["plain", None, {"v": 1}]

    @pytest.mark.asyncio
    async def test_get_error_from_client(self, connected_store, fake_redis):
        fake_redis.get = AsyncMock(side_effect=TimeoutError("timed out"))

        assert await connected_store.get("k") is None


class TestStoreBatch:
    """Pipelined batches."""

    @pytest.mark.asyncio
    async def test_batch_round_trip(self, connected_store, fake_redis):
        await connected_store.set("existing", {"n": 1})

        results = await (
            connected_store.batch()
            .set("fresh", {"n": 2}, ttl_seconds=30)
            .get("existing")
            .get("fresh")
            .delete("existing")
            .execute()
        )

        assert results == [True, {"n": 1}, {"n": 2}, 1]
        assert 0 < await fake_redis.ttl("fresh") <= 30
        assert await fake_redis.exists("existing") == 0

    @pytest.mark.asyncio
    async def test_empty_batch(self, connected_store):
        assert await connected_store.batch().execute() == []

    @pytest.mark.asyncio
    async def test_per_command_failure_yields_none(self, connected_store, fake_redis):
        await connected_store.set("ok", "fine")
        # GET on a list fails with WRONGTYPE inside the pipeline
        await fake_redis.lpush("broken", "item")

        results = await connected_store.batch().get("ok").get("broken").set("x", [1, 2]).execute()

        assert results == ["fine", None, True]
        assert connected_store.connection.state is StoreState.READY

    @pytest.mark.asyncio
    async def test_failed_round_trip_yields_none_per_command(self, unreachable_store):
        results = await unreachable_store.batch().get("a").set("b", 1).execute()

        assert results == [None, None]
        assert unreachable_store.connection.state is StoreState.FAILED

    @pytest.mark.asyncio
    async def test_zero_ttl_is_sent_to_the_store(self, connected_store, fake_redis):
        with patch.object(fake_redis, "set", AsyncMock(return_value=True)) as mock_set:
            await connected_store.set("k", "v", ttl_seconds=0)

        mock_set.assert_awaited_once_with("k", "v", ex=0)


class TestExpiry:
    """Entries disappear once their TTL elapses."""

    @pytest.mark.asyncio
    async def test_entry_expires(self, connected_store):
        await connected_store.set("short", {"v": 1}, ttl_seconds=1)
        assert await connected_store.get("short") == {"v": 1}

        await asyncio.sleep(1.1)

        assert await connected_store.get("short") is None

    @pytest.mark.asyncio
    async def test_batch_entry_expires(self, connected_store):
        await connected_store.batch().set("short", "v", ttl_seconds=1).set("long", "v", ttl_seconds=60).execute()

        await asyncio.sleep(1.1)

        assert await connected_store.multi_get(["short", "long"]) == [None, "v"]


class TestUnreachableStore:
    """A configured store that cannot be reached is given up on."""

    @pytest.mark.asyncio
    async def test_verify_marks_unreachable_store_failed(self, unreachable_store):
        connection = unreachable_store.connection

        assert await connection.verify() is False

        assert connection.state is StoreState.FAILED
        assert connection.get_client() is None
        assert unreachable_store.available is False

    @pytest.mark.asyncio
    async def test_verify_reachable_store(self, connected_store):
        assert await connected_store.connection.verify() is True
        assert connected_store.connection.state is StoreState.READY

    @pytest.mark.asyncio
    async def test_first_transport_error_disables_later_calls(self, unreachable_store, fake_redis):
        assert await unreachable_store.get("k") is None
        assert unreachable_store.connection.state is StoreState.FAILED

        with patch.object(fake_redis, "get", AsyncMock()) as mock_get:
            assert await unreachable_store.get("k") is None
            assert await unreachable_store.set("k", "v") is False

        mock_get.assert_not_called()

    @pytest.mark.asyncio
    async def test_command_errors_keep_the_store(self, connected_store, fake_redis):
        await fake_redis.lpush("listy", "item")

        assert await connected_store.get("listy") is None

        assert connected_store.connection.state is StoreState.READY
        assert await connected_store.set("k", "v") is True

    @pytest.mark.asyncio
    async def test_client_is_closed_when_given_up(self, unreachable_store, fake_redis):
        with patch.object(fake_redis, "aclose", AsyncMock()) as mock_close:
            await unreachable_store.connection.verify()

        mock_close.assert_awaited_once()

    def test_client_uses_short_socket_timeouts(self):
        connection = StoreConnection("redis://localhost:6379/0")

        with patch.object(kv_store.redis, "from_url") as mock_from_url:
            connection.get_client()

        kwargs = mock_from_url.call_args.kwargs
        assert kwargs["socket_connect_timeout"] == kv_store.CONNECT_TIMEOUT_SECONDS
        assert kwargs["socket_timeout"] == kv_store.COMMAND_TIMEOUT_SECONDS
