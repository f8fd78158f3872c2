"""
Shared fixtures for gateway tests.
"""

from unittest.mock import patch

import fakeredis
import fakeredis.aioredis
import pytest

from service_gateway.app.caching import kv_store
from service_gateway.app.caching.kv_store import KeyValueStore, StoreConnection, reset_store_connections


@pytest.fixture(autouse=True)
def _fresh_store_connections():
    """Each test starts without memoized store connections."""
    reset_store_connections()
    yield
    reset_store_connections()


@pytest.fixture
def redis_server():
    """In-memory Redis server; set ``connected = False`` to make it unreachable."""
    return fakeredis.FakeServer()


@pytest.fixture
def fake_redis(redis_server):
    """Async client on redis_server."""
    return fakeredis.aioredis.FakeRedis(server=redis_server, decode_responses=True)


@pytest.fixture
def redis_view(redis_server):
    """Sync client on redis_server for inspecting data from TestClient tests."""
    return fakeredis.FakeRedis(server=redis_server, decode_responses=True)


@pytest.fixture
def connected_store(fake_redis):
    """KeyValueStore whose shared connection is backed by fake_redis."""
    connection = StoreConnection("redis://localhost:6379/0")
    with patch.object(kv_store.redis, "from_url", return_value=fake_redis):
        connection.get_client()
    return KeyValueStore(connection)


@pytest.fixture
def unreachable_store(redis_server, connected_store):
    """Configured store whose server refuses every connection."""
    redis_server.connected = False
    return connected_store


@pytest.fixture
def unconfigured_store():
    """KeyValueStore with no store URL configured."""
    return KeyValueStore(StoreConnection(None))
