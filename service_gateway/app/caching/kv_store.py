"""
Key/value store client for the gateway.

Wraps ``redis.asyncio`` behind a small surface (get, set with expiry, delete,
key listing, multi-get and pipelined batches). Values are JSON-transparent:
non-string values are stored as JSON and anything that parses as JSON comes
back parsed.

Every operation degrades instead of raising. When no store is configured, or
the store cannot be reached, reads return ``None`` and writes return
``False``; callers on the request path never see a store exception.
"""

import enum
import json
from typing import Any, Dict, List, Optional, Tuple

import redis.asyncio as redis
from redis.asyncio.retry import Retry
from redis.backoff import AbstractBackoff
from redis.exceptions import ConnectionError as RedisConnectionError, TimeoutError as RedisTimeoutError

from shared.logging import get_logger


RECONNECT_STEP_SECONDS = 0.2
RECONNECT_CAP_SECONDS = 2.0
RECONNECT_ATTEMPTS = 5
CONNECT_TIMEOUT_SECONDS = 1.0
COMMAND_TIMEOUT_SECONDS = 2.0

# Errors left after the client's own retries; the store is then given up on
TRANSPORT_ERRORS = (RedisConnectionError, RedisTimeoutError, OSError)


class CappedLinearBackoff(AbstractBackoff):
    """Delay grows by a fixed step per failed attempt, up to a cap."""

    def __init__(self, step: float = RECONNECT_STEP_SECONDS, cap: float = RECONNECT_CAP_SECONDS):
        self._step = step
        self._cap = cap

    def compute(self, failures: int) -> float:
        return min(failures * self._step, self._cap)


class StoreState(enum.Enum):
    """Lifecycle of the shared store connection."""

    UNINITIALIZED = "uninitialized"
    READY = "ready"
    FAILED = "failed"


class StoreConnection:
    """Lazily created, reference-counted handle to one store URL.

    The first successful initialization is kept for the life of the process.
    A failed initialization is final: the connection stays ``FAILED`` and
    callers receive ``None`` from then on. The same applies once the store
    proves unreachable, either on ``verify()`` or when a command exhausts the
    client's retries.
    """

    def __init__(self, url: Optional[str]):
        self.url = url
        self.state = StoreState.UNINITIALIZED
        self.logger = get_logger("gateway.kv_store")
        self._client: Optional[redis.Redis] = None
        self._refs = 0

    def get_client(self) -> Optional[redis.Redis]:
        """Return the shared client, initializing it on first use."""
        if self.state is StoreState.READY:
            return self._client
        if self.state is StoreState.FAILED or not self.url:
            return None

        try:
            self._client = redis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True,
                retry=Retry(CappedLinearBackoff(), RECONNECT_ATTEMPTS),
                retry_on_error=[RedisConnectionError, RedisTimeoutError],
                socket_connect_timeout=CONNECT_TIMEOUT_SECONDS,
                socket_timeout=COMMAND_TIMEOUT_SECONDS,
            )
        except Exception as exc:
            self.state = StoreState.FAILED
            self.logger.warning("Store init failed", error=str(exc))
            return None

        self.state = StoreState.READY
        self.logger.info("Store client ready for server-level caching")
        return self._client

    def acquire(self) -> Optional[redis.Redis]:
        """Take a reference on the connection."""
        self._refs += 1
        return self.get_client()

    async def verify(self) -> bool:
        """Round-trip a PING; an unreachable store is marked ``FAILED``."""
        client = self.get_client()
        if client is None:
            return False
        try:
            await client.ping()
        except TRANSPORT_ERRORS as exc:
            await self.mark_failed(exc)
            return False
        return True

    async def mark_failed(self, exc: BaseException) -> None:
        """Give up on the store for the rest of the process."""
        if self.state is StoreState.FAILED:
            return
        self.state = StoreState.FAILED
        self.logger.warning("Store unreachable, caching disabled", error=str(exc))
        client, self._client = self._client, None
        if client is not None:
            try:
                await client.aclose()
            except Exception as close_exc:
                self.logger.debug("Store close failed", error=str(close_exc))

    async def release(self) -> None:
        """Drop a reference; the last release closes the client."""
        if self._refs == 0:
            return
        self._refs -= 1
        if self._refs == 0 and self._client is not None:
            try:
                await self._client.aclose()
            except Exception as exc:
                self.logger.warning("Store close failed", error=str(exc))
            self._client = None
            # A closed connection is not re-opened for this process.
            self.state = StoreState.FAILED

    @property
    def ref_count(self) -> int:
        return self._refs

    @property
    def available(self) -> bool:
        return self.get_client() is not None


_connections: Dict[Optional[str], StoreConnection] = {}


def get_store_connection(url: Optional[str]) -> StoreConnection:
    """Process-wide accessor: one ``StoreConnection`` per URL."""
    connection = _connections.get(url)
    if connection is None:
        connection = StoreConnection(url)
        _connections[url] = connection
    return connection


def reset_store_connections() -> None:
    """Forget all shared connections (used by tests)."""
    _connections.clear()


def decode_value(raw: Any) -> Any:
    """Parse stored strings as JSON, falling back to the raw value."""
    if raw is None or not isinstance(raw, (str, bytes)):
        return raw
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return raw


def encode_value(value: Any) -> str:
    """Serialize a value for the string-oriented store."""
    return value if isinstance(value, str) else json.dumps(value)


class KeyValueStore:
    """JSON-transparent store client that never raises on the request path."""

    def __init__(self, connection: StoreConnection):
        self._connection = connection
        self.logger = get_logger("gateway.kv_store")

    @classmethod
    def from_url(cls, url: Optional[str]) -> "KeyValueStore":
        return cls(get_store_connection(url))

    @property
    def connection(self) -> StoreConnection:
        return self._connection

    @property
    def available(self) -> bool:
        return self._connection.available

    async def _absorb(self, operation: str, exc: Exception, **context) -> None:
        self.logger.warning(f"{operation} error", error=str(exc), **context)
        if isinstance(exc, TRANSPORT_ERRORS):
            await self._connection.mark_failed(exc)

    async def get(self, key: str) -> Optional[Any]:
        client = self._connection.get_client()
        if client is None:
            return None
        try:
            raw = await client.get(key)
        except Exception as exc:
            await self._absorb("GET", exc, key=key)
            return None
        return decode_value(raw)

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool:
        client = self._connection.get_client()
        if client is None:
            return False
        try:
            serialized = encode_value(value)
            if ttl_seconds is not None:
                await client.set(key, serialized, ex=ttl_seconds)
            else:
                await client.set(key, serialized)
            return True
        except Exception as exc:
            await self._absorb("SET", exc, key=key)
            return False

    async def delete(self, *keys: str) -> int:
        client = self._connection.get_client()
        if client is None or not keys:
            return 0
        try:
            return await client.delete(*keys)
        except Exception as exc:
            await self._absorb("DEL", exc, keys=list(keys))
            return 0

    async def list_keys(self, pattern: str) -> List[str]:
        client = self._connection.get_client()
        if client is None:
            return []
        try:
            return list(await client.keys(pattern))
        except Exception as exc:
            await self._absorb("KEYS", exc, pattern=pattern)
            return []

    async def multi_get(self, keys: List[str]) -> List[Optional[Any]]:
        client = self._connection.get_client()
        if client is None or not keys:
            return [None for _ in keys]
        try:
            results = await client.mget(keys)
        except Exception as exc:
            await self._absorb("MGET", exc, count=len(keys))
            return [None for _ in keys]
        return [decode_value(raw) for raw in results]

    def batch(self) -> "StoreBatch":
        return StoreBatch(self)


class StoreBatch:
    """Queued set/get/delete commands executed as one pipelined round trip.

    Usage::

        results = await store.batch().set("a", {"x": 1}, ttl_seconds=60).get("b").execute()
    """

    def __init__(self, store: KeyValueStore):
        self._store = store
        self._commands: List[Tuple[str, str, Any, Optional[int]]] = []

    def __len__(self) -> int:
        return len(self._commands)

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> "StoreBatch":
        self._commands.append(("set", key, value, ttl_seconds))
        return self

    def get(self, key: str) -> "StoreBatch":
        self._commands.append(("get", key, None, None))
        return self

    def delete(self, key: str) -> "StoreBatch":
        self._commands.append(("delete", key, None, None))
        return self

    async def execute(self) -> List[Optional[Any]]:
        """Run queued commands; failed positions come back as ``None``."""
        empty: List[Optional[Any]] = [None for _ in self._commands]
        if not self._commands:
            return []

        client = self._store.connection.get_client()
        if client is None:
            return empty

        try:
            pipeline = client.pipeline(transaction=False)
            for op, key, value, ttl_seconds in self._commands:
                if op == "set":
                    if ttl_seconds is not None:
                        pipeline.set(key, encode_value(value), ex=ttl_seconds)
                    else:
                        pipeline.set(key, encode_value(value))
                elif op == "get":
                    pipeline.get(key)
                else:
                    pipeline.delete(key)
            results = await pipeline.execute(raise_on_error=False)
        except Exception as exc:
            await self._store._absorb("Pipeline exec", exc, commands=len(self._commands))
            return empty

        decoded: List[Optional[Any]] = []
        for (op, _key, _value, _ttl), result in zip(self._commands, results):
            if isinstance(result, Exception):
                decoded.append(None)
            elif op == "get":
                decoded.append(decode_value(result))
            else:
                decoded.append(result)
        return decoded
