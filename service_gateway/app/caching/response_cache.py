"""
Response cache: stores and replays full HTTP responses.

Entries live under ``apicache:<path+query>`` as JSON envelopes::

    {"s": 200, "h": {"content-type": "application/json"}, "b": "<base64 body>"}

The path and query are taken verbatim from the request line, so
``/api/x?a=1&b=2`` and ``/api/x?b=2&a=1`` are separate entries.
"""

import base64
import binascii
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional

from starlette.requests import HTTPConnection

from shared.logging import get_logger
from .kv_store import KeyValueStore
from .policy import RouteCachePolicy

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


CACHE_KEY_PREFIX = "apicache:"


def original_url(request: HTTPConnection) -> str:
    """Path plus query string exactly as received."""
    raw_path = request.scope.get("raw_path")
    path = raw_path.decode("latin-1") if raw_path else request.scope.get("path", "/")
    query = request.scope.get("query_string", b"")
    if query:
        return f"{path}?{query.decode('latin-1')}"
    return path


@dataclass
class CacheEnvelope:
    """Serialized status/headers/body triple for one cached response."""

    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def cacheable(self) -> bool:
        return 200 <= self.status < 300 and len(self.body) > 0

    def to_wire(self) -> Dict[str, Any]:
        return {
            "s": self.status,
            "h": dict(self.headers),
            "b": base64.b64encode(self.body).decode("ascii"),
        }

    @classmethod
    def from_wire(cls, data: Any) -> "CacheEnvelope":
        """Rebuild an envelope; raises ``ValueError`` on malformed entries."""
        if not isinstance(data, Mapping):
            raise ValueError("cache entry is not an object")

        encoded = data.get("b")
        if not isinstance(encoded, str):
            raise ValueError("cache entry has no body")
        try:
            body = base64.b64decode(encoded, validate=True)
        except binascii.Error as exc:
            raise ValueError(f"cache entry body is not base64: {exc}") from exc

        headers = data.get("h") or {}
        if not isinstance(headers, Mapping):
            raise ValueError("cache entry headers are not an object")

        return cls(
            status=int(data.get("s") or 200),
            headers={str(name): str(value) for name, value in headers.items()},
            body=body,
        )


class ResponseCache:
    """Key derivation, eligibility and envelope (de)serialization."""

    def __init__(
        self,
        store: KeyValueStore,
        policy: RouteCachePolicy,
        *,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.kv_store = store
        self.policy = policy
        self.metrics = metrics
        self.logger = get_logger("gateway.response_cache")

    @staticmethod
    def make_key(url: str) -> str:
        return f"{CACHE_KEY_PREFIX}{url}"

    def is_eligible(self, method: str, route_path: str) -> bool:
        return self.policy.is_eligible(method, route_path)

    async def lookup(self, request: HTTPConnection, route_path: str) -> Optional[CacheEnvelope]:
        """Return the cached envelope, or ``None`` on miss or unreadable entry."""
        if not self.is_eligible(request.scope.get("method", ""), route_path):
            return None

        key = self.make_key(original_url(request))
        cached = await self.kv_store.get(key)
        if not cached:
            self._count("cache_misses_total", route=route_path)
            return None

        try:
            envelope = CacheEnvelope.from_wire(cached)
        except (TypeError, ValueError) as exc:
            self.logger.warning("Discarding unreadable cache entry", key=key, error=str(exc))
            self._count("cache_misses_total", route=route_path)
            return None

        self._count("cache_hits_total", route=route_path)
        return envelope

    async def store(self, request: HTTPConnection, route_path: str, envelope: CacheEnvelope) -> bool:
        """Write a qualifying response under the route's TTL."""
        if not self.is_eligible(request.scope.get("method", ""), route_path):
            return False
        if not envelope.cacheable:
            return False

        key = self.make_key(original_url(request))
        ttl = self.policy.resolve_ttl(request.url.path)
        written = await self.kv_store.set(key, envelope.to_wire(), ttl_seconds=ttl)
        self._count("cache_writes_total", route=route_path, result="ok" if written else "failed")
        if written:
            self.logger.debug("Cached response", key=key, ttl=ttl, status=envelope.status)
        return written

    def _count(self, metric_name: str, **labels) -> None:
        if self.metrics:
            self.metrics.increment_counter(metric_name, **labels)
