"""
JSON cache helpers for data-fetching handlers.

Handlers that want to cache their own upstream results (independently of the
gateway's response cache) share the same store connection through these
helpers.
"""

from typing import Any, Optional

from shared.config import get_config
from shared.logging import get_logger
from .kv_store import KeyValueStore

BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def hash_string(text: str) -> str:
    """djb2 over UTF-16 code units, as an unsigned 32-bit base-36 string."""
    value = 5381
    encoded = text.encode("utf-16-le")
    for index in range(0, len(encoded), 2):
        code_unit = encoded[index] | (encoded[index + 1] << 8)
        value = (value * 33 + code_unit) & 0xFFFFFFFF

    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


class HandlerJsonCache:
    """Read/write JSON values with a TTL; unavailable store means no caching."""

    def __init__(self, store: KeyValueStore):
        self.store = store
        self.logger = get_logger("gateway.handler_cache")

    async def get_cached_json(self, key: str) -> Optional[Any]:
        if not self.store.available:
            return None
        return await self.store.get(key)

    async def set_cached_json(self, key: str, value: Any, ttl_seconds: int) -> bool:
        if not self.store.available:
            return False
        written = await self.store.set(key, value, ttl_seconds=ttl_seconds)
        if not written:
            self.logger.warning("Handler cache write failed", key=key)
        return written


_json_cache: Optional[HandlerJsonCache] = None


def get_json_cache() -> HandlerJsonCache:
    """Process-wide helper bound to the configured store URL."""
    global _json_cache
    if _json_cache is None:
        config = get_config("gateway")
        _json_cache = HandlerJsonCache(KeyValueStore.from_url(config.redis_url))
    return _json_cache
