"""
Tests for the handler-facing JSON cache helpers.
"""

from unittest.mock import patch

import pytest

from service_gateway.app.caching import handler_cache
from service_gateway.app.caching.handler_cache import HandlerJsonCache, get_json_cache, hash_string


class TestHashString:
    """Stable short keys for handler cache entries."""

    def test_empty_string(self):
        # 5381 in base 36
        assert hash_string("") == "45h"

    def test_single_character(self):
        # 5381 * 33 + ord("a")
        assert hash_string("a") == "3t3a"

    def test_deterministic_and_distinct(self):
        assert hash_string("/api/earthquakes?minmag=4") == hash_string("/api/earthquakes?minmag=4")
        assert hash_string("/api/earthquakes?minmag=4") != hash_string("/api/earthquakes?minmag=5")

    def test_result_fits_unsigned_32_bits(self):
        digest = hash_string("x" * 10000)

        assert 0 <= int(digest, 36) <= 0xFFFFFFFF

    def test_non_ascii_uses_utf16_code_units(self):
        # U+1F6A2 is a surrogate pair: two code units feed the hash
        value = 5381
        for unit in (0xD83D, 0xDEA2):
            value = (value * 33 + unit) & 0xFFFFFFFF

        assert int(hash_string("\U0001F6A2"), 36) == value


class TestHandlerJsonCache:
    """JSON values with a TTL."""

    @pytest.mark.asyncio
    async def test_set_and_get(self, connected_store, fake_redis):
        cache = HandlerJsonCache(connected_store)

        assert await cache.set_cached_json("fred:GDP", {"observations": [1, 2]}, ttl_seconds=3600) is True

        assert 3590 < await fake_redis.ttl("fred:GDP") <= 3600
        assert await cache.get_cached_json("fred:GDP") == {"observations": [1, 2]}

    @pytest.mark.asyncio
    async def test_unavailable_store(self, unconfigured_store):
        cache = HandlerJsonCache(unconfigured_store)

        assert await cache.get_cached_json("fred:GDP") is None
        assert await cache.set_cached_json("fred:GDP", {"x": 1}, ttl_seconds=60) is False

    @pytest.mark.asyncio
    async def test_write_failure(self, unreachable_store):
        cache = HandlerJsonCache(unreachable_store)

        assert await cache.set_cached_json("k", [1], ttl_seconds=60) is False
        assert await cache.get_cached_json("k") is None

    def test_global_helper_is_shared(self):
        with patch.object(handler_cache, "_json_cache", None):
            first = get_json_cache()
            second = get_json_cache()

        assert first is second
