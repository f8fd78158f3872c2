"""
Route cache policy: which routes are cached and for how long.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Union
import json

from shared.logging import get_logger


CACHEABLE_METHOD = "GET"
DEFAULT_TTL = 120

# Seconds per endpoint
DEFAULT_ROUTE_TTLS: Dict[str, int] = {
    "/api/earthquakes": 60,
    "/api/opensky": 60,
    "/api/faa-status": 120,
    "/api/ais-snapshot": 120,
    "/api/hackernews": 300,
    "/api/gdelt-doc": 300,
    "/api/gdelt-geo": 300,
    "/api/finnhub": 300,
    "/api/yahoo-finance": 300,
    "/api/stock-index": 300,
    "/api/coingecko": 300,
    "/api/polymarket": 300,
    "/api/stablecoin-markets": 300,
    "/api/cloudflare-outages": 300,
    "/api/rss-proxy": 300,
    "/api/theater-posture": 300,
    "/api/firms-fires": 600,
    "/api/risk-scores": 600,
    "/api/macro-signals": 600,
    "/api/nga-warnings": 600,
    "/api/etf-flows": 600,
    "/api/github-trending": 600,
    "/api/acled": 900,
    "/api/acled-conflict": 900,
    "/api/ucdp": 900,
    "/api/hapi": 900,
    "/api/temporal-baseline": 900,
    "/api/arxiv": 1800,
    "/api/tech-events": 1800,
    "/api/fwdstart": 1800,
    "/api/fred-data": 3600,
    "/api/worldbank": 3600,
}

# POST-based, user-specific or utility routes
DEFAULT_NO_CACHE: FrozenSet[str] = frozenset({
    "/api/debug-env",
    "/api/cache-telemetry",
    "/api/service-status",
    "/api/classify-event",
    "/api/groq-summarize",
    "/api/openrouter-summarize",
    "/api/country-intel",
    "/api/og-story",
    "/api/story",
})


@dataclass(frozen=True)
class RouteCachePolicy:
    """Static route-prefix → TTL table with a default and a no-cache set."""

    ttls: Mapping[str, int] = field(default_factory=lambda: dict(DEFAULT_ROUTE_TTLS))
    default_ttl: int = DEFAULT_TTL
    no_cache: FrozenSet[str] = DEFAULT_NO_CACHE

    def resolve_ttl(self, path: str) -> int:
        """Exact match, else the longest matching prefix, else the default."""
        exact = self.ttls.get(path)
        if exact is not None:
            return exact

        best_prefix: Optional[str] = None
        for prefix in self.ttls:
            if path.startswith(prefix) and (best_prefix is None or len(prefix) > len(best_prefix)):
                best_prefix = prefix

        if best_prefix is not None:
            return self.ttls[best_prefix]
        return self.default_ttl

    def is_cacheable_route(self, route_path: str) -> bool:
        return route_path not in self.no_cache

    def is_eligible(self, method: str, route_path: str) -> bool:
        """Read requests on routes outside the no-cache set."""
        return method.upper() == CACHEABLE_METHOD and self.is_cacheable_route(route_path)

    def with_no_cache(self, routes: Iterable[str]) -> "RouteCachePolicy":
        """Return a copy with extra routes excluded from caching."""
        extra = frozenset(routes)
        if not extra:
            return self
        return RouteCachePolicy(ttls=self.ttls, default_ttl=self.default_ttl, no_cache=self.no_cache | extra)


def load_route_policy(
    config_path: Optional[Union[str, Path]] = None,
    *,
    default_ttl: int = DEFAULT_TTL,
) -> RouteCachePolicy:
    """
    Build the route cache policy, optionally from a JSON file.

    The file may define ``ttls`` (prefix → seconds), ``default_ttl`` and
    ``no_cache`` (list of exact route paths). A missing, unreadable or
    malformed file falls back to the built-in table; TTLs must be positive
    whole seconds.
    """
    if not config_path:
        return RouteCachePolicy(default_ttl=default_ttl)

    payload = _read_policy_file(Path(config_path))
    if payload is None:
        return RouteCachePolicy(default_ttl=default_ttl)

    try:
        return _parse_policy(payload, default_ttl)
    except (AttributeError, TypeError, ValueError) as exc:
        get_logger("gateway.cache_policy").warning(
            "Cache policy file malformed, using built-in table", path=str(config_path), error=str(exc)
        )
        return RouteCachePolicy(default_ttl=default_ttl)


def _parse_policy(payload: Dict[str, Any], default_ttl: int) -> RouteCachePolicy:
    ttls = {str(prefix): _positive_ttl(ttl) for prefix, ttl in payload.get("ttls", DEFAULT_ROUTE_TTLS).items()}
    no_cache = payload.get("no_cache", DEFAULT_NO_CACHE)
    if isinstance(no_cache, str):
        raise TypeError("no_cache must be a list of route paths")
    return RouteCachePolicy(
        ttls=ttls,
        default_ttl=_positive_ttl(payload.get("default_ttl", default_ttl)),
        no_cache=frozenset(str(route) for route in no_cache),
    )


def _positive_ttl(value: Any) -> int:
    if isinstance(value, bool):
        raise TypeError(f"TTL must be a number, got {value!r}")
    ttl = int(value)
    if ttl <= 0:
        raise ValueError(f"TTL must be positive, got {value!r}")
    return ttl


def _read_policy_file(path: Path) -> Optional[Dict[str, Any]]:
    logger = get_logger("gateway.cache_policy")
    if not path.exists():
        logger.warning("Cache policy file not found, using built-in table", path=str(path))
        return None

    try:
        with path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except (OSError, ValueError) as exc:
        logger.warning("Cache policy file unreadable, using built-in table", path=str(path), error=str(exc))
        return None

    if not isinstance(payload, dict):
        logger.warning("Cache policy file must hold a JSON object", path=str(path))
        return None
    return payload
