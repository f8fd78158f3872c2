"""
Static route table: (route path, handler, cache policy) triples.
"""

from dataclasses import dataclass
from importlib import import_module
from typing import Iterable, List, Optional, Sequence, Set

from shared.errors import RouteTableError
from shared.logging import get_logger
from .contract import Handler

ALL_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS")


@dataclass(frozen=True)
class RouteSpec:
    """One handler route.

    ``path`` uses the web framework's template syntax (``/api/eia/{path:path}``).
    ``cache=False`` excludes the route from the response cache in addition to
    the policy's own no-cache set.
    """

    path: str
    handler: Handler
    cache: bool = True
    methods: Sequence[str] = ALL_METHODS


class RouteTable:
    """Ordered, de-duplicated collection of handler routes."""

    def __init__(self, routes: Optional[Iterable[RouteSpec]] = None):
        self._routes: List[RouteSpec] = []
        self._paths: Set[str] = set()
        for route in routes or ():
            self.add(route)

    def add(self, route: RouteSpec) -> None:
        if route.path in self._paths:
            raise RouteTableError(f"Duplicate route {route.path}", {"path": route.path})
        if not callable(route.handler):
            raise RouteTableError(f"Handler for {route.path} is not callable", {"path": route.path})
        self._routes.append(route)
        self._paths.add(route.path)

    def __iter__(self):
        return iter(self._routes)

    def __len__(self) -> int:
        return len(self._routes)

    @property
    def uncached_paths(self) -> List[str]:
        return [route.path for route in self._routes if not route.cache]


def load_route_table(reference: Optional[str]) -> RouteTable:
    """Import a route table from ``"package.module:attribute"``.

    The attribute may be a ``RouteTable``, an iterable of ``RouteSpec`` or a
    zero-argument callable returning either. ``None`` yields an empty table.
    """
    logger = get_logger("gateway.routing")
    if not reference:
        return RouteTable()

    module_name, _, attribute = reference.partition(":")
    if not module_name or not attribute:
        raise RouteTableError("Route table reference must look like 'module:attribute'", {"reference": reference})

    try:
        target = getattr(import_module(module_name), attribute)
    except (ImportError, AttributeError) as exc:
        raise RouteTableError(f"Cannot load route table {reference}: {exc}", {"reference": reference}) from exc

    if callable(target) and not isinstance(target, RouteTable):
        target = target()

    table = target if isinstance(target, RouteTable) else RouteTable(target)
    logger.info("Loaded route table", reference=reference, routes=len(table))
    return table
