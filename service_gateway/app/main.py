"""
Gateway service for the World Monitor API.

Fronts the data handlers with the response cache and hosts the AIS relay.
"""

from typing import Any, Dict, Iterable, Optional, Union

from fastapi.responses import JSONResponse

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config

from .adapters.edge_adapter import CachingAdapter
from .caching.kv_store import KeyValueStore, StoreState
from .caching.policy import RouteCachePolicy, load_route_policy
from .caching.response_cache import ResponseCache
from .relay.multiplexer import Connector, RelayMultiplexer
from .relay.routes import register_relay_routes
from .routing.table import RouteSpec, RouteTable, load_route_table


class GatewayService(BaseService):
    """Gateway service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        routes: Optional[Union[RouteTable, Iterable[RouteSpec]]] = None,
        policy: Optional[RouteCachePolicy] = None,
        store: Optional[KeyValueStore] = None,
        relay_connector: Optional[Connector] = None,
    ):
        super().__init__("gateway", config=config)

        if routes is None:
            self.routes = load_route_table(self.config.route_table)
        elif isinstance(routes, RouteTable):
            self.routes = routes
        else:
            self.routes = RouteTable(routes)

        base_policy = policy or load_route_policy(
            self.config.cache_policy_file,
            default_ttl=self.config.cache_default_ttl,
        )
        self.policy = base_policy.with_no_cache(self.routes.uncached_paths)

        self.store = store or KeyValueStore.from_url(self.config.redis_url)
        self.response_cache = ResponseCache(self.store, self.policy, metrics=self.metrics)

        self.relay: Optional[RelayMultiplexer] = None
        if self.config.relay_api_key:
            self.relay = RelayMultiplexer(
                self.config.relay_api_key,
                url=self.config.relay_url,
                reconnect_delay=self.config.relay_reconnect_delay,
                log_every=self.config.relay_log_every,
                send_timeout=self.config.relay_send_timeout,
                connector=relay_connector,
                metrics=self.metrics,
            )

        @self.app.on_event("startup")
        async def _startup():
            self.logger.info("Starting World Monitor gateway", routes=len(self.routes))
            if self.store.connection.acquire() is None:
                self.logger.info("Store not configured or unavailable, response cache disabled")
            elif not await self.store.connection.verify():
                self.logger.info("Store unreachable, response cache disabled")

        @self.app.on_event("shutdown")
        async def _shutdown():
            if self.relay:
                await self.relay.stop()
            await self.store.connection.release()

        self._setup_gateway_routes()
        self._setup_handler_routes()
        self._setup_relay()
        self._setup_fallback_routes()

        self.app.state.gateway_service = self

    def _setup_gateway_routes(self):
        """Set up gateway-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "gateway",
                "status": "World Monitor API Server",
                "version": "1.0.0",
                "routes": len(self.routes),
                "cache_enabled": self.store.available,
                "relay_enabled": self.relay is not None,
            }

    def _setup_handler_routes(self):
        """Register every handler route behind the caching adapter."""
        for route in self.routes:
            adapter = CachingAdapter(
                route,
                self.response_cache,
                default_port=self.port,
                max_body_bytes=self.config.max_body_bytes,
                metrics=self.metrics,
            )
            self.app.add_api_route(
                route.path,
                adapter.handle,
                methods=list(route.methods),
                include_in_schema=False,
            )
            self.logger.info("Registered route", path=route.path, cached=self.policy.is_cacheable_route(route.path))

    def _setup_relay(self):
        """Mount the relay endpoints when an upstream credential is configured."""
        if self.relay is None:
            self.logger.info("Relay API key not set, WebSocket relay disabled")
            return
        register_relay_routes(self.app, self.relay)
        self.logger.info("WebSocket relay enabled", path="/ws")

    def _setup_fallback_routes(self):
        """Unknown API paths answer with JSON rather than the framework default."""

        @self.app.api_route(
            "/api/{path:path}",
            methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
            include_in_schema=False,
        )
        async def api_not_found(path: str):
            return JSONResponse(status_code=404, content={"error": "Not found"})

    async def _check_dependencies(self) -> Dict[str, Any]:
        """Report store and relay state."""
        connection = self.store.connection
        if not connection.url:
            redis_state = "disabled"
        elif connection.state is StoreState.READY:
            redis_state = "ok"
        else:
            redis_state = connection.state.value

        relay_state = self.relay.state.value if self.relay else "disabled"
        return {"redis": redis_state, "relay": relay_state}


def create_app(config: Optional[ServiceConfig] = None, **kwargs):
    """Create gateway service application."""
    service = GatewayService(config, **kwargs)
    return service.app


def main():
    """Run the gateway with settings from the environment."""
    service = GatewayService(get_config("gateway"))
    service.run()


if __name__ == "__main__":
    main()
