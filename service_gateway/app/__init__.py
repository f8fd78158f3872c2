"""
Gateway Service package for the World Monitor API.

The gateway fronts the data handlers, providing:
- Response caching: full HTTP responses replayed from the key/value store
- Route policy: per-route TTLs and an explicit no-cache set
- AIS relay: one upstream WebSocket fanned out to local subscribers

Structure:
- app.main: FastAPI app, routes, and lifecycle wiring.
- app.adapters: Caching adapter between requests and handlers.
- app.caching: Store client, route policy and response cache.
- app.routing: Handler contract and static route table.
- app.relay: Upstream relay multiplexer and its WebSocket routes.
"""
