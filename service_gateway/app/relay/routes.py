"""
WebSocket subscriber endpoint and relay health route.
"""

from fastapi import FastAPI, WebSocket

from shared.logging import get_logger
from .multiplexer import RelayMultiplexer

RELAY_PATH = "/ws"
RELAY_HEALTH_PATH = "/ws/health"


def register_relay_routes(app: FastAPI, relay: RelayMultiplexer) -> None:
    """Mount ``/ws`` and ``/ws/health`` for the given relay."""
    logger = get_logger("gateway.relay")

    @app.websocket(RELAY_PATH)
    async def relay_endpoint(websocket: WebSocket):
        """Plain subscriber socket; inbound frames are ignored."""
        await websocket.accept()
        await relay.add_subscriber(websocket)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
        except Exception as exc:
            logger.error("Client error", error=str(exc))
        finally:
            relay.remove_subscriber(websocket)

    @app.get(RELAY_HEALTH_PATH)
    async def relay_health():
        """Subscriber count, message counter and upstream status."""
        return relay.stats()
