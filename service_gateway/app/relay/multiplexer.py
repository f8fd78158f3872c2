"""
Relay multiplexer: one upstream real-time feed, many local subscribers.

At most one upstream connection is open or connecting at any time. Each
connect attempt is tagged with a generation number; completions from an
older generation are discarded, and a stale connection that finishes its
handshake late is closed instead of becoming active.

Fan-out is best effort: messages go to the subscribers connected at the
moment of delivery and are never queued or replayed. A subscriber that does
not accept a frame within the send timeout is dropped, so one stalled socket
delays the feed by at most one timeout.
"""

import asyncio
import enum
import json
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Set

import websockets
from starlette.websockets import WebSocketState

from shared.errors import RelayError
from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


DEFAULT_UPSTREAM_URL = "wss://stream.aisstream.io/v0/stream"
DEFAULT_BOUNDING_BOXES: List[List[List[float]]] = [[[-90, -180], [90, 180]]]
DEFAULT_MESSAGE_TYPES: List[str] = ["PositionReport"]
RECONNECT_DELAY_SECONDS = 5.0
LOG_EVERY_MESSAGES = 1000
SEND_TIMEOUT_SECONDS = 2.0

Connector = Callable[[str], Awaitable[Any]]


class RelayState(enum.Enum):
    """Upstream connection state."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


async def websocket_connector(url: str):
    """Open an upstream client connection with the websockets library."""
    return await websockets.connect(url)


def subscriber_ready(subscriber: Any) -> bool:
    """True when a local subscriber socket can accept frames."""
    client_state = getattr(subscriber, "client_state", WebSocketState.CONNECTED)
    application_state = getattr(subscriber, "application_state", WebSocketState.CONNECTED)
    return client_state == WebSocketState.CONNECTED and application_state == WebSocketState.CONNECTED


class RelayMultiplexer:
    """Owns the upstream connection and the subscriber set."""

    def __init__(
        self,
        api_key: str,
        *,
        url: str = DEFAULT_UPSTREAM_URL,
        bounding_boxes: Optional[List[List[List[float]]]] = None,
        message_types: Optional[List[str]] = None,
        reconnect_delay: float = RECONNECT_DELAY_SECONDS,
        log_every: int = LOG_EVERY_MESSAGES,
        send_timeout: float = SEND_TIMEOUT_SECONDS,
        connector: Optional[Connector] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.api_key = api_key
        self.url = url
        self.bounding_boxes = bounding_boxes or DEFAULT_BOUNDING_BOXES
        self.message_types = message_types or DEFAULT_MESSAGE_TYPES
        self.reconnect_delay = reconnect_delay
        self.log_every = max(1, log_every)
        self.send_timeout = send_timeout
        self.metrics = metrics
        self.logger = get_logger("gateway.relay")

        self._connector: Connector = connector or websocket_connector
        self.subscribers: Set[Any] = set()
        self.message_count = 0
        self.state = RelayState.DISCONNECTED

        self._generation = 0
        self._upstream: Optional[Any] = None
        self._connect_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def upstream(self) -> Optional[Any]:
        return self._upstream

    @property
    def connected(self) -> bool:
        return self.state is RelayState.CONNECTED

    def subscription_message(self) -> str:
        return json.dumps({
            "APIKey": self.api_key,
            "BoundingBoxes": self.bounding_boxes,
            "FilterMessageTypes": self.message_types,
        })

    def stats(self) -> Dict[str, Any]:
        return {
            "status": "ok",
            "clients": len(self.subscribers),
            "messages": self.message_count,
            "connected": self.connected,
        }

    # Subscribers

    async def add_subscriber(self, subscriber: Any) -> None:
        """Register a local subscriber and make sure the upstream is up."""
        self.subscribers.add(subscriber)
        self._set_gauge("relay_subscribers", len(self.subscribers))
        self.logger.info("Client connected", clients=len(self.subscribers))
        self.connect()

    def remove_subscriber(self, subscriber: Any) -> None:
        """Forget a subscriber; the upstream connection is left alone."""
        if subscriber in self.subscribers:
            self.subscribers.discard(subscriber)
            self._set_gauge("relay_subscribers", len(self.subscribers))
            self.logger.info("Client disconnected", clients=len(self.subscribers))

    # Upstream lifecycle

    def connect(self) -> bool:
        """Start a connect attempt unless one is open or in flight."""
        if self.state is not RelayState.DISCONNECTED:
            return False

        if self._reconnect_task is not None:
            # A subscriber arrived during the reconnect delay
            self._reconnect_task.cancel()
            self._reconnect_task = None

        self._generation += 1
        generation = self._generation
        self.state = RelayState.CONNECTING
        self.logger.info("Connecting to upstream", url=self.url, generation=generation)
        self._connect_task = asyncio.create_task(self._run(generation))
        return True

    async def stop(self) -> None:
        """Invalidate the current connection and cancel any pending reconnect."""
        self._generation += 1
        self.state = RelayState.DISCONNECTED
        self._set_gauge("relay_upstream_connected", 0)

        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None

        upstream, self._upstream = self._upstream, None
        if upstream is not None:
            await self._close_quietly(upstream)
        self.logger.info("Relay stopped")

    async def _run(self, generation: int) -> None:
        try:
            upstream = await self._open_upstream()
        except RelayError as exc:
            self.logger.error("Upstream error", error=exc.message, generation=generation)
            self._handle_disconnect(generation)
            return

        if generation != self._generation:
            # Superseded while the handshake was in flight
            self.logger.info("Discarding stale upstream connection", generation=generation)
            await self._close_quietly(upstream)
            return

        self._upstream = upstream
        self.state = RelayState.CONNECTED
        self._set_gauge("relay_upstream_connected", 1)
        self.logger.info("Connected to upstream", generation=generation)

        try:
            await upstream.send(self.subscription_message())
            async for raw in upstream:
                if generation != self._generation:
                    break
                await self.broadcast(raw)
        except Exception as exc:
            self.logger.error("Upstream error", error=str(exc), generation=generation)
        finally:
            self._handle_disconnect(generation)

    async def _open_upstream(self) -> Any:
        try:
            return await self._connector(self.url)
        except Exception as exc:
            raise RelayError(f"Cannot connect to {self.url}: {exc}", {"url": self.url}) from exc

    def _handle_disconnect(self, generation: int) -> None:
        if generation != self._generation:
            return

        self._upstream = None
        self.state = RelayState.DISCONNECTED
        self._set_gauge("relay_upstream_connected", 0)
        self.logger.info("Disconnected, reconnecting", delay_seconds=self.reconnect_delay)
        if self.metrics:
            self.metrics.increment_counter("relay_reconnects_total")
        self._reconnect_task = asyncio.create_task(self._reconnect_after_delay())

    async def _reconnect_after_delay(self) -> None:
        await asyncio.sleep(self.reconnect_delay)
        self._reconnect_task = None
        self.connect()

    # Fan-out

    async def broadcast(self, raw: Any) -> int:
        """Forward one upstream message to every ready subscriber."""
        message = raw.decode("utf-8", errors="replace") if isinstance(raw, (bytes, bytearray)) else str(raw)

        self.message_count += 1
        if self.metrics:
            self.metrics.increment_counter("relay_messages_total")
        if self.message_count % self.log_every == 0:
            self.logger.info("Relay progress", messages=self.message_count, clients=len(self.subscribers))

        targets = [subscriber for subscriber in list(self.subscribers) if subscriber_ready(subscriber)]
        if not targets:
            return 0

        results = await asyncio.gather(*(self._send(subscriber, message) for subscriber in targets))
        return sum(1 for delivered in results if delivered)

    async def _send(self, subscriber: Any, message: str) -> bool:
        try:
            await asyncio.wait_for(subscriber.send_text(message), self.send_timeout)
            return True
        except asyncio.TimeoutError:
            self.logger.warning("Dropping subscriber after send timeout", timeout_seconds=self.send_timeout)
            self.remove_subscriber(subscriber)
            return False
        except Exception as exc:
            self.logger.warning("Dropping subscriber after send failure", error=str(exc))
            self.remove_subscriber(subscriber)
            return False

    async def _close_quietly(self, upstream: Any) -> None:
        try:
            await upstream.close()
        except Exception as exc:
            self.logger.debug("Upstream close failed", error=str(exc))

    def _set_gauge(self, name: str, value: float) -> None:
        if self.metrics:
            self.metrics.set_gauge(name, value)
