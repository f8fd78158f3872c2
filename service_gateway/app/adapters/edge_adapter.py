"""
Caching adapter between inbound HTTP requests and data handlers.

Each route in the table gets one ``CachingAdapter``. Per request it:

1. replays a cached response for eligible reads (``x-cache: HIT``),
2. otherwise normalizes the request, runs the handler and materializes its
   full body,
3. writes qualifying responses to the response cache,
4. replies with ``x-cache: MISS``.

Handler failures never escape: they become a 500 JSON reply.
"""

import asyncio
import inspect
from typing import TYPE_CHECKING, Dict, Mapping, Optional

from fastapi import Request
from fastapi.responses import JSONResponse, Response
from starlette.concurrency import run_in_threadpool

from shared.errors import HandlerError, PayloadTooLargeError
from shared.logging import get_logger, set_route
from ..caching.response_cache import CacheEnvelope, ResponseCache, original_url
from ..routing.contract import HandlerRequest, HandlerResponse
from ..routing.table import RouteSpec

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


CACHE_STATUS_HEADER = "x-cache"
BODY_METHODS = ("POST", "PUT", "PATCH")
# Re-framed by the adapter on every reply
FRAMING_HEADERS = ("transfer-encoding", "content-length")


async def to_handler_request(request: Request, *, default_port: int, max_body_bytes: int) -> HandlerRequest:
    """Translate a framework request into the handler contract."""
    host = request.headers.get("host") or f"localhost:{default_port}"
    url = f"{request.url.scheme}://{host}{original_url(request)}"

    headers: Dict[str, str] = {}
    for name in request.headers.keys():
        values = request.headers.getlist(name)
        if values:
            headers[name.lower()] = ", ".join(values)

    body: Optional[bytes] = None
    if request.method.upper() in BODY_METHODS:
        declared = request.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > max_body_bytes:
            raise PayloadTooLargeError(max_body_bytes, {"content_length": int(declared)})
        body = await request.body()
        if len(body) > max_body_bytes:
            raise PayloadTooLargeError(max_body_bytes, {"content_length": len(body)})

    return HandlerRequest(method=request.method.upper(), url=url, headers=headers, body=body)


def strip_headers(headers: Mapping[str, str], names) -> Dict[str, str]:
    return {name: value for name, value in headers.items() if name.lower() not in names}


class CachingAdapter:
    """Wraps one route's handler with the response cache."""

    def __init__(
        self,
        route: RouteSpec,
        cache: ResponseCache,
        *,
        default_port: int = 3000,
        max_body_bytes: int = 5 * 1024 * 1024,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.route = route
        self.cache = cache
        self.default_port = default_port
        self.max_body_bytes = max_body_bytes
        self.metrics = metrics
        self.logger = get_logger("gateway.edge_adapter")

    async def handle(self, request: Request) -> Response:
        """Endpoint registered for the route."""
        set_route(self.route.path)
        eligible = self.cache.is_eligible(request.method, self.route.path)

        try:
            if eligible:
                envelope = await self.cache.lookup(request, self.route.path)
                if envelope is not None:
                    return self._emit(envelope.status, envelope.headers, envelope.body, "HIT")

            handler_request = await to_handler_request(
                request,
                default_port=self.default_port,
                max_body_bytes=self.max_body_bytes,
            )
            handler_response = await self._invoke(handler_request)

            body = handler_response.body_bytes()
            headers = strip_headers(handler_response.headers, ("transfer-encoding",))

            if eligible:
                await self.cache.store(
                    request,
                    self.route.path,
                    CacheEnvelope(status=handler_response.status, headers=headers, body=body),
                )

            return self._emit(handler_response.status, headers, body, "MISS")

        except PayloadTooLargeError as exc:
            self.logger.warning("Request body too large", path=request.url.path, limit=exc.limit)
            return JSONResponse(status_code=exc.status_code, content={"error": "Payload too large", "details": exc.message})
        except Exception as exc:
            self.logger.error("Edge handler error", path=request.url.path, error=str(exc))
            if self.metrics:
                self.metrics.increment_counter("handler_errors_total", route=self.route.path)
            return JSONResponse(
                status_code=500,
                content={"error": "Internal server error", "details": str(exc.__cause__ or exc)},
            )

    async def _invoke(self, handler_request: HandlerRequest) -> HandlerResponse:
        handler = self.route.handler
        try:
            if self.metrics:
                with self.metrics.time_operation("handler_duration_seconds", route=self.route.path):
                    result = await self._call(handler, handler_request)
            else:
                result = await self._call(handler, handler_request)
        except Exception as exc:
            raise HandlerError(self.route.path, str(exc)) from exc

        if not isinstance(result, HandlerResponse):
            raise HandlerError(self.route.path, f"returned {type(result).__name__}, expected HandlerResponse")
        return result

    @staticmethod
    async def _call(handler, handler_request: HandlerRequest):
        if asyncio.iscoroutinefunction(handler):
            return await handler(handler_request)
        result = await run_in_threadpool(handler, handler_request)
        if inspect.isawaitable(result):
            return await result
        return result

    @staticmethod
    def _emit(status: int, headers: Mapping[str, str], body: bytes, cache_status: str) -> Response:
        reply_headers = strip_headers(headers, FRAMING_HEADERS + (CACHE_STATUS_HEADER,))
        reply_headers[CACHE_STATUS_HEADER] = cache_status
        return Response(content=body, status_code=status, headers=reply_headers)
