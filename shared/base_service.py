"""
FastAPI service skeleton for World Monitor gateway services.

Subclasses get CORS, request correlation and timing, ``/health``,
``/metrics`` and JSON error handlers, then register their own routes.
"""

import os
import time
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from shared.config import ServiceConfig, get_config
from shared.errors import MonitorException
from shared.logging import clear_context, configure_logging, get_logger, set_request_id
from shared.metrics import get_metrics_collector

REQUEST_ID_HEADER = "x-request-id"
SERVICE_VERSION = "1.0.0"


class BaseService:
    """Common plumbing shared by every service."""

    def __init__(self, service_name: str, port: Optional[int] = None, config: Optional[ServiceConfig] = None):
        self.service_name = service_name
        self.config = config or get_config(service_name, port)
        self.port = self.config.port
        self.started_at = time.time()

        configure_logging(service_name, self.config.log_level)
        self.logger = get_logger(service_name)
        self.metrics = get_metrics_collector(service_name)

        self.app = self._create_app()
        self._setup_middleware()
        self._setup_routes()
        self._register_exception_handlers()

    def _create_app(self) -> FastAPI:
        local = self.config.env == "local"
        return FastAPI(
            title=f"World Monitor {self.service_name.title()}",
            version=SERVICE_VERSION,
            docs_url="/docs" if local else None,
            redoc_url="/redoc" if local else None,
        )

    def _setup_middleware(self):
        """CORS plus per-request correlation, metrics and access logging."""
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=self.config.cors_origins,
            allow_credentials=False,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        @self.app.middleware("http")
        async def track_request(request: Request, call_next):
            request_id = set_request_id(request.headers.get(REQUEST_ID_HEADER))
            started = time.perf_counter()

            response = await call_next(request)

            duration = time.perf_counter() - started
            self._record_request(request, response.status_code, duration)
            response.headers.setdefault(REQUEST_ID_HEADER, request_id)
            clear_context()
            return response

    def _record_request(self, request: Request, status_code: int, duration: float) -> None:
        # Label by route template so path parameters do not explode cardinality
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)
        self.metrics.record_http_request(
            method=request.method,
            endpoint=endpoint,
            status_code=status_code,
            duration=duration,
        )
        self.logger.info(
            "HTTP request",
            method=request.method,
            path=request.url.path,
            status_code=status_code,
            duration_ms=round(duration * 1000, 2),
        )

    def _setup_routes(self):
        @self.app.get("/health")
        async def health_check():
            """Service health with dependency states."""
            try:
                dependencies = await self._check_dependencies()
            except Exception as exc:
                self.logger.error("Health check failed", error=str(exc))
                self.metrics.record_health_check("error")
                return JSONResponse(
                    status_code=503,
                    content={"service": self.service_name, "status": "error", "error": str(exc)},
                )

            self.metrics.record_health_check("ok")
            return {
                "service": self.service_name,
                "status": "ok",
                "uptime_seconds": round(time.time() - self.started_at, 3),
                "dependencies": dependencies,
                "version": SERVICE_VERSION,
                "commit": os.getenv("GIT_COMMIT", "unknown"),
            }

        @self.app.get("/metrics")
        async def metrics_endpoint():
            """Prometheus exposition for this service's registry."""
            return Response(content=generate_latest(self.metrics.registry), media_type=CONTENT_TYPE_LATEST)

    def _register_exception_handlers(self):
        @self.app.exception_handler(MonitorException)
        async def monitor_exception_handler(request: Request, exc: MonitorException):
            self.logger.error("Request failed", code=exc.code, message=exc.message, details=exc.details)
            self.metrics.record_error(exc.code)
            return JSONResponse(status_code=exc.status_code, content=exc.to_response().model_dump())

        @self.app.exception_handler(Exception)
        async def unhandled_exception_handler(request: Request, exc: Exception):
            self.logger.error("Unhandled exception", error=str(exc), exc_info=True)
            self.metrics.record_error("INTERNAL_ERROR")
            return JSONResponse(
                status_code=500,
                content={"code": "INTERNAL_ERROR", "message": "Internal server error", "details": {}},
            )

    async def _check_dependencies(self) -> Dict[str, Any]:
        """Dependency states reported by ``/health``; subclasses override."""
        return {}

    def run(self):
        import uvicorn

        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower(),
        )
