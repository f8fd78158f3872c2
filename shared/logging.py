"""
Structured logging for the World Monitor gateway.

Every event is rendered as one JSON line carrying the logger name, level,
ISO timestamp and, inside a request, the request id and matched route.
"""

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any, Dict, List, Optional

import structlog

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
route_var: ContextVar[Optional[str]] = ContextVar("route", default=None)

_service_name: Optional[str] = None


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Configure structlog and the stdlib root logger for a service."""
    global _service_name
    _service_name = service_name

    structlog.configure(
        processors=_processors(),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )


def _processors() -> List[Any]:
    return [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_service_context,
        add_correlation_context,
        structlog.processors.JSONRenderer(),
    ]


def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Tag events with the owning service."""
    # Component loggers are named "<service>.<component>"
    logger_name = event_dict.get("logger", "")
    service = logger_name.split(".", 1)[0] if logger_name else _service_name
    if service:
        event_dict.setdefault("service", service)
    return event_dict


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Attach the current request id and route, when set."""
    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id

    route = route_var.get()
    if route:
        event_dict["route"] = route
    return event_dict


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind a request id to the current context, generating one if absent."""
    request_id = request_id or str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def set_route(route: Optional[str]) -> None:
    route_var.set(route)


def clear_context() -> None:
    request_id_var.set(None)
    route_var.set(None)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
