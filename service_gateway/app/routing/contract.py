"""
Uniform request/response contract between the gateway and data handlers.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Union
from urllib.parse import parse_qs, urlsplit


@dataclass
class HandlerRequest:
    """Normalized inbound request handed to a handler."""

    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None

    @property
    def path(self) -> str:
        return urlsplit(self.url).path

    @property
    def query(self) -> Dict[str, str]:
        """First value of each query parameter."""
        return {name: values[0] for name, values in parse_qs(urlsplit(self.url).query).items()}

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name.lower(), default)

    def json(self) -> Any:
        if not self.body:
            return None
        return json.loads(self.body)

    def text(self) -> str:
        return (self.body or b"").decode("utf-8")


@dataclass
class HandlerResponse:
    """Complete response produced by a handler; bodies are never streamed."""

    status: int = 200
    headers: Dict[str, str] = field(default_factory=dict)
    body: Union[bytes, str] = b""

    @classmethod
    def json_response(cls, payload: Any, status: int = 200, headers: Optional[Dict[str, str]] = None) -> "HandlerResponse":
        merged = {"content-type": "application/json"}
        merged.update(headers or {})
        return cls(status=status, headers=merged, body=json.dumps(payload))

    @classmethod
    def text_response(cls, text: str, status: int = 200, headers: Optional[Dict[str, str]] = None) -> "HandlerResponse":
        merged = {"content-type": "text/plain; charset=utf-8"}
        merged.update(headers or {})
        return cls(status=status, headers=merged, body=text)

    def body_bytes(self) -> bytes:
        if isinstance(self.body, str):
            return self.body.encode("utf-8")
        return bytes(self.body or b"")


Handler = Callable[[HandlerRequest], Union[HandlerResponse, Awaitable[HandlerResponse]]]
