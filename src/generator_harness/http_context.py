"""Synthetic HTTP execution contexts driven over ASGI."""
from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass, field
from typing import Any, BinaryIO

from starlette.datastructures import MutableHeaders

from src.generator_harness.services import REQUEST_SERVICES_KEY, ServiceProvider

logger = logging.getLogger(__name__)


class TrackingStream(io.BytesIO):
    """In-memory stream that counts how often it was read."""

    def __init__(self, initial_bytes: bytes = b"") -> None:
        super().__init__(initial_bytes)
        self.read_count = 0

    def read(self, size: int | None = -1) -> bytes:
        self.read_count += 1
        return super().read(size)


@dataclass(frozen=True)
class RequestBodyDetectionFeature:
    """Declares whether the request may carry a body at all."""
    can_have_body: bool


class FeatureCollection:
    """Features keyed by their type."""

    def __init__(self) -> None:
        self._features: dict[type, Any] = {}

    def set(self, feature: Any, feature_type: type | None = None) -> None:
        self._features[feature_type or type(feature)] = feature

    def get(self, feature_type: type) -> Any | None:
        return self._features.get(feature_type)

    def __len__(self) -> int:
        return len(self._features)


@dataclass
class HttpRequest:
    method: str = ""
    path: str = ""
    query_string: str = ""
    scheme: str = "http"
    headers: MutableHeaders = field(default_factory=MutableHeaders)
    body: BinaryIO = field(default_factory=TrackingStream)


@dataclass
class HttpResponse:
    status_code: int = 200
    headers: MutableHeaders = field(default_factory=MutableHeaders)
    body: BinaryIO = field(default_factory=io.BytesIO)
    has_started: bool = False

    @property
    def content_type(self) -> str | None:
        return self.headers.get("content-type")


class HttpContext:
    """Request/response pair an endpoint is exercised against."""

    def __init__(self, request_services: ServiceProvider | None = None) -> None:
        self.request = HttpRequest()
        self.response = HttpResponse()
        self.features = FeatureCollection()
        self.request_services = request_services
        self.items: dict[str, Any] = {}
        self._body_sent = False
        self._response_complete = asyncio.Event()

    @property
    def can_have_body(self) -> bool:
        feature = self.features.get(RequestBodyDetectionFeature)
        return True if feature is None else feature.can_have_body

    def build_scope(self, default_method: str = "GET", default_path: str = "/") -> dict[str, Any]:
        """Build the ASGI scope for this request."""
        raw_headers = [(key.lower(), value) for key, value in self.request.headers.raw]
        path = self.request.path or default_path
        return {
            "type": "http",
            "asgi": {"version": "3.0", "spec_version": "2.3"},
            "http_version": "1.1",
            "method": (self.request.method or default_method).upper(),
            "scheme": self.request.scheme,
            "path": path,
            "raw_path": path.encode("latin-1"),
            "root_path": "",
            "query_string": self.request.query_string.encode("latin-1"),
            "headers": raw_headers,
            "client": ("127.0.0.1", 50000),
            "server": ("localhost", 80),
            "state": {REQUEST_SERVICES_KEY: self.request_services},
        }

    @property
    def response_complete(self) -> bool:
        return self._response_complete.is_set()

    async def receive(self) -> dict[str, Any]:
        """ASGI receive; the body stream is only read when a body is allowed.

        After the body has been delivered the client stays connected until the
        response is complete, then reports a disconnect.
        """
        if self._body_sent:
            await self._response_complete.wait()
            return {"type": "http.disconnect"}
        self._body_sent = True
        body = self.request.body.read() if self.can_have_body else b""
        return {"type": "http.request", "body": body, "more_body": False}

    async def send(self, message: dict[str, Any]) -> None:
        """ASGI send; response bytes are appended to the response body stream."""
        if message["type"] == "http.response.start":
            self.response.status_code = message["status"]
            headers = MutableHeaders(raw=list(message.get("headers", [])))
            for key, value in headers.items():
                self.response.headers.append(key, value)
            self.response.has_started = True
        elif message["type"] == "http.response.body":
            self.response.body.write(message.get("body", b""))
            if not message.get("more_body", False):
                self._response_complete.set()
        else:
            logger.debug("Ignoring ASGI message %s", message["type"])
