"""Endpoint registrar handed to the generated entry point.

``EndpointRouteBuilder`` accumulates endpoint data sources. Route mappings go
to a ``RouteEndpointDataSource`` backed by a FastAPI ``APIRouter``; its
endpoints are only built when ``endpoints`` is read.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Iterable

from fastapi import APIRouter, FastAPI
from fastapi.routing import APIRoute

from src.generator_harness.http_context import HttpContext
from src.generator_harness.services import ServiceProvider

logger = logging.getLogger(__name__)

RequestDelegate = Callable[[HttpContext], Awaitable[None]]


class ApplicationBuilder:
    """Holds the application services and shared properties."""

    def __init__(self, application_services: ServiceProvider) -> None:
        self.application_services = application_services
        self.properties: dict[str, Any] = {}

    def new(self) -> ApplicationBuilder:
        builder = ApplicationBuilder(self.application_services)
        builder.properties = dict(self.properties)
        return builder


class Endpoint:
    """A single invocable route."""

    def __init__(self, route: APIRoute, application: FastAPI) -> None:
        self.route = route
        self._application = application

    @property
    def route_pattern(self) -> str:
        return self.route.path

    @property
    def http_methods(self) -> list[str]:
        return sorted(self.route.methods or [])

    @property
    def display_name(self) -> str:
        return f"HTTP: {', '.join(self.http_methods)} {self.route_pattern}"

    @property
    def metadata(self) -> dict[str, Any]:
        return {
            "name": self.route.name,
            "tags": list(self.route.tags),
            "status_code": self.route.status_code,
            "response_class": self.route.response_class,
        }

    @property
    def request_delegate(self) -> RequestDelegate:
        return self.invoke

    async def invoke(self, context: HttpContext) -> None:
        """Run the endpoint against *context* until the response completes."""
        default_method = self.http_methods[0] if self.http_methods else "GET"
        scope = context.build_scope(default_method=default_method, default_path=self.route_pattern)
        logger.debug("Invoking %s with path %s", self.display_name, scope["path"])
        await self._application(scope, context.receive, context.send)

    def __repr__(self) -> str:
        return f"<Endpoint {self.display_name}>"


class EndpointDataSource(ABC):
    """Lazily produces a set of endpoints."""

    @property
    @abstractmethod
    def endpoints(self) -> list[Endpoint]:
        ...


class RouteEndpointDataSource(EndpointDataSource):
    """Data source for routes mapped through ``EndpointRouteBuilder``."""

    def __init__(self, route_builder: EndpointRouteBuilder) -> None:
        self.router = APIRouter()
        self._route_builder = route_builder
        self._endpoints: list[Endpoint] | None = None

    def add_route(self, pattern: str, handler: Callable[..., Any], methods: Iterable[str], **kwargs: Any) -> APIRoute:
        self.router.add_api_route(pattern, handler, methods=list(methods), **kwargs)
        self._endpoints = None
        return self.router.routes[-1]

    @property
    def endpoints(self) -> list[Endpoint]:
        if self._endpoints is None:
            self._endpoints = [self._build_endpoint(route) for route in self.router.routes]
            logger.debug("Materialised %d endpoint(s)", len(self._endpoints))
        return list(self._endpoints)

    def _build_endpoint(self, route: APIRoute) -> Endpoint:
        application = FastAPI(
            routes=[route],
            exception_handlers=dict(self._route_builder.exception_handlers),
            openapi_url=None,
            docs_url=None,
            redoc_url=None,
        )
        application.state.application_builder = self._route_builder.create_application_builder()
        return Endpoint(route, application)


class EndpointRouteBuilder:
    """Registrar accumulating endpoint data sources."""

    def __init__(self, application_builder: ApplicationBuilder) -> None:
        if application_builder is None:
            raise ValueError("application_builder is required")
        self._application_builder = application_builder
        self.data_sources: list[EndpointDataSource] = []
        self.exception_handlers: dict[Any, Callable[..., Any]] = {}

    @property
    def service_provider(self) -> ServiceProvider:
        return self._application_builder.application_services

    def create_application_builder(self) -> ApplicationBuilder:
        return self._application_builder.new()

    def _route_data_source(self) -> RouteEndpointDataSource:
        for data_source in self.data_sources:
            if isinstance(data_source, RouteEndpointDataSource):
                return data_source
        data_source = RouteEndpointDataSource(self)
        self.data_sources.append(data_source)
        return data_source

    def map_methods(self, pattern: str, methods: Iterable[str], handler: Callable[..., Any], **kwargs: Any) -> APIRoute:
        return self._route_data_source().add_route(pattern, handler, methods, **kwargs)

    def map_get(self, pattern: str, handler: Callable[..., Any], **kwargs: Any) -> APIRoute:
        return self.map_methods(pattern, ["GET"], handler, **kwargs)

    def map_post(self, pattern: str, handler: Callable[..., Any], **kwargs: Any) -> APIRoute:
        return self.map_methods(pattern, ["POST"], handler, **kwargs)

    def map_put(self, pattern: str, handler: Callable[..., Any], **kwargs: Any) -> APIRoute:
        return self.map_methods(pattern, ["PUT"], handler, **kwargs)

    def map_patch(self, pattern: str, handler: Callable[..., Any], **kwargs: Any) -> APIRoute:
        return self.map_methods(pattern, ["PATCH"], handler, **kwargs)

    def map_delete(self, pattern: str, handler: Callable[..., Any], **kwargs: Any) -> APIRoute:
        return self.map_methods(pattern, ["DELETE"], handler, **kwargs)
