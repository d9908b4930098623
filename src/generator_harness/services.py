"""Minimal dependency-injection container for exercised endpoints."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from fastapi import Depends, Request

from src.shared.errors import ServiceNotRegisteredError

logger = logging.getLogger(__name__)

REQUEST_SERVICES_KEY = "request_services"


@dataclass(frozen=True)
class ServiceDescriptor:
    service_type: Any
    instance: Any = None
    factory: Callable[[ServiceProvider], Any] | None = None
    singleton: bool = True


class ServiceCollection:
    """Registrations collected before a provider is built."""

    def __init__(self) -> None:
        self._descriptors: dict[Any, ServiceDescriptor] = {}

    def __len__(self) -> int:
        return len(self._descriptors)

    def __contains__(self, service_type: Any) -> bool:
        return service_type in self._descriptors

    def add_singleton(
        self,
        service_type: Any,
        instance: Any = None,
        factory: Callable[[ServiceProvider], Any] | None = None,
    ) -> ServiceCollection:
        if instance is None and factory is None:
            raise ValueError("add_singleton requires an instance or a factory")
        self._descriptors[service_type] = ServiceDescriptor(service_type, instance, factory, True)
        return self

    def add_transient(
        self, service_type: Any, factory: Callable[[ServiceProvider], Any]
    ) -> ServiceCollection:
        self._descriptors[service_type] = ServiceDescriptor(service_type, None, factory, False)
        return self

    def build_service_provider(self) -> ServiceProvider:
        return ServiceProvider(dict(self._descriptors))


class ServiceProvider:
    """Resolves registered services; the provider always resolves itself."""

    def __init__(self, descriptors: dict[Any, ServiceDescriptor] | None = None) -> None:
        self._descriptors = descriptors or {}
        self._singletons: dict[Any, Any] = {}

    def is_service(self, service_type: Any) -> bool:
        return service_type is ServiceProvider or service_type in self._descriptors

    def get_service(self, service_type: Any) -> Any | None:
        if service_type is ServiceProvider:
            return self
        descriptor = self._descriptors.get(service_type)
        if descriptor is None:
            return None
        if descriptor.instance is not None:
            return descriptor.instance
        if not descriptor.singleton:
            return descriptor.factory(self)
        if service_type not in self._singletons:
            self._singletons[service_type] = descriptor.factory(self)
        return self._singletons[service_type]

    def get_required_service(self, service_type: Any) -> Any:
        service = self.get_service(service_type)
        if service is None:
            raise ServiceNotRegisteredError(service_type)
        return service


def from_services(service_type: Any) -> Any:
    """FastAPI dependency resolving *service_type* from the request services."""

    def _resolve_service(request: Request) -> Any:
        provider = getattr(request.state, REQUEST_SERVICES_KEY, None)
        if provider is None:
            raise ServiceNotRegisteredError(service_type)
        return provider.get_required_service(service_type)

    return Depends(_resolve_service)
