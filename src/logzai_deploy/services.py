"""Static catalog of the services that make up a LogzAI stack."""

from __future__ import annotations

from dataclasses import dataclass

from logzai_deploy.errors import UnknownServiceError

ALL_SERVICES = "all"


@dataclass(frozen=True)
class ServiceDescriptor:
    """Identity of one managed service."""

    name: str
    image: str
    container_name: str
    compose_service: str
    description: str = ""


# Services built and published by LogzAI; these can be updated from the registry.
SERVICES: dict[str, ServiceDescriptor] = {
    "frontend": ServiceDescriptor(
        name="frontend",
        image="ghalex/logzai-frontend:latest",
        container_name="logzai-frontend",
        compose_service="logzai-frontend",
        description="LogzAI Frontend",
    ),
    "api": ServiceDescriptor(
        name="api",
        image="ghalex/logzai-api:latest",
        container_name="logzai-api",
        compose_service="logzai-api",
        description="LogzAI API",
    ),
    "ingestor": ServiceDescriptor(
        name="ingestor",
        image="ghalex/logzai-ingestor:latest",
        container_name="logzai-ingestor",
        compose_service="logzai-ingestor",
        description="LogzAI Ingestor",
    ),
}

# Third-party services; pulled at install time and restartable, never updated alone.
INFRA_SERVICES: dict[str, ServiceDescriptor] = {
    "redis": ServiceDescriptor(
        name="redis",
        image="redis:8.2.3-alpine",
        container_name="logzai-redis",
        compose_service="logzai-redis",
        description="Cache and broker",
    ),
    "collector": ServiceDescriptor(
        name="collector",
        image="otel/opentelemetry-collector-contrib:latest",
        container_name="logzai-collector",
        compose_service="logzai-collector",
        description="OpenTelemetry collector",
    ),
    "gateway": ServiceDescriptor(
        name="gateway",
        image="nginx:alpine",
        container_name="logzai-gateway",
        compose_service="logzai-gateway",
        description="Reverse gateway",
    ),
}


def get_descriptor(name: str, *, include_infra: bool = False) -> ServiceDescriptor:
    """Look up a descriptor by logical name.

    Raises:
        UnknownServiceError: if ``name`` is not in the catalog.
    """
    catalog = {**SERVICES, **INFRA_SERVICES} if include_infra else SERVICES
    try:
        return catalog[name.strip().lower()]
    except KeyError:
        raise UnknownServiceError(name, sorted(catalog)) from None


def resolve_selection(selection: str) -> list[ServiceDescriptor]:
    """Turn an operator selection (a logical name or ``all``) into descriptors."""
    if selection.strip().lower() == ALL_SERVICES:
        return list(SERVICES.values())
    return [get_descriptor(selection)]


def stack_images() -> list[str]:
    """Every image the stack needs, LogzAI images first."""
    return [d.image for d in SERVICES.values()] + [d.image for d in INFRA_SERVICES.values()]
