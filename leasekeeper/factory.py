"""Provider and store factories.

:func:`universal_factory` is the single entry point for creating provider
clients: it validates the raw config for ``cloud_provider`` and dispatches
to that provider's service registry.  :func:`store_factory` does the same
for state stores.
"""

from __future__ import annotations

from typing import Any

from leasekeeper.aws.factory import SERVICE_REGISTRY as AWS_SERVICES
from leasekeeper.base import (
    ComputeBlueprint,
    StoreBlueprint,
    existing_cloud_providers,
    existing_stores,
)
from leasekeeper.base.config import validate_config
from leasekeeper.storage import FileStore, MemoryStore


# Nested factory registry: cloud_provider -> service registry
_FACTORY_REGISTRY: dict[str, dict[str, type]] = {
    "aws": AWS_SERVICES,
}

_STORE_REGISTRY: dict[str, type[StoreBlueprint]] = {
    "file": FileStore,
    "memory": MemoryStore,
}


def universal_factory(
    cloud_provider: existing_cloud_providers,
    config: dict,
    service_name: str = "compute",
    **kwargs: Any,
) -> ComputeBlueprint:
    """
    Create a provider service from a raw configuration dict.
    Args:
        cloud_provider: The cloud provider (e.g., 'aws').
        config: Configuration dictionary, validated against the provider's config model.
        service_name: The service to build; only 'compute' exists today.
        **kwargs: Extra keyword arguments for the service constructor (e.g. ``username``).
    Returns:
        An instance of the requested service class.
    Raises:
        ValueError: If the cloud provider or service is not supported.
        pydantic.ValidationError: If the config is invalid.
    """
    if cloud_provider not in _FACTORY_REGISTRY:
        raise ValueError(f"Unsupported cloud provider: {cloud_provider}")

    provider_services = _FACTORY_REGISTRY[cloud_provider]

    if service_name not in provider_services:
        raise ValueError(
            f"Unsupported service '{service_name}' for provider '{cloud_provider}'"
        )

    service_class = provider_services[service_name]
    config_obj = validate_config(cloud_provider, config)
    return service_class(config_obj, **kwargs)


def store_factory(kind: existing_stores, **kwargs: Any) -> StoreBlueprint:
    """Create a state store (``file`` takes an optional ``path``).

    Raises:
        ValueError: If the store kind is not supported.
    """
    if kind not in _STORE_REGISTRY:
        raise ValueError(f"Unsupported store: {kind}")
    return _STORE_REGISTRY[kind](**kwargs)
