"""
Name -> VectorProvider implementation registry.

The map is built at import time; there is no discovery by module scan.
"""

from typing import Any

import structlog

from src.config.settings import get_settings
from src.vectorstore.base import VectorProvider
from src.vectorstore.postgres_provider import PostgresProvider

logger = structlog.get_logger(__name__)

_PROVIDERS: dict[str, type[VectorProvider]] = {
    PostgresProvider.name: PostgresProvider,
}


def register_provider(provider_class: type[VectorProvider]) -> None:
    """Register a provider class under its ``name``."""
    if not provider_class.name:
        raise ValueError(f"{provider_class.__name__} has no provider name")
    _PROVIDERS[provider_class.name] = provider_class
    logger.debug("Registered vector provider", provider=provider_class.name)


def available_providers() -> list[str]:
    return sorted(_PROVIDERS)


def get_provider(name: str | None = None, **kwargs: Any) -> VectorProvider:
    """
    Instantiate a registered provider.

    Args:
        name: Provider name (defaults to settings.vdb_provider)
        **kwargs: Passed to the provider constructor

    Raises:
        ValueError: If no provider is registered under the name
    """
    name = (name or get_settings().vdb_provider).strip().lower()
    provider_class = _PROVIDERS.get(name)
    if provider_class is None:
        raise ValueError(
            f"Unsupported vector provider '{name}'. "
            f"Available: {', '.join(available_providers())}"
        )
    return provider_class(**kwargs)
