"""
Database provider registry.

Providers are registered by name with `register_provider` and resolved with
`get_provider`. Lookups are case-insensitive and instances are cached; a
provider holds no per-connection state.
"""
from functools import lru_cache

from dbtoolkit.exceptions import ConfigurationError
from dbtoolkit.providers.base import _PROVIDER_REGISTRY
from dbtoolkit.providers.base import NativeCommand as NativeCommand
from dbtoolkit.providers.base import Provider as Provider
from dbtoolkit.providers.base import register_provider as register_provider
from dbtoolkit.providers.postgres import PostgresProvider as PostgresProvider
from dbtoolkit.providers.sqlite import SQLiteProvider as SQLiteProvider
from dbtoolkit.providers.sqlserver import SQLServerProvider as SQLServerProvider


def _validate_provider(name: str) -> None:
    """Raise ConfigurationError if the provider is not registered."""
    if not name or name.lower() not in _PROVIDER_REGISTRY:
        available = get_available_providers()
        raise ConfigurationError(
            f"Database provider '{name}' is not supported. Available: {available}")


@lru_cache(maxsize=8)
def _get_provider(name: str) -> Provider:
    """Get cached provider instance for a name."""
    _validate_provider(name)
    return _PROVIDER_REGISTRY[name.lower()]()


def get_provider(name: str) -> Provider:
    """Get the provider registered under a name.

    Raises
        ConfigurationError: If no provider is registered under the name
    """
    return _get_provider(name)


def get_available_providers() -> list[str]:
    """Return list of registered provider names."""
    return sorted(_PROVIDER_REGISTRY.keys())


def is_supported_provider(name: str) -> bool:
    """Check if a provider is registered under a name."""
    return bool(name) and name.lower() in _PROVIDER_REGISTRY


def get_provider_class(name: str) -> type[Provider]:
    """Get the provider class for a name without instantiating."""
    _validate_provider(name)
    return _PROVIDER_REGISTRY[name.lower()]
