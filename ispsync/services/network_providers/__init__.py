"""Provider implementations, one per ``ProviderType``."""

from ispsync.models.network import ProviderType
from ispsync.services.network_providers.base import (
    NetworkProvider,
    ProviderConfigError,
    ProviderError,
    ProviderResult,
    SyncTarget,
)
from ispsync.services.network_providers.custom import CustomHttpProvider
from ispsync.services.network_providers.mikrotik import MikrotikProvider
from ispsync.services.network_providers.radius import RadiusProvider

_PROVIDERS: dict[ProviderType, NetworkProvider] = {}


def register_provider(provider: NetworkProvider) -> None:
    _PROVIDERS[provider.provider_type] = provider


def get_provider(provider_type: ProviderType) -> NetworkProvider:
    provider = _PROVIDERS.get(provider_type)
    if provider is None:
        raise ProviderConfigError(f"No provider registered for {provider_type.value}")
    return provider


def register_default_providers() -> None:
    register_provider(MikrotikProvider())
    register_provider(RadiusProvider())
    register_provider(CustomHttpProvider())


register_default_providers()

__all__ = [
    "NetworkProvider",
    "ProviderConfigError",
    "ProviderError",
    "ProviderResult",
    "SyncTarget",
    "get_provider",
    "register_default_providers",
    "register_provider",
]
