from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from ispsync.models.network import NetworkIntegration, ProviderType, SyncAction
from ispsync.services.credential_crypto import decrypt_credential


@dataclass
class ProviderResult:
    success: bool
    message: str
    data: dict = field(default_factory=dict)
    # False marks a failure that will not heal by itself (bad config, unknown user).
    retryable: bool = True


class ProviderError(Exception):
    def __init__(self, message: str, retryable: bool = True) -> None:
        super().__init__(message)
        self.message = message
        self.retryable = retryable


class ProviderConfigError(ProviderError):
    def __init__(self, message: str) -> None:
        super().__init__(message, retryable=False)


@dataclass(frozen=True)
class SyncTarget:
    """What a provider needs to know about one customer."""

    customer_id: str
    customer_name: str
    network_username: str
    package_name: str | None = None
    speed_label: str | None = None
    network_password_encrypted: str | None = field(default=None, repr=False)

    def snapshot(self) -> dict:
        return {
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "network_username": self.network_username,
            "package_name": self.package_name,
            "speed_label": self.speed_label,
        }


def reveal(value: str | None, label: str) -> str | None:
    """Decrypt a stored secret at the point of use."""
    try:
        return decrypt_credential(value)
    except ValueError as exc:
        raise ProviderConfigError(f"Cannot decrypt {label}: {exc}") from exc


class NetworkProvider(ABC):
    provider_type: ProviderType

    @abstractmethod
    def enable(self, integration: NetworkIntegration, target: SyncTarget) -> ProviderResult:
        raise NotImplementedError

    @abstractmethod
    def disable(self, integration: NetworkIntegration, target: SyncTarget) -> ProviderResult:
        raise NotImplementedError

    @abstractmethod
    def update_speed(
        self, integration: NetworkIntegration, target: SyncTarget
    ) -> ProviderResult:
        raise NotImplementedError

    @abstractmethod
    def test_connection(self, integration: NetworkIntegration) -> ProviderResult:
        raise NotImplementedError

    def run(
        self,
        action: SyncAction,
        integration: NetworkIntegration,
        target: SyncTarget | None,
    ) -> ProviderResult:
        if action == SyncAction.test_connection:
            return self.test_connection(integration)
        if target is None:
            raise ProviderConfigError(f"{action.value} requires a customer")
        handlers = {
            SyncAction.enable: self.enable,
            SyncAction.disable: self.disable,
            SyncAction.update_speed: self.update_speed,
        }
        return handlers[action](integration, target)

    def describe(self, integration: NetworkIntegration) -> dict:
        """Connection facts safe to keep in a log snapshot."""
        return {
            "provider_type": self.provider_type.value,
            "host": integration.host,
            "port": integration.port,
        }
