"""Generic HTTP provider for ISPs with their own provisioning API.

Contract: ``POST {api_base_url}/{action}`` with a JSON body describing the
customer and a bearer token. Any 2xx is success.
"""

from __future__ import annotations

import httpx

from ispsync.config import settings
from ispsync.logging import get_logger
from ispsync.models.network import NetworkIntegration, ProviderType, SyncAction
from ispsync.services.network_providers.base import (
    NetworkProvider,
    ProviderConfigError,
    ProviderError,
    ProviderResult,
    SyncTarget,
    reveal,
)

logger = get_logger(__name__)


def _base_url(integration: NetworkIntegration) -> str:
    base = integration.api_base_url
    if not base and integration.host:
        scheme = "https" if (integration.port or 443) == 443 else "http"
        port = f":{integration.port}" if integration.port else ""
        base = f"{scheme}://{integration.host}{port}"
    if not base:
        raise ProviderConfigError("Custom provider needs api_base_url or host")
    return base.rstrip("/")


def _response_body(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError:
        return {"text": response.text[:500]}
    return body if isinstance(body, dict) else {"data": body}


class CustomHttpProvider(NetworkProvider):
    provider_type = ProviderType.custom

    def _post(
        self,
        integration: NetworkIntegration,
        action: SyncAction,
        body: dict,
    ) -> ProviderResult:
        url = f"{_base_url(integration)}/{action.value}"
        headers = {"Content-Type": "application/json"}
        token = reveal(integration.credentials_encrypted, "API token")
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            with httpx.Client(timeout=settings.network_sync_timeout_seconds) as client:
                response = client.post(url, json=body, headers=headers)
        except (httpx.TimeoutException, httpx.RequestError) as exc:
            raise ProviderError(f"{action.value} request to provider failed: {exc}") from exc

        payload = _response_body(response)
        payload["status_code"] = response.status_code
        message = payload.get("message") or f"Provider answered HTTP {response.status_code}"
        if response.is_success:
            return ProviderResult(success=True, message=str(message), data=payload)
        return ProviderResult(
            success=False,
            message=str(message),
            data=payload,
            retryable=response.status_code >= 500 or response.status_code == 429,
        )

    def enable(self, integration: NetworkIntegration, target: SyncTarget) -> ProviderResult:
        return self._post(integration, SyncAction.enable, target.snapshot())

    def disable(self, integration: NetworkIntegration, target: SyncTarget) -> ProviderResult:
        return self._post(integration, SyncAction.disable, target.snapshot())

    def update_speed(
        self, integration: NetworkIntegration, target: SyncTarget
    ) -> ProviderResult:
        return self._post(integration, SyncAction.update_speed, target.snapshot())

    def test_connection(self, integration: NetworkIntegration) -> ProviderResult:
        return self._post(integration, SyncAction.test_connection, {})

    def describe(self, integration: NetworkIntegration) -> dict:
        described = super().describe(integration)
        described["api_base_url"] = integration.api_base_url
        return described
