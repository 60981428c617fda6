"""MikroTik RouterOS provider.

Customers are PPP secrets named after ``network_username``. Suspension
disables the secret, drops the live session and parks the last known
address in a firewall address-list so redirect/block rules can match it.
"""

from __future__ import annotations

import re

import routeros_api

from ispsync.logging import get_logger
from ispsync.models.network import NetworkIntegration, ProviderType
from ispsync.services.network_providers.base import (
    NetworkProvider,
    ProviderConfigError,
    ProviderResult,
    SyncTarget,
    reveal,
)

logger = get_logger(__name__)

DEFAULT_PROFILE = "default"
DEFAULT_ADDRESS_LIST = "blocked"

# Characters that could break RouterOS quoting or inject commands
_ROUTEROS_UNSAFE_RE = re.compile(r'[";\\{}\n\r]')


def _sanitize_routeros_value(value: str) -> str:
    return _ROUTEROS_UNSAFE_RE.sub("", value)


def _connect(integration: NetworkIntegration) -> routeros_api.RouterOsApiPool:
    if not integration.host:
        raise ProviderConfigError("RouterOS host is required")
    use_ssl = bool(integration.mikrotik_use_ssl)
    return routeros_api.RouterOsApiPool(
        host=integration.host,
        username=integration.username or "admin",
        password=reveal(integration.credentials_encrypted, "router password") or "",
        port=int(integration.port or (8729 if use_ssl else 8728)),
        use_ssl=use_ssl,
        ssl_verify=False,
        ssl_verify_hostname=False,
        plaintext_login=True,
    )


class MikrotikProvider(NetworkProvider):
    provider_type = ProviderType.mikrotik

    def _with_api(self, integration: NetworkIntegration, fn):
        pool = _connect(integration)
        try:
            return fn(pool.get_api())
        finally:
            pool.disconnect()

    @staticmethod
    def _find_secret(api, username: str) -> dict | None:
        secrets = api.get_resource("/ppp/secret").get(name=username)
        return secrets[0] if secrets else None

    @staticmethod
    def _missing_secret(username: str) -> ProviderResult:
        return ProviderResult(
            success=False,
            message=f"PPP secret '{username}' not found on router",
            retryable=False,
        )

    def enable(self, integration: NetworkIntegration, target: SyncTarget) -> ProviderResult:
        username = _sanitize_routeros_value(target.network_username)
        profile = _sanitize_routeros_value(integration.mikrotik_ppp_profile or DEFAULT_PROFILE)
        address_list = _sanitize_routeros_value(
            integration.mikrotik_address_list or DEFAULT_ADDRESS_LIST
        )

        def _enable(api):
            secret = self._find_secret(api, username)
            if not secret:
                return self._missing_secret(username)
            api.get_resource("/ppp/secret").set(
                id=secret["id"], disabled="no", profile=profile
            )
            entries = api.get_resource("/ip/firewall/address-list")
            unblocked = 0
            for entry in entries.get(list=address_list, comment=username):
                entries.remove(id=entry["id"])
                unblocked += 1
            return ProviderResult(
                success=True,
                message=f"PPP secret {username} enabled",
                data={"profile": profile, "address_list_removed": unblocked},
            )

        return self._with_api(integration, _enable)

    def disable(self, integration: NetworkIntegration, target: SyncTarget) -> ProviderResult:
        username = _sanitize_routeros_value(target.network_username)
        address_list = _sanitize_routeros_value(
            integration.mikrotik_address_list or DEFAULT_ADDRESS_LIST
        )

        def _disable(api):
            secret = self._find_secret(api, username)
            if not secret:
                return self._missing_secret(username)
            api.get_resource("/ppp/secret").set(id=secret["id"], disabled="yes")
            active = api.get_resource("/ppp/active")
            sessions = active.get(name=username)
            blocked_addresses = []
            for session in sessions:
                address = session.get("address")
                active.remove(id=session["id"])
                if address:
                    api.get_resource("/ip/firewall/address-list").add(
                        list=address_list,
                        address=_sanitize_routeros_value(address),
                        comment=username,
                    )
                    blocked_addresses.append(address)
            return ProviderResult(
                success=True,
                message=f"PPP secret {username} disabled",
                data={
                    "sessions_removed": len(sessions),
                    "address_list": address_list,
                    "blocked_addresses": blocked_addresses,
                },
            )

        return self._with_api(integration, _disable)

    def update_speed(
        self, integration: NetworkIntegration, target: SyncTarget
    ) -> ProviderResult:
        username = _sanitize_routeros_value(target.network_username)
        profile_name = target.speed_label or integration.mikrotik_ppp_profile
        if not profile_name:
            raise ProviderConfigError("No PPP profile to apply: package has no speed label")
        profile = _sanitize_routeros_value(profile_name)

        def _update(api):
            secret = self._find_secret(api, username)
            if not secret:
                return self._missing_secret(username)
            api.get_resource("/ppp/secret").set(id=secret["id"], profile=profile)
            return ProviderResult(
                success=True,
                message=f"PPP secret {username} moved to profile {profile}",
                data={"profile": profile},
            )

        return self._with_api(integration, _update)

    def test_connection(self, integration: NetworkIntegration) -> ProviderResult:
        def _identity(api):
            rows = api.get_resource("/system/identity").get()
            identity = rows[0].get("name") if rows else None
            return ProviderResult(
                success=True,
                message=f"Connected to {identity or integration.host}",
                data={"identity": identity, "port": integration.port},
            )

        return self._with_api(integration, _identity)
