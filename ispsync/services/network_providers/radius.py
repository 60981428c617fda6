"""RADIUS provider.

Policy lives in the tenant's FreeRADIUS SQL tables: a ``Auth-Type := Reject``
check row blocks a user and a ``Mikrotik-Rate-Limit`` reply row sets speed.
Live sessions are nudged with CoA/Disconnect packets; a failed CoA only means
the change applies at the next login, so it never fails the action.
"""

from __future__ import annotations

from pyrad.client import Client, Timeout
from pyrad.dictionary import Dictionary
from pyrad.packet import CoARequest, DisconnectRequest
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from ispsync.config import settings
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

RATE_LIMIT_ATTRIBUTE = "Mikrotik-Rate-Limit"

_engines: dict[str, Engine] = {}


def _radius_engine(integration: NetworkIntegration) -> Engine:
    db_url = reveal(integration.radius_db_url_encrypted, "RADIUS database URL")
    if not db_url:
        raise ProviderConfigError("RADIUS database URL is not configured")
    engine = _engines.get(db_url)
    if engine is None:
        connect_args = {}
        if not db_url.startswith("sqlite"):
            connect_args["connect_timeout"] = int(settings.network_sync_timeout_seconds)
        engine = create_engine(db_url, pool_pre_ping=True, connect_args=connect_args)
        _engines[db_url] = engine
    return engine


def clear_engines() -> None:
    for engine in _engines.values():
        engine.dispose()
    _engines.clear()


def _send_coa(
    integration: NetworkIntegration,
    code: int,
    username: str,
    attributes: dict | None = None,
) -> bool:
    if not integration.host:
        logger.warning("Missing NAS host for CoA on integration %s.", integration.id)
        return False
    if not settings.radius_dictionary_path:
        logger.warning("RADIUS_DICTIONARY_PATH not set; skipping CoA.")
        return False
    secret = reveal(integration.radius_secret_encrypted, "RADIUS secret")
    if not secret:
        logger.warning("Missing RADIUS secret for CoA on integration %s.", integration.id)
        return False
    try:
        dictionary = Dictionary(settings.radius_dictionary_path)
    except Exception as exc:
        logger.warning("Failed to load RADIUS dictionary: %s", exc)
        return False
    client = Client(
        server=integration.host,
        secret=secret.encode("utf-8"),
        dict=dictionary,
        coaport=settings.radius_coa_port,
    )
    client.retries = settings.radius_coa_retries
    client.timeout = settings.radius_coa_timeout_seconds
    req = client.CreateCoAPacket(code=code)
    req["User-Name"] = username
    for key, value in (attributes or {}).items():
        try:
            req[key] = value
        except KeyError:
            logger.debug("%s attribute not in dictionary, skipping.", key)
    try:
        client.SendPacket(req)
        return True
    except Timeout:
        logger.warning("CoA timed out for user=%s on %s.", username, integration.host)
        return False
    except Exception as exc:
        logger.warning("CoA failed for user=%s on %s: %s", username, integration.host, exc)
        return False


class RadiusProvider(NetworkProvider):
    provider_type = ProviderType.radius

    def enable(self, integration: NetworkIntegration, target: SyncTarget) -> ProviderResult:
        username = target.network_username
        password = reveal(target.network_password_encrypted, "customer network password")
        with _radius_engine(integration).begin() as conn:
            removed = conn.execute(
                text(
                    "DELETE FROM radcheck WHERE username = :u "
                    "AND attribute = 'Auth-Type' AND value = 'Reject'"
                ),
                {"u": username},
            ).rowcount
            if password:
                conn.execute(
                    text(
                        "DELETE FROM radcheck WHERE username = :u "
                        "AND attribute = 'Cleartext-Password'"
                    ),
                    {"u": username},
                )
                conn.execute(
                    text(
                        "INSERT INTO radcheck (username, attribute, op, value) "
                        "VALUES (:u, 'Cleartext-Password', ':=', :p)"
                    ),
                    {"u": username, "p": password},
                )
        return ProviderResult(
            success=True,
            message=f"RADIUS user {username} enabled",
            data={"reject_rows_removed": removed},
        )

    def disable(self, integration: NetworkIntegration, target: SyncTarget) -> ProviderResult:
        username = target.network_username
        with _radius_engine(integration).begin() as conn:
            conn.execute(
                text(
                    "DELETE FROM radcheck WHERE username = :u AND attribute = 'Auth-Type'"
                ),
                {"u": username},
            )
            conn.execute(
                text(
                    "INSERT INTO radcheck (username, attribute, op, value) "
                    "VALUES (:u, 'Auth-Type', ':=', 'Reject')"
                ),
                {"u": username},
            )
        disconnected = _send_coa(integration, DisconnectRequest, username)
        return ProviderResult(
            success=True,
            message=f"RADIUS user {username} rejected",
            data={"coa_disconnect": disconnected},
        )

    def update_speed(
        self, integration: NetworkIntegration, target: SyncTarget
    ) -> ProviderResult:
        if not target.speed_label:
            raise ProviderConfigError("Package has no speed label to apply")
        username = target.network_username
        with _radius_engine(integration).begin() as conn:
            conn.execute(
                text("DELETE FROM radreply WHERE username = :u AND attribute = :a"),
                {"u": username, "a": RATE_LIMIT_ATTRIBUTE},
            )
            conn.execute(
                text(
                    "INSERT INTO radreply (username, attribute, op, value) "
                    "VALUES (:u, :a, ':=', :v)"
                ),
                {"u": username, "a": RATE_LIMIT_ATTRIBUTE, "v": target.speed_label},
            )
        updated = _send_coa(
            integration, CoARequest, username, {RATE_LIMIT_ATTRIBUTE: target.speed_label}
        )
        return ProviderResult(
            success=True,
            message=f"RADIUS rate limit for {username} set to {target.speed_label}",
            data={"coa_update": updated},
        )

    def test_connection(self, integration: NetworkIntegration) -> ProviderResult:
        with _radius_engine(integration).connect() as conn:
            conn.execute(text("SELECT 1"))
        return ProviderResult(
            success=True,
            message="RADIUS database reachable",
            data={
                "auth_port": integration.radius_auth_port,
                "acct_port": integration.radius_acct_port,
            },
        )
