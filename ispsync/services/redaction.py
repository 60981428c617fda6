"""JSON-safe, secret-free snapshots for sync logs."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

REDACTED = "***"

SENSITIVE_FIELDS = {
    "password",
    "secret",
    "token",
    "access_token",
    "api_key",
    "api_token",
    "private_key",
    "credentials",
    "credentials_encrypted",
    "radius_secret",
    "radius_secret_encrypted",
    "radius_db_url",
    "radius_db_url_encrypted",
    "network_password",
    "network_password_encrypted",
    "authorization",
}


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    if lowered in SENSITIVE_FIELDS:
        return True
    return lowered.endswith(("_password", "_secret", "_token"))


def normalize_value(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Decimal):
        return str(value)
    return value


def redact_secrets(payload):
    """Return a copy of ``payload`` with secret-looking keys masked."""
    if isinstance(payload, dict):
        return {
            str(key): REDACTED if _is_sensitive(str(key)) and val else redact_secrets(val)
            for key, val in payload.items()
        }
    if isinstance(payload, (list, tuple)):
        return [redact_secrets(item) for item in payload]
    return normalize_value(payload)
