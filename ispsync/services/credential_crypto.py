"""Secrets at rest.

Router passwords, RADIUS shared secrets, RADIUS database URLs and customer
network passwords are kept in ``*_encrypted`` columns. With
``CREDENTIAL_ENCRYPTION_KEY`` set they are Fernet tokens behind an ``enc:``
marker; without it they are stored as ``plain:<value>`` and get encrypted the
next time they are written with a key configured.
"""

from __future__ import annotations

import os

from cryptography.fernet import Fernet, InvalidToken

from ispsync.logging import get_logger

logger = get_logger(__name__)

KEY_ENV = "CREDENTIAL_ENCRYPTION_KEY"
ENCRYPTED_MARKER = "enc:"
PLAINTEXT_MARKER = "plain:"

# Write-only payload field -> column it is stored in.
INTEGRATION_SECRET_FIELDS = {
    "password": "credentials_encrypted",
    "radius_secret": "radius_secret_encrypted",
    "radius_db_url": "radius_db_url_encrypted",
}

_missing_key_reported = False


def get_encryption_key() -> bytes | None:
    global _missing_key_reported
    raw = os.getenv(KEY_ENV, "").strip()
    if raw:
        return raw.encode("ascii")
    if not _missing_key_reported:
        logger.warning("CREDENTIAL_KEY_MISSING secrets will be stored with the plain: marker")
        _missing_key_reported = True
    return None


def generate_encryption_key() -> str:
    return Fernet.generate_key().decode("ascii")


def _cipher() -> Fernet | None:
    key = get_encryption_key()
    return Fernet(key) if key else None


def is_encrypted(value: str | None) -> bool:
    """True once a value carries one of the storage markers."""
    return bool(value) and value.startswith((ENCRYPTED_MARKER, PLAINTEXT_MARKER))


def encrypt_credential(value: str | None) -> str | None:
    if not value or is_encrypted(value):
        return value
    cipher = _cipher()
    if cipher is None:
        return PLAINTEXT_MARKER + value
    token = cipher.encrypt(value.encode("utf-8")).decode("ascii")
    return ENCRYPTED_MARKER + token


def decrypt_credential(value: str | None) -> str | None:
    """Return the usable secret for a stored value.

    Unmarked values predate encryption and are returned as they are. A token
    that cannot be opened with the configured key raises ``ValueError``.
    """
    if not value:
        return value
    if value.startswith(PLAINTEXT_MARKER):
        return value[len(PLAINTEXT_MARKER):]
    if not value.startswith(ENCRYPTED_MARKER):
        return value

    cipher = _cipher()
    if cipher is None:
        raise ValueError(f"{KEY_ENV} is not set; cannot read an encrypted secret")
    token = value[len(ENCRYPTED_MARKER):].encode("ascii")
    try:
        return cipher.decrypt(token).decode("utf-8")
    except InvalidToken as exc:
        raise ValueError("Stored secret does not match the configured key") from exc


def encrypt_integration_secrets(data: dict) -> dict:
    """Swap write-only secret fields for their encrypted columns.

    Sending a secret field as empty or null clears the stored value.
    """
    prepared = {k: v for k, v in data.items() if k not in INTEGRATION_SECRET_FIELDS}
    for field, column in INTEGRATION_SECRET_FIELDS.items():
        if field in data:
            prepared[column] = encrypt_credential(data[field]) or None
    return prepared
