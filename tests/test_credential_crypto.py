"""Secrets at rest and log redaction."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import uuid4

import pytest
from cryptography.fernet import Fernet

from ispsync.services import credential_crypto
from ispsync.services.credential_crypto import (
    decrypt_credential,
    encrypt_credential,
    encrypt_integration_secrets,
    generate_encryption_key,
    is_encrypted,
)
from ispsync.services.redaction import REDACTED, normalize_value, redact_secrets


@pytest.fixture()
def use_key(monkeypatch):
    def _use(key):
        monkeypatch.setattr(credential_crypto, "get_encryption_key", lambda: key)
        return key

    return _use


# =============================================================================
# Credential storage
# =============================================================================


class TestCredentialCrypto:
    def test_generated_key_is_a_fernet_key(self):
        Fernet(generate_encryption_key().encode("ascii"))

    def test_key_read_from_environment(self, monkeypatch):
        key = generate_encryption_key()
        monkeypatch.setenv("CREDENTIAL_ENCRYPTION_KEY", key)
        assert credential_crypto.get_encryption_key() == key.encode("ascii")

    def test_encrypted_value_hides_secret(self, use_key):
        use_key(Fernet.generate_key())
        stored = encrypt_credential("router-pass")
        assert stored.startswith("enc:")
        assert "router-pass" not in stored
        assert decrypt_credential(stored) == "router-pass"

    def test_without_key_value_is_marked_plain(self, use_key):
        use_key(None)
        assert encrypt_credential("my-password") == "plain:my-password"

    @pytest.mark.parametrize(
        "stored, expected",
        [("plain:my-password", "my-password"), ("legacy-password", "legacy-password"), (None, None)],
    )
    def test_plain_and_unmarked_values(self, stored, expected):
        assert decrypt_credential(stored) == expected

    def test_encrypted_value_without_key(self, use_key):
        use_key(None)
        with pytest.raises(ValueError, match="CREDENTIAL_ENCRYPTION_KEY"):
            decrypt_credential("enc:some-encrypted-data")

    def test_rotated_key_cannot_read_old_value(self, use_key):
        use_key(Fernet.generate_key())
        stored = encrypt_credential("secret")
        use_key(Fernet.generate_key())
        with pytest.raises(ValueError, match="configured key"):
            decrypt_credential(stored)

    def test_marked_values_are_not_encrypted_twice(self, use_key):
        use_key(Fernet.generate_key())
        stored = encrypt_credential("secret")
        assert encrypt_credential(stored) == stored
        assert is_encrypted(stored)
        assert not is_encrypted("secret")

    def test_integration_secrets_move_to_columns(self, use_key):
        use_key(None)
        result = encrypt_integration_secrets(
            {"name": "core", "password": "pw", "radius_secret": "", "host": "10.0.0.1"}
        )
        assert "password" not in result
        assert result["credentials_encrypted"] == "plain:pw"
        assert result["radius_secret_encrypted"] is None
        assert "radius_db_url_encrypted" not in result
        assert result["host"] == "10.0.0.1"


# =============================================================================
# redaction tests
# =============================================================================


class _Colour(Enum):
    red = "red"


class TestRedaction:
    def test_redacts_nested_secrets(self):
        payload = {
            "customer": {"network_username": "u1", "network_password": "pw"},
            "headers": {"Authorization": "Bearer abc"},
            "items": [{"api_token": "t"}, {"ok": 1}],
            "router_password": "x",
        }
        redacted = redact_secrets(payload)
        assert redacted["customer"]["network_username"] == "u1"
        assert redacted["customer"]["network_password"] == REDACTED
        assert redacted["headers"]["Authorization"] == REDACTED
        assert redacted["items"][0]["api_token"] == REDACTED
        assert redacted["items"][1]["ok"] == 1
        assert redacted["router_password"] == REDACTED
        # Input is left untouched.
        assert payload["customer"]["network_password"] == "pw"

    def test_normalize_value(self):
        ident = uuid4()
        assert normalize_value(ident) == str(ident)
        assert normalize_value(Decimal("1.50")) == "1.50"
        assert normalize_value(_Colour.red) == "red"
        assert normalize_value(datetime(2026, 1, 2, 3, 4, 5)) == "2026-01-02T03:04:05"
