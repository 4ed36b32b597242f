"""Tests for credential encryption."""

import pytest

from legal_scanner.security.credentials import CredentialCipher, CredentialError


def test_round_trip(cipher):
    token = cipher.encrypt("ghp_abc123")

    assert token != "ghp_abc123"
    assert cipher.decrypt(token) == "ghp_abc123"


def test_empty_values(cipher):
    assert cipher.encrypt(None) is None
    assert cipher.encrypt("") is None
    assert cipher.decrypt(None) is None


def test_same_secret_decrypts_across_instances():
    token = CredentialCipher("s3cret", "salt").encrypt("value")
    assert CredentialCipher("s3cret", "salt").decrypt(token) == "value"


def test_wrong_secret_rejected():
    token = CredentialCipher("one", "salt").encrypt("value")

    with pytest.raises(CredentialError):
        CredentialCipher("two", "salt").decrypt(token)


def test_ephemeral_key_warns(caplog):
    CredentialCipher()
    assert "ephemeral key" in caplog.text
