"""Unit tests for sealed character secrets."""

import json

import pytest

from eidolon.core.exceptions import SecretsVerificationError
from eidolon.session.secrets import SecretVault, default_secrets


def test_default_secrets_keys():
    assert set(default_secrets()) == {"openai", "anthropic", "discord", "twitter", "telegram"}


def test_seal_and_open(vault):
    """A sealed blob opens with its values merged over the defaults."""
    blob = vault.seal({"openai": "sk-character", "discord": "bot-token"})

    opened = vault.open(blob, "char-1")

    assert opened.verified is True
    assert opened.values["openai"] == "sk-character"
    assert opened.values["discord"] == "bot-token"
    assert "anthropic" in opened.values


def test_seal_uses_given_salt(vault):
    blob = json.loads(vault.seal({"openai": "x"}, salt="abc"))

    assert blob["salt"] == "abc"
    assert set(blob) == {"salt", "data", "signature"}


def test_new_salt_is_random():
    assert SecretVault.new_salt() != SecretVault.new_salt()
    assert len(SecretVault.new_salt()) == 32


def test_tampered_blob_yields_defaults_only(vault):
    """Unverified payloads are never merged in."""
    envelope = json.loads(vault.seal({"openai": "sk-character"}))
    envelope["data"] = json.dumps({"openai": "sk-attacker"})

    opened = vault.open(json.dumps(envelope), "char-1")

    assert opened.verified is False
    assert opened.values == default_secrets()


def test_wrong_master_key(vault):
    blob = vault.seal({"openai": "sk-character"})

    opened = SecretVault(master_key="other-key", strict=False).open(blob, "char-1")

    assert opened.verified is False
    assert opened.values["openai"] != "sk-character"


@pytest.mark.parametrize("blob", [None, "", "not json", "[]", '{"salt": "s"}'])
def test_malformed_blobs(vault, blob):
    opened = vault.open(blob, "char-1")
    assert opened.verified is False
    assert opened.values == default_secrets()


def test_strict_mode_raises():
    strict = SecretVault(master_key="test-master-key", strict=True)

    with pytest.raises(SecretsVerificationError) as exc_info:
        strict.open("garbage", "char-9")

    assert exc_info.value.character_id == "char-9"
    assert strict.open(strict.seal({"openai": "ok"}), "char-9").verified is True
