"""
Unit tests for JWT handling.

Tests token creation, verification, and expiration.
"""

import time

from eidolon.core.security import create_jwt_token, verify_jwt_token


def test_verify_valid_token():
    """Test verification of valid token."""
    token = create_jwt_token("user123", name="Alice", secret="test_secret_key_12345")

    payload = verify_jwt_token(token, secret="test_secret_key_12345")

    assert payload is not None
    assert payload.sub == "user123"
    assert payload.name == "Alice"
    assert payload.exp > payload.iat


def test_name_is_optional():
    payload = verify_jwt_token(create_jwt_token("user123"))

    assert payload.sub == "user123"
    assert payload.name is None


def test_bearer_prefix_accepted():
    token = create_jwt_token("user123")

    assert verify_jwt_token(f"Bearer {token}").sub == "user123"


def test_verify_invalid_token():
    assert verify_jwt_token("invalid.token.here") is None
    assert verify_jwt_token("") is None
    assert verify_jwt_token(None) is None


def test_verify_token_wrong_secret():
    """Test that token verification fails with wrong secret."""
    token = create_jwt_token("user123", secret="secret1")

    assert verify_jwt_token(token, secret="secret2") is None


def test_expired_token():
    token = create_jwt_token("user123", expires_minutes=-1)

    assert verify_jwt_token(token) is None


def test_tokens_differ_over_time():
    first = create_jwt_token("user123", expires_minutes=5)
    time.sleep(1.1)
    second = create_jwt_token("user123", expires_minutes=5)

    assert first != second
