"""Unit tests for password hashing, JWT encode/decode and refresh-token encryption."""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from jose import JWTError, jwt

from app.config import settings
from app.core.auth import create_access_token, decode_token, hash_password, verify_password
from app.services.crypto import decrypt_value, encrypt_value


def test_password_hash_roundtrip():
    hashed = hash_password("password123")
    assert hashed != "password123"
    assert verify_password("password123", hashed)
    assert not verify_password("password124", hashed)


def test_create_and_decode_token():
    token = create_access_token(user_id=42, email="u@example.com")
    payload = decode_token(token)
    assert payload["sub"] == "42"
    assert payload["email"] == "u@example.com"
    assert "exp" in payload


def test_decode_tampered_token_raises():
    token = create_access_token(user_id=1, email="a@b.com")
    bad_token = token[:-1] + ("x" if token[-1] != "x" else "y")
    with pytest.raises(JWTError):
        decode_token(bad_token)


def test_decode_expired_token_raises():
    # Built by hand so the test does not depend on the clock
    payload = {"sub": "1", "email": "u@test.com", "exp": datetime.now(timezone.utc) - timedelta(minutes=1)}
    token = jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)
    with pytest.raises(JWTError):
        decode_token(token)


def test_decode_with_other_secret_raises():
    token = create_access_token(user_id=1, email="a@b.com")
    with patch.object(settings, "secret_key", "other-secret"):
        with pytest.raises(JWTError):
            decode_token(token)


def test_refresh_token_encryption_roundtrip():
    encrypted = encrypt_value("refresh-abc")
    assert encrypted != "refresh-abc"
    assert decrypt_value(encrypted) == "refresh-abc"
    assert encrypt_value(None) == ""
    assert decrypt_value("") == ""


def test_decrypt_with_rotated_key_returns_empty():
    encrypted = encrypt_value("refresh-abc")
    with patch.object(settings, "encryption_key", "y" * 32):
        assert decrypt_value(encrypted) == ""


def test_no_key_stores_plaintext():
    with patch.object(settings, "encryption_key", ""):
        assert encrypt_value("plain") == "plain"
        assert decrypt_value("plain") == "plain"
