"""Symmetric encryption for stored OAuth refresh tokens."""

import base64
import hashlib
import logging

from cryptography.fernet import Fernet, InvalidToken

from app.config import settings

logger = logging.getLogger(__name__)


def _fernet_key(raw: str) -> bytes:
    """Use the key as-is when it is a Fernet key, otherwise derive one from it with SHA-256."""
    key = raw.encode()
    try:
        Fernet(key)
        return key
    except ValueError:
        return base64.urlsafe_b64encode(hashlib.sha256(key).digest())


def get_fernet() -> Fernet | None:
    if not settings.encryption_key:
        return None
    return Fernet(_fernet_key(settings.encryption_key))


def encrypt_value(value: str | None) -> str:
    if not value:
        return ""
    f = get_fernet()
    if f is None:
        return value  # dev: no key, store plaintext
    return f.encrypt(value.encode()).decode()


def decrypt_value(encrypted: str | None) -> str:
    """Plaintext, or "" when the value cannot be decrypted with the current key."""
    if not encrypted:
        return ""
    f = get_fernet()
    if f is None:
        return encrypted
    try:
        return f.decrypt(encrypted.encode()).decode()
    except InvalidToken:
        logger.warning("crypto: stored value could not be decrypted (key rotated?)")
        return ""
