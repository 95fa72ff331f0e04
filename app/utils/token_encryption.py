"""
Provider token encryption.

Access and refresh tokens returned by upstream identity providers are
encrypted with Fernet (AES-128-CBC + HMAC) before they reach the database.

Security:
- Key derived from JWT_SECRET using PBKDF2-HMAC-SHA256 (100,000 iterations)
- Dedicated salt so the derived key differs from any other use of the secret
- Encryption is unavailable while JWT_SECRET holds the placeholder value
"""

import base64
import hashlib
import logging
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken

from app.core.config import settings

logger = logging.getLogger(__name__)

_PROVIDER_TOKEN_SALT = b"adid_provider_token_encryption_v1"
_PLACEHOLDER_SECRET = "change_me"


@lru_cache(maxsize=4)
def _fernet_for(secret: str) -> Fernet:
    derived_key = hashlib.pbkdf2_hmac(
        "sha256",
        secret.encode("utf-8"),
        _PROVIDER_TOKEN_SALT,
        100_000,
        dklen=32,
    )
    return Fernet(base64.urlsafe_b64encode(derived_key))


def _get_fernet() -> Fernet:
    """
    Fernet instance keyed from the current JWT_SECRET.

    Raises:
        ValueError: If JWT_SECRET is unset or still the placeholder
    """
    if not is_encryption_configured():
        raise ValueError("JWT_SECRET must be configured for provider token encryption")
    return _fernet_for(settings.JWT_SECRET)


def encrypt_token(token: str) -> str:
    """
    Encrypt a provider token for storage.

    Raises:
        ValueError: If the token is empty or encryption is not configured

    Example:
        >>> encrypted = encrypt_token("ya29.a0AfH6SMB...")
        >>> assert encrypted != "ya29.a0AfH6SMB..."
    """
    if not token:
        raise ValueError("Cannot encrypt empty token")
    return _get_fernet().encrypt(token.encode("utf-8")).decode("utf-8")


def decrypt_token(encrypted_token: str) -> str:
    """
    Decrypt a stored provider token.

    Raises:
        ValueError: If the value is empty, corrupted or was encrypted with another key
    """
    if not encrypted_token:
        raise ValueError("Cannot decrypt empty token")
    try:
        return _get_fernet().decrypt(encrypted_token.encode("utf-8")).decode("utf-8")
    except InvalidToken as e:
        # Rotated secrets make old rows unreadable; callers treat this as "no token"
        logger.warning("Provider token decryption failed: invalid token or wrong key")
        raise ValueError("Failed to decrypt token") from e


def is_encryption_configured() -> bool:
    return bool(settings.JWT_SECRET and settings.JWT_SECRET != _PLACEHOLDER_SECRET)
