"""
Encryption utilities for partner secrets (SMTP settings, CRM API keys).
Uses Fernet symmetric encryption with the configured ENCRYPTION_KEY.
"""
import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)


def _get_fernet():
    """Get a Fernet cipher using the configured encryption key."""
    from cryptography.fernet import Fernet
    from src.config import get_settings
    settings = get_settings()

    key = settings.encryption_key
    if not key:
        logger.warning("ENCRYPTION_KEY not configured — storing values as-is")
        return None

    return Fernet(key.encode() if isinstance(key, str) else key)


def encrypt_value(plaintext: str) -> str:
    """
    Encrypt a string value. Returns the encrypted token as a string.
    Falls back to storing plaintext if encryption key is not configured.
    """
    if not plaintext:
        return plaintext

    fernet = _get_fernet()
    if fernet is None:
        return plaintext

    try:
        return fernet.encrypt(plaintext.encode()).decode()
    except Exception as e:
        logger.error("Encryption failed: %s", str(e))
        return plaintext


def decrypt_value(encrypted: str) -> Optional[str]:
    """
    Decrypt a string value. Returns the plaintext string.
    Falls back to returning the value as-is if decryption fails
    (handles legacy unencrypted values).
    """
    if not encrypted:
        return encrypted

    fernet = _get_fernet()
    if fernet is None:
        return encrypted

    try:
        return fernet.decrypt(encrypted.encode()).decode()
    except Exception:
        # Value may be legacy plaintext — return as-is
        return encrypted


def encrypt_dict(values: Optional[dict[str, Any]]) -> dict[str, str]:
    """
    Encrypt every value of a flat settings dict (e.g. partner SMTP settings).
    Non-string values are stringified first; None values are dropped.
    """
    if not values:
        return {}
    return {
        key: encrypt_value(str(value))
        for key, value in values.items()
        if value is not None
    }


def decrypt_dict(values: Optional[dict[str, Any]]) -> dict[str, Any]:
    """Decrypt every string value of a flat settings dict. Other values pass through."""
    if not values:
        return {}
    return {
        key: decrypt_value(value) if isinstance(value, str) else value
        for key, value in values.items()
    }
