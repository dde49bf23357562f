"""
Encryption of integration secrets at rest (Fernet, AES-128-CBC + HMAC).

The key comes from ENCRYPTION_KEY. When it is not set, a key is derived from
the JWT secret so a single secret is enough for development.
"""

import base64
import hashlib
from functools import lru_cache
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from idara.core.config import ENCRYPTION_KEY


@lru_cache(maxsize=1)
def _get_fernet() -> Fernet:
    if ENCRYPTION_KEY:
        return Fernet(ENCRYPTION_KEY.encode("utf-8"))

    from idara.auth.jwt import JWT_SECRET_KEY

    digest = hashlib.sha256(JWT_SECRET_KEY.encode("utf-8")).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


def encrypt_secret(plaintext: str) -> str:
    """Encrypt a secret for storage."""
    return _get_fernet().encrypt(plaintext.encode("utf-8")).decode("utf-8")


def decrypt_secret(ciphertext: Optional[str]) -> Optional[str]:
    """
    Decrypt a stored secret.

    Returns None when nothing is stored. Raises ValueError when the stored
    value cannot be decrypted with the current key.
    """
    if not ciphertext:
        return None
    try:
        return _get_fernet().decrypt(ciphertext.encode("utf-8")).decode("utf-8")
    except InvalidToken as e:
        raise ValueError("Stored secret cannot be decrypted with the configured key") from e
