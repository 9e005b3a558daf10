"""
Fernet encryption for secrets kept in the database.

The only secret stored today is the bypass provider API key in the
settings row. The Fernet key is derived from ENCRYPTION_KEY with PBKDF2 so
any sufficiently long passphrase works.
"""

import base64
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from config import settings

KDF_SALT = b"uid_bypass_dashboard_salt"
KDF_ITERATIONS = 100_000


@lru_cache(maxsize=4)
def _fernet_for(passphrase: str) -> Fernet:
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=KDF_SALT, iterations=KDF_ITERATIONS)
    return Fernet(base64.urlsafe_b64encode(kdf.derive(passphrase.encode())))


def encrypt_secret(secret: str) -> str:
    return _fernet_for(settings.ENCRYPTION_KEY).encrypt(secret.encode()).decode()


def decrypt_secret(token: str) -> str:
    """Raises ValueError when the ciphertext was made with another key."""
    try:
        return _fernet_for(settings.ENCRYPTION_KEY).decrypt(token.encode()).decode()
    except InvalidToken as exc:
        raise ValueError("Stored secret cannot be decrypted with the configured ENCRYPTION_KEY.") from exc


def mask_secret(secret: str, visible: int = 4) -> str:
    """`********1234` style display value; short secrets are fully masked."""
    if not secret:
        return ""
    hidden = max(len(secret) - visible, 0)
    return "*" * len(secret) if hidden == 0 else "*" * hidden + secret[-visible:]
