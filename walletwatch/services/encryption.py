"""Fernet symmetric encryption for exchange API credentials at rest."""

from cryptography.fernet import Fernet, InvalidToken

from walletwatch.config import settings
from walletwatch.errors import ConfigurationError

_fernet: Fernet | None = None


def _get_fernet() -> Fernet:
    global _fernet
    if _fernet is None:
        key = settings.encryption_key
        if not key:
            raise ConfigurationError(
                "WW_ENCRYPTION_KEY not set. Generate one with: "
                "python -c \"from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())\""
            )
        _fernet = Fernet(key.encode() if isinstance(key, str) else key)
    return _fernet


def encrypt(plaintext: str) -> str:
    """Encrypt a secret; empty strings stay empty."""
    if not plaintext:
        return ""
    return _get_fernet().encrypt(plaintext.encode()).decode()


def decrypt(ciphertext: str) -> str:
    """Decrypt a stored secret; a key mismatch is a configuration problem."""
    if not ciphertext:
        return ""
    try:
        return _get_fernet().decrypt(ciphertext.encode()).decode()
    except InvalidToken as e:
        raise ConfigurationError("Stored credential cannot be decrypted with WW_ENCRYPTION_KEY") from e
