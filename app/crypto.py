"""
Symmetric encryption using Fernet (AES-128-CBC + HMAC-SHA256, from cryptography).

Two uses:
- Department codes: encrypt / decrypt / verify take the key explicitly
  (DEPARTMENT_CODE_KEY). Fernet uses a random IV per call, so the same code
  encrypts to a different token every time and cannot be looked up by value.
- OAuth tokens at rest: encrypt_token / decrypt_token use TOKEN_ENCRYPTION_KEY.
  Handles None for optional refresh_token.

Every failure (absent or malformed key, tampered token, wrong key) raises
CryptoError; a wrong key never yields a plausible plaintext.
"""
import secrets

from cryptography.fernet import Fernet, InvalidToken

from config import TOKEN_ENCRYPTION_KEY
from errors import CryptoError


def _fernet(key: str | bytes | None) -> Fernet:
    if not key:
        raise CryptoError("Encryption key is missing")
    try:
        return Fernet(key.encode() if isinstance(key, str) else key)
    except (ValueError, TypeError) as e:
        raise CryptoError("Encryption key is malformed") from e


def encrypt(secret: str, key: str | bytes | None) -> str:
    """Encrypt a secret with `key`; output differs on every call."""
    return _fernet(key).encrypt(secret.encode()).decode()


def decrypt(ciphertext: str, key: str | bytes | None) -> str:
    """Decrypt a value produced by encrypt(). Raises CryptoError on any mismatch."""
    f = _fernet(key)
    try:
        return f.decrypt(ciphertext.encode()).decode()
    except (InvalidToken, AttributeError, UnicodeError) as e:
        raise CryptoError("Ciphertext is malformed or was encrypted with another key") from e


def verify(candidate: str, ciphertext: str, key: str | bytes | None) -> bool:
    """
    Decrypt `ciphertext` and compare with `candidate` in constant time.
    Comparison is exact (case-sensitive). Raises CryptoError if decryption fails.
    """
    stored = decrypt(ciphertext, key)
    return secrets.compare_digest(candidate.encode(), stored.encode())


def encrypt_token(value: str) -> str:
    """Encrypt an OAuth token (access_token or refresh_token) for storage."""
    return encrypt(value, TOKEN_ENCRYPTION_KEY)


def decrypt_token(value: str | None) -> str | None:
    """
    Decrypt a stored token. Returns None if value is None (e.g. optional refresh_token).
    """
    if value is None:
        return None
    return decrypt(value, TOKEN_ENCRYPTION_KEY)
