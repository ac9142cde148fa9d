"""
JWT creation and verification for session management.

Sessions are identified by a short-lived JWT stored in an HttpOnly cookie
(set in auth router). Algorithm: HS256; secret must be set in config.
Expiration matches JWT_COOKIE_MAX_AGE for coherence. The role claim is a hint
for the frontend only; authorization always reloads the user.
"""
from datetime import datetime, timedelta, UTC

from jose import ExpiredSignatureError, JWTError, jwt

from config import JWT_SECRET, JWT_ALGORITHM, JWT_COOKIE_MAX_AGE
from errors import CredentialError, TokenExpiredError


def create_jwt(user_id: str, role: str) -> str:
    """Build a JWT for the given user id (Google sub); exp = now + JWT_COOKIE_MAX_AGE."""
    payload = {
        "sub": user_id,
        "role": role,
        "exp": datetime.now(UTC) + timedelta(seconds=JWT_COOKIE_MAX_AGE),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_jwt(token: str) -> dict:
    """Decode and verify JWT; raises TokenExpiredError or CredentialError."""
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except ExpiredSignatureError as e:
        raise TokenExpiredError("Session expired; please log in again") from e
    except JWTError as e:
        raise CredentialError("Invalid session") from e
