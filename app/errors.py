"""
Error taxonomy shared by services and routers.

Services raise these; main.py maps every AppError to a JSON response using the
class's status_code. The class name is returned as "error" so callers can tell
kinds apart (e.g. NoFacultyForDepartmentError vs InvalidDepartmentCodeError).
"""
from typing import Any


class AppError(Exception):
    """Base error. `context` holds structured details safe to return to clients."""

    status_code = 500

    def __init__(self, message: str, **context: Any) -> None:
        self.message = message
        self.context = context
        super().__init__(message)


class ValidationError(AppError):
    """Malformed input; the caller's fault."""

    status_code = 400


class AuthorizationError(AppError):
    """Ownership or role mismatch."""

    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class FolderInactiveError(AppError):
    """Folder exists but has been soft-deleted."""

    status_code = 410


class CredentialError(AppError):
    status_code = 401


class CryptoError(CredentialError):
    """Missing/malformed key, malformed ciphertext or wrong key."""

    status_code = 500


class InvalidDepartmentCodeError(CredentialError):
    status_code = 401


class TokenExpiredError(AppError):
    status_code = 401


class NoRefreshTokenError(AppError):
    """Refresh needed but none stored; the principal must log in again."""

    status_code = 401


class TokenRefreshError(AppError):
    """Issuer rejected the refresh token (revoked or invalid). Not retried."""

    status_code = 401


class ExternalProviderError(AppError):
    """Google Drive call failed."""

    status_code = 502

    def __init__(self, message: str, status: int | None = None, **context: Any) -> None:
        self.status = status
        super().__init__(message, **context)


class ProviderAuthError(ExternalProviderError):
    """Drive answered 401: the access token was not accepted."""


class NoFacultyForDepartmentError(AppError):
    status_code = 404
