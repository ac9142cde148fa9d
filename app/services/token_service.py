"""
Google OAuth token lifecycle: code exchange, refresh, identity lookup, and
per-principal storage of the credential bundle.

TokenLifecycleManager is shared by all requests. Refreshes for one principal
are serialized with a per-principal lock. Each principal's slot also counts
completed refreshes; a caller that finds the count moved while it waited for
the lock reuses the stored result instead of calling Google again. Different
principals never wait on each other.
"""
import logging
import threading
import weakref
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable, TypeVar

import requests
from sqlalchemy.orm import sessionmaker

from config import (
    GOOGLE_CLIENT_ID,
    GOOGLE_CLIENT_SECRET,
    GOOGLE_REDIRECT_URI,
    OAUTH_REQUEST_TIMEOUT,
    TOKEN_REFRESH_MARGIN_SECONDS,
)
from crypto import decrypt_token, encrypt_token
from errors import (
    CredentialError,
    ExternalProviderError,
    NoRefreshTokenError,
    NotFoundError,
    ProviderAuthError,
    TokenRefreshError,
)
from models import User, as_utc, utcnow

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"

T = TypeVar("T")


@dataclass(frozen=True)
class CredentialBundle:
    """Access token, refresh token (may be None) and access-token expiry (UTC)."""
    access_token: str
    refresh_token: str | None
    expires_at: datetime | None

    def expires_within(self, margin: timedelta, now: datetime) -> bool:
        # No expiry info: treat as expired so we refresh rather than guess
        if self.expires_at is None:
            return True
        return now >= as_utc(self.expires_at) - margin


def _bundle_from_response(data: dict, now: datetime) -> CredentialBundle:
    expires_in = data.get("expires_in", 3600)
    return CredentialBundle(
        access_token=data["access_token"],
        refresh_token=data.get("refresh_token"),
        expires_at=now + timedelta(seconds=int(expires_in)),
    )


class GoogleTokenIssuer:
    """The token-issuing collaborator: Google's OAuth 2.0 token and userinfo endpoints."""

    def exchange_code(self, code: str) -> CredentialBundle:
        """Exchange an authorization code for tokens."""
        try:
            resp = requests.post(
                GOOGLE_TOKEN_URL,
                data={
                    "client_id": GOOGLE_CLIENT_ID,
                    "client_secret": GOOGLE_CLIENT_SECRET,
                    "code": code,
                    "grant_type": "authorization_code",
                    "redirect_uri": GOOGLE_REDIRECT_URI,
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=OAUTH_REQUEST_TIMEOUT,
            )
            data = resp.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            raise ExternalProviderError(f"Token endpoint unreachable: {e}") from e
        if "error" in data or not data.get("access_token"):
            raise CredentialError(
                f"Token exchange failed: {data.get('error_description', data.get('error', 'no access_token'))}"
            )
        return _bundle_from_response(data, utcnow())

    def refresh(self, refresh_token: str) -> CredentialBundle:
        """
        Obtain a new access token. The returned refresh_token is None unless
        Google rotated it. Raises TokenRefreshError when Google rejects the token.
        """
        try:
            resp = requests.post(
                GOOGLE_TOKEN_URL,
                data={
                    "client_id": GOOGLE_CLIENT_ID,
                    "client_secret": GOOGLE_CLIENT_SECRET,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=OAUTH_REQUEST_TIMEOUT,
            )
            data = resp.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            raise ExternalProviderError(f"Token endpoint unreachable: {e}") from e
        if "error" in data or not data.get("access_token"):
            raise TokenRefreshError(
                "Failed to refresh Google token; please log in again",
                reason=data.get("error", "no access_token"),
            )
        return _bundle_from_response(data, utcnow())

    def fetch_identity(self, access_token: str) -> dict:
        """Return {external_id, name, email, picture} for the token's owner."""
        try:
            resp = requests.get(
                GOOGLE_USERINFO_URL,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=OAUTH_REQUEST_TIMEOUT,
            )
            resp.raise_for_status()
            info = resp.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            raise ExternalProviderError(f"Failed to fetch Google profile: {e}") from e
        return {
            "external_id": info.get("sub"),
            "name": info.get("name") or "",
            "email": (info.get("email") or "").lower(),
            "picture": info.get("picture") or "",
        }


class _RefreshSlot:
    """Per-principal refresh lock and a count of bundles stored under it."""

    def __init__(self):
        self.lock = threading.Lock()
        self.generation = 0


class TokenLifecycleManager:
    def __init__(
        self,
        issuer: GoogleTokenIssuer,
        session_factory: sessionmaker,
        margin: timedelta = timedelta(seconds=TOKEN_REFRESH_MARGIN_SECONDS),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.issuer = issuer
        self._session_factory = session_factory
        self._margin = margin
        self._clock = clock
        # Slots are dropped once no caller holds them
        self._slots: weakref.WeakValueDictionary[str, _RefreshSlot] = weakref.WeakValueDictionary()
        self._slots_guard = threading.Lock()

    def _slot_for(self, principal_id: str) -> _RefreshSlot:
        with self._slots_guard:
            slot = self._slots.get(principal_id)
            if slot is None:
                slot = self._slots[principal_id] = _RefreshSlot()
            return slot

    def load(self, principal_id: str) -> CredentialBundle | None:
        """Stored bundle for the principal, or None if no access token is stored."""
        with self._session_factory() as db:
            user = db.get(User, principal_id)
            if user is None:
                raise NotFoundError("User not found", user_id=principal_id)
            if not user.encrypted_access_token:
                refresh_token = decrypt_token(user.encrypted_refresh_token)
                if refresh_token:
                    return CredentialBundle("", refresh_token, None)
                return None
            return CredentialBundle(
                access_token=decrypt_token(user.encrypted_access_token),
                refresh_token=decrypt_token(user.encrypted_refresh_token),
                expires_at=as_utc(user.access_token_expires_at),
            )

    def _store(self, principal_id: str, bundle: CredentialBundle) -> None:
        with self._session_factory() as db:
            user = db.get(User, principal_id)
            if user is None:
                raise NotFoundError("User not found", user_id=principal_id)
            user.encrypted_access_token = encrypt_token(bundle.access_token)
            user.access_token_expires_at = bundle.expires_at
            user.encrypted_refresh_token = (
                encrypt_token(bundle.refresh_token) if bundle.refresh_token else None
            )
            db.commit()

    def set_initial(self, principal_id: str, bundle: CredentialBundle) -> None:
        """Replace whatever bundle the principal had, right after a successful login."""
        slot = self._slot_for(principal_id)
        with slot.lock:
            self._store(principal_id, bundle)
            slot.generation += 1

    def ensure_fresh(self, principal_id: str) -> CredentialBundle:
        """
        Return a bundle whose access token is valid for at least the safety
        margin, refreshing first if needed.
        """
        bundle = self.load(principal_id)
        if bundle is None:
            raise NoRefreshTokenError(
                "Google Drive not connected; please log in again", user_id=principal_id
            )
        if bundle.access_token and not bundle.expires_within(self._margin, self._clock()):
            return bundle
        return self.refresh(principal_id, stale_access_token=bundle.access_token)

    def refresh(self, principal_id: str, stale_access_token: str | None = None) -> CredentialBundle:
        """
        Refresh the principal's access token, at most one refresh at a time per principal.

        A caller that waited while another refresh (or a login) stored a new
        bundle gets that bundle back without calling Google. The same holds
        when `stale_access_token` is given and the stored token differs from it.
        """
        slot = self._slot_for(principal_id)
        seen = slot.generation
        with slot.lock:
            current = self.load(principal_id)
            replaced = slot.generation != seen or (
                stale_access_token is not None and current is not None
                and current.access_token != stale_access_token
            )
            if replaced and current is not None and current.access_token:
                return current
            if current is None or not current.refresh_token:
                raise NoRefreshTokenError(
                    "Session expired; please log in again to grant Drive access",
                    user_id=principal_id,
                )
            try:
                issued = self.issuer.refresh(current.refresh_token)
            except TokenRefreshError:
                logger.warning("Google rejected refresh token for user %s", principal_id)
                raise
            # Keep the stored refresh token unless Google issued a new one
            fresh = replace(issued, refresh_token=issued.refresh_token or current.refresh_token)
            self._store(principal_id, fresh)
            slot.generation += 1
            logger.info("Refreshed Google access token for user %s", principal_id)
            return fresh

    def call_with_credentials(self, principal_id: str, call: Callable[[CredentialBundle], T]) -> T:
        """
        Run a Drive call with fresh credentials. On a 401 the token is refreshed
        and the call retried exactly once; a second 401 propagates.
        """
        bundle = self.ensure_fresh(principal_id)
        try:
            return call(bundle)
        except ProviderAuthError:
            logger.info("Drive returned 401 for user %s; refreshing and retrying once", principal_id)
            bundle = self.refresh(principal_id, stale_access_token=bundle.access_token)
            return call(bundle)
